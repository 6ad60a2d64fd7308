import os
import yaml
from dataclasses import dataclass, replace
from typing import Optional


def _read(path: str):
    with open(path, "r") as f:
        return yaml.safe_load(f)


@dataclass(frozen=True)
class Logging:
    level: str = "INFO"


@dataclass(frozen=True)
class PassThroughConfig:
    field_name: str = "z"
    limit_min: float = 0.0
    limit_max: float = 1.5


@dataclass(frozen=True)
class NormalsConfig:
    k_search: int = 50
    radius_search: float = 0.0


@dataclass(frozen=True)
class PlaneConfig:
    normal_distance_weight: float = 0.1
    method: str = "RANSAC"
    max_iterations: int = 100
    distance_threshold: float = 0.03
    optimize_coefficients: bool = True


@dataclass(frozen=True)
class CylinderConfig:
    normal_distance_weight: float = 0.1
    method: str = "RANSAC"
    max_iterations: int = 10000
    distance_threshold: float = 0.05
    min_radius: float = 0.0
    max_radius: float = 0.1
    optimize_coefficients: bool = True


@dataclass(frozen=True)
class Config:
    logging: Logging = Logging()
    pass_through: PassThroughConfig = PassThroughConfig()
    normals: NormalsConfig = NormalsConfig()
    plane: PlaneConfig = PlaneConfig()
    cylinder: CylinderConfig = CylinderConfig()
    random: bool = False


def load_config(path: Optional[str]) -> Config:
    cfg = Config()
    if path and os.path.isfile(path):
        data = _read(path) or {}
        logging = replace(cfg.logging, **(data.get("logging", {}) or {}))
        pass_through = replace(cfg.pass_through, **(data.get("pass_through", {}) or {}))
        normals = replace(cfg.normals, **(data.get("normals", {}) or {}))
        plane = replace(cfg.plane, **(data.get("plane", {}) or {}))
        cylinder = replace(cfg.cylinder, **(data.get("cylinder", {}) or {}))
        cfg = replace(
            cfg,
            logging=logging,
            pass_through=pass_through,
            normals=normals,
            plane=plane,
            cylinder=cylinder,
            random=bool(data.get("random", cfg.random)),
        )
    return cfg

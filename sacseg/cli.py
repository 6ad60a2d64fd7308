"""sacseg

Segment a table plane and a cylinder from point cloud files.

Usage:
    sacseg scene.txt --config sacseg.yaml --log-level DEBUG
    sacseg clouds/ --max-radius 0.08
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Optional, Tuple

from sacseg.config import Config, load_config
from sacseg.exceptions import SegmentationError
from sacseg.log_utils import CountingHandler, setup_logging
from sacseg.pipeline import (
    CylinderSegmentationParams,
    CylinderSegmentationResult,
    segment_cylinder_directory,
    segment_cylinder_file,
)
from sacseg.sac_models import PlaneModel

logger = logging.getLogger(__name__)


def add_config_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to config file")


def add_log_level_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sacseg", description="Plane and cylinder segmentation of point clouds")
    p.add_argument("input", help="Point cloud file (.txt, .xyz, .npy) or a directory of them")
    add_config_arg(p)
    add_log_level_arg(p)
    p.add_argument("--filter-min", type=float, help="Lower pass-through limit")
    p.add_argument("--filter-max", type=float, help="Upper pass-through limit")
    p.add_argument("--k-search", type=int, help="Neighbours used for normal estimation")
    p.add_argument("--plane-thresh", type=float, help="Plane inlier distance threshold")
    p.add_argument("--cylinder-thresh", type=float, help="Cylinder inlier distance threshold")
    p.add_argument("--max-radius", type=float, help="Largest accepted cylinder radius")
    p.add_argument("--random", action="store_true", default=None, help="Seed sampling from OS entropy")
    p.add_argument("--json", action="store_true", help="Print results as JSON")
    return p


def defaults_from_config(cfg: Config) -> dict:
    return {"log_level": cfg.logging.level}


def parse_args_with_config(build: Callable[[], argparse.ArgumentParser],
                           defaults_from_cfg: Callable[[Config], dict],
                           argv: Optional[list] = None) -> Tuple[argparse.Namespace, Config]:
    """
    Parse once to find --config, then again with the config values as defaults.
    """
    p = build()
    cfg_path = p.parse_known_args(argv)[0].config
    cfg = load_config(cfg_path)
    p.set_defaults(**defaults_from_cfg(cfg))
    args = p.parse_args(argv)
    return args, cfg


def params_from_args(args: argparse.Namespace, cfg: Config) -> CylinderSegmentationParams:
    params = CylinderSegmentationParams.from_config(cfg)
    overrides = {
        "filter_min": args.filter_min,
        "filter_max": args.filter_max,
        "k_search": args.k_search,
        "plane_thresh": args.plane_thresh,
        "cylinder_thresh": args.cylinder_thresh,
        "max_radius": args.max_radius,
        "random": args.random,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(params, name, value)
    return params


def summarize(result: CylinderSegmentationResult) -> dict:
    return {
        "source": result.source,
        "original_size": result.original_size,
        "filtered_size": result.filtered_size,
        "plane_size": result.plane_size,
        "cylinder_size": result.cylinder_size,
        "plane_coefficients": result.plane_coefficients,
        "cylinder_coefficients": result.cylinder_coefficients,
    }


def print_result(result: CylinderSegmentationResult) -> None:
    print(f"{result.source}:")
    print(f"  points: {result.original_size} -> {result.filtered_size} after filtering")
    if result.plane_coefficients:
        plane = PlaneModel.from_coefficients(result.plane_coefficients)
        print(f"  plane ({result.plane_size} points): {plane.equation_string}")
    else:
        print("  plane: not found")
    if result.found_cylinder:
        c = result.cylinder_coefficients
        print(
            f"  cylinder ({result.cylinder_size} points): "
            f"axis point ({c[0]:.4f}, {c[1]:.4f}, {c[2]:.4f}), "
            f"direction ({c[3]:.4f}, {c[4]:.4f}, {c[5]:.4f}), radius {c[6]:.4f}"
        )
    else:
        print("  cylinder: not found")


def main(argv: Optional[list] = None) -> int:
    """Exit status is 1 when the run failed or logged an error, 0 otherwise."""
    args, cfg = parse_args_with_config(build_parser, defaults_from_config, argv)
    setup_logging(args.log_level)

    counter = CountingHandler()
    logging.getLogger().addHandler(counter)

    target = Path(args.input)

    try:
        params = params_from_args(args, cfg)
        if target.is_dir():
            results = segment_cylinder_directory(target, params)
            if not results:
                logger.error("No point cloud files found in %s", target)
                return 1
        else:
            results = [segment_cylinder_file(target, params)]
    except (FileNotFoundError, ValueError, SegmentationError) as e:
        logger.error("%s: %s", target, e)
        return 1
    finally:
        logging.getLogger().removeHandler(counter)

    if args.json:
        print(json.dumps([summarize(r) for r in results], indent=2))
    else:
        for result in results:
            print_result(result)

    print(f"Finished with {counter.warnings} warnings, {counter.errors} errors", file=sys.stderr)
    return 1 if counter.errors else 0


if __name__ == "__main__":
    sys.exit(main())

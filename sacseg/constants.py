from enum import IntEnum


class SacModel(IntEnum):
    """Model types, numbered as in PCL's sample_consensus module."""
    PLANE = 0
    LINE = 1
    CIRCLE2D = 2
    SPHERE = 4
    CYLINDER = 5
    CONE = 6
    PARALLEL_LINE = 8
    PERPENDICULAR_PLANE = 9
    NORMAL_PLANE = 11
    NORMAL_SPHERE = 12
    PARALLEL_PLANE = 15
    NORMAL_PARALLEL_PLANE = 16


class SacMethod(IntEnum):
    RANSAC = 0
    LMEDS = 1
    MSAC = 2
    RRANSAC = 3


NORMAL_MODELS = frozenset({
    SacModel.CYLINDER,
    SacModel.CONE,
    SacModel.NORMAL_PLANE,
    SacModel.NORMAL_SPHERE,
    SacModel.NORMAL_PARALLEL_PLANE,
})

# Number of coefficients describing each model
COEFFICIENT_COUNT = {
    SacModel.PLANE: 4,
    SacModel.PERPENDICULAR_PLANE: 4,
    SacModel.PARALLEL_PLANE: 4,
    SacModel.NORMAL_PLANE: 4,
    SacModel.NORMAL_PARALLEL_PLANE: 4,
    SacModel.LINE: 6,
    SacModel.PARALLEL_LINE: 6,
    SacModel.CIRCLE2D: 3,
    SacModel.SPHERE: 4,
    SacModel.NORMAL_SPHERE: 4,
    SacModel.CYLINDER: 7,
    SacModel.CONE: 7,
}

# Seed used when a segmenter is built with random=False
DEFAULT_SEED = 12345

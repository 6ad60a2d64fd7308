"""
SACSeg: sample consensus segmentation of planes, cylinders and other primitives in point clouds.
"""

from .constants import SacModel, SacMethod
from .point_cloud import PointIndices, ModelCoefficients, to_xyz
from .search import KdTree
from .features import NormalEstimation
from .filters import PassThrough, ExtractIndices, VoxelGrid, RadiusOutlierRemoval
from .segmentation import SACSegmentation, SACSegmentationFromNormals
from .pipeline import segment_cylinder, CylinderSegmentationParams, CylinderSegmentationResult

__version__ = "0.1.0"

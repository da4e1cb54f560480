"""
pybisque: cell-type decomposition of bulk RNA-seq.

Reference mode (`decompose_reference`) learns cell-type profiles from a
labelled single-cell reference, optionally corrects the platform effect on
donors measured both ways, and solves a weighted non-negative least squares
problem per bulk sample. Marker mode (`decompose_markers`) gives relative
abundance scores from marker genes alone.
"""

from .config import MarkerConfig, ReferenceConfig
from .errors import (
    BisqueError,
    DegenerateSampleError,
    DimensionMismatchError,
    EmptyCellTypeError,
    EmptyDonorError,
    InsufficientMarkersError,
    NoMarkersForClusterError,
    NoOverlapError,
)
from .markers import MarkerDecomposition, decompose_markers
from .matrix import ExpressionMatrix, SingleCellData
from .reference import ReferenceDecomposition, decompose_reference
from .simulate import SimulatedData, simulate_data

__version__ = "0.1.0"

__all__ = [
    "BisqueError",
    "DegenerateSampleError",
    "DimensionMismatchError",
    "EmptyCellTypeError",
    "EmptyDonorError",
    "ExpressionMatrix",
    "InsufficientMarkersError",
    "MarkerConfig",
    "MarkerDecomposition",
    "NoMarkersForClusterError",
    "NoOverlapError",
    "ReferenceConfig",
    "ReferenceDecomposition",
    "SimulatedData",
    "SingleCellData",
    "decompose_markers",
    "decompose_reference",
    "simulate_data",
]

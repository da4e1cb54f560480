# src/pybisque/errors.py
"""
Exception taxonomy for the decomposition engine.

Structural problems (empty groups, mismatched ids, missing overlap) are raised
before any per-sample work starts. `DegenerateSampleError` is raised per bulk
sample by the solver.
"""

from __future__ import annotations

from typing import Optional


class BisqueError(ValueError):
    """Base class; also used for generic invalid input."""


class DimensionMismatchError(BisqueError):
    """Gene/sample id sets disagree across inputs."""


class EmptyCellTypeError(BisqueError):
    def __init__(self, cell_type: str):
        self.cell_type = cell_type
        super().__init__(f"Cell type '{cell_type}' has zero cells in the single-cell reference.")


class EmptyDonorError(BisqueError):
    def __init__(self, donor: str):
        self.donor = donor
        super().__init__(f"Donor '{donor}' contributes zero cells to the single-cell reference.")


class NoOverlapError(BisqueError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "No donor ids shared between bulk samples and single-cell donors; "
               "run with use_overlap=False."
        )


class DegenerateSampleError(BisqueError):
    def __init__(self, sample: Optional[str] = None, reason: str = "NNLS returned an all-zero solution"):
        self.sample = sample
        where = f" for sample '{sample}'" if sample is not None else ""
        super().__init__(f"{reason}{where}; proportions are undefined.")


class NoMarkersForClusterError(BisqueError):
    def __init__(self, cluster: str):
        self.cluster = cluster
        super().__init__(f"Cluster '{cluster}' has no marker genes present in the bulk matrix.")


class InsufficientMarkersError(BisqueError):
    def __init__(self, cluster: str, n_markers: int, minimum: int):
        self.cluster = cluster
        self.n_markers = n_markers
        self.minimum = minimum
        super().__init__(
            f"Cluster '{cluster}' keeps {n_markers} marker gene(s) after filtering; "
            f"at least {minimum} required."
        )


__all__ = [
    "BisqueError",
    "DimensionMismatchError",
    "EmptyCellTypeError",
    "EmptyDonorError",
    "NoOverlapError",
    "DegenerateSampleError",
    "NoMarkersForClusterError",
    "InsufficientMarkersError",
]

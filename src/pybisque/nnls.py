# src/pybisque/nnls.py
"""
Weighted non-negative least squares, one bulk sample at a time.

solve_sample, solve_samples, inverse_variance_weights
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import nnls

from .errors import BisqueError, DegenerateSampleError, DimensionMismatchError

logger = logging.getLogger(__name__)

ON_DEGENERATE = ("raise", "collect")


def inverse_variance_weights(variance: np.ndarray, zero_variance: Optional[np.ndarray] = None) -> np.ndarray:
    """
    1 / variance per gene, rescaled to mean 1.

    Flagged zero-variance genes get weight 0. Remaining genes with a
    non-positive variance take the smallest positive variance.
    """
    var = np.asarray(variance, dtype=np.float64).copy()
    flagged = np.zeros(len(var), dtype=bool) if zero_variance is None else np.asarray(zero_variance, dtype=bool)
    usable = ~flagged
    positive = usable & np.isfinite(var) & (var > 0)
    if not positive.any():
        logger.warning("No gene has a positive single-cell variance; using uniform weights")
        return usable.astype(np.float64)
    var[usable & ~positive] = var[positive].min()

    w = np.zeros(len(var), dtype=np.float64)
    w[usable] = 1.0 / var[usable]
    return w / w[usable].mean()


def check_weights(weights: np.ndarray, n_genes: int) -> np.ndarray:
    w = np.asarray(weights, dtype=np.float64)
    if w.shape != (n_genes,):
        raise DimensionMismatchError(f"Weight vector has shape {w.shape}; expected ({n_genes},).")
    if not np.isfinite(w).all() or (w < 0).any():
        raise BisqueError("Gene weights must be finite and non-negative.")
    return w


def solve_sample(
    bulk_vector: np.ndarray,
    reference: np.ndarray,
    weights: Optional[np.ndarray] = None,
    sample: Optional[str] = None,
) -> Tuple[np.ndarray, float]:
    """
    Non-negative proportions for one bulk sample.

    Rows of `reference` (genes × cell types) and `bulk_vector` are scaled by
    sqrt(weight) and handed to Lawson-Hanson NNLS. The solution is scaled to
    sum to 1.

    Raises
    ------
    DegenerateSampleError
        The optimum is the all-zero vector (e.g. an all-zero bulk sample).
    """
    A = np.asarray(reference, dtype=np.float64)
    b = np.asarray(bulk_vector, dtype=np.float64)
    if A.ndim != 2 or b.shape != (A.shape[0],):
        raise DimensionMismatchError(
            f"Bulk vector of shape {b.shape} does not match reference of shape {A.shape}."
        )
    if weights is not None:
        sw = np.sqrt(check_weights(weights, A.shape[0]))
        A = A * sw[:, None]
        b = b * sw

    x, rnorm = nnls(A, b)
    total = x.sum()
    if not np.isfinite(total) or total <= 0:
        raise DegenerateSampleError(sample)
    return x / total, float(rnorm)


@dataclass
class SolveResult:
    proportions: np.ndarray            # samples × cell types, NaN rows for failures
    rnorm: np.ndarray                  # residual norm per sample
    samples: List[str]
    failures: Dict[str, DegenerateSampleError] = field(default_factory=dict)

    @property
    def ok(self) -> np.ndarray:
        return np.array([s not in self.failures for s in self.samples], dtype=bool)


def solve_samples(
    bulk: np.ndarray,
    reference: np.ndarray,
    weights: Optional[np.ndarray] = None,
    samples: Optional[Sequence[str]] = None,
    n_jobs: int = 1,
    on_degenerate: str = "raise",
) -> SolveResult:
    """
    Solve every column of `bulk` (genes × samples) independently.

    Each task writes its own row of a preallocated result, so output order
    equals input order whatever the scheduling. With on_degenerate='raise' the
    lowest-index degenerate sample aborts the batch; with 'collect' it is
    recorded in `failures` and its row stays NaN.
    """
    if on_degenerate not in ON_DEGENERATE:
        raise BisqueError(f"on_degenerate must be one of {ON_DEGENERATE}, got {on_degenerate!r}")
    bulk = np.asarray(bulk, dtype=np.float64)
    reference = np.asarray(reference, dtype=np.float64)
    if bulk.ndim != 2 or bulk.shape[0] != reference.shape[0]:
        raise DimensionMismatchError(
            f"Bulk matrix of shape {bulk.shape} does not match reference of shape {reference.shape}."
        )
    n_samples = bulk.shape[1]
    samples = [str(s) for s in samples] if samples is not None else [str(j) for j in range(n_samples)]
    if len(samples) != n_samples:
        raise DimensionMismatchError(f"{len(samples)} sample ids for {n_samples} bulk columns.")
    if weights is not None:
        weights = check_weights(weights, reference.shape[0])

    props = np.full((n_samples, reference.shape[1]), np.nan)
    rnorm = np.full(n_samples, np.nan)
    failures: Dict[str, DegenerateSampleError] = {}

    def task(j: int):
        try:
            return j, solve_sample(bulk[:, j], reference, weights, samples[j]), None
        except DegenerateSampleError as e:
            if on_degenerate == "raise":
                raise
            return j, None, e

    jobs = max(1, int(n_jobs))
    if jobs == 1 or n_samples <= 1:
        outcomes = [task(j) for j in range(n_samples)]
    else:
        with ThreadPoolExecutor(max_workers=jobs) as pool:
            futures = [pool.submit(task, j) for j in range(n_samples)]
            outcomes = [f.result() for f in futures]

    for j, solved, err in outcomes:
        if err is not None:
            failures[samples[j]] = err
            continue
        props[j], rnorm[j] = solved

    if failures:
        logger.warning(f"{len(failures)} degenerate sample(s) skipped: {list(failures)[:5]}")
    logger.info(f"Solved {n_samples - len(failures)}/{n_samples} bulk sample(s)")
    return SolveResult(proportions=props, rnorm=rnorm, samples=samples, failures=failures)


__all__ = [
    "ON_DEGENERATE",
    "inverse_variance_weights",
    "check_weights",
    "solve_sample",
    "SolveResult",
    "solve_samples",
]

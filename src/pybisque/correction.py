# src/pybisque/correction.py
"""
Platform effect correction

find_overlap, fit_platform_effect, PlatformEffectCorrector, semisupervised_transform

Single-cell and bulk assays scale each gene differently. With donors measured
on both platforms a per-gene linear map (scale, offset) from pseudobulk to
bulk values is fitted and applied to the reference profile. Without such
donors, `semisupervised_transform` moves the bulk values onto the pseudobulk
scale instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import BisqueError, DimensionMismatchError, NoOverlapError

logger = logging.getLogger(__name__)

EXTRAPOLATIONS = ("uniform", "scale_only")


def find_overlap(bulk_samples: Sequence, donors: Sequence) -> List[str]:
    """Donor ids that are also bulk sample ids, in bulk sample order."""
    donor_set = {str(d) for d in donors}
    return [str(s) for s in bulk_samples if str(s) in donor_set]


def fit_platform_effect(
    bulk_overlap: np.ndarray,
    pseudo_overlap: np.ndarray,
    floor: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Per-gene regression of bulk (dependent) on pseudobulk (independent).

    Both inputs are genes × k arrays over the same k overlapping donors.
    With k < 2 the scale is the ratio of means and the offset is 0.

    `floor` is the smallest reference value per gene. A gene whose fitted map
    would send its floor below zero is refitted through the origin (ratio of
    means, offset 0), so a non-negative reference stays non-negative. Genes
    whose scale is still non-positive or non-finite get the identity map
    (1, 0). Both fallbacks are reported in `clamped`.

    Returns
    -------
    (scale, offset, clamped) : three length-n_genes arrays
    """
    y = np.asarray(bulk_overlap, dtype=np.float64)
    x = np.asarray(pseudo_overlap, dtype=np.float64)
    if y.shape != x.shape or y.ndim != 2:
        raise DimensionMismatchError(
            f"Bulk overlap {y.shape} and pseudobulk overlap {x.shape} must be matching 2-D arrays."
        )
    k = y.shape[1]
    if k == 0:
        raise NoOverlapError()

    x_mean = x.mean(axis=1)
    y_mean = y.mean(axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = y_mean / x_mean
        if k < 2:
            scale = ratio
            offset = np.zeros_like(scale)
        else:
            dx = x - x_mean[:, None]
            dy = y - y_mean[:, None]
            scale = (dx * dy).sum(axis=1) / (dx * dx).sum(axis=1)
            offset = y_mean - scale * x_mean
        refit = np.zeros(len(scale), dtype=bool)
        if floor is not None:
            floor = np.asarray(floor, dtype=np.float64)
            if floor.shape != scale.shape:
                raise DimensionMismatchError(f"floor has shape {floor.shape}; expected {scale.shape}.")
            refit = np.isfinite(scale) & (scale > 0) & (scale * floor + offset < 0)
            scale = np.where(refit, ratio, scale)
            offset = np.where(refit, 0.0, offset)

    degenerate = ~np.isfinite(scale) | (scale <= 0) | ~np.isfinite(offset)
    scale = np.where(degenerate, 1.0, scale)
    offset = np.where(degenerate, 0.0, offset)
    return scale, offset, degenerate | refit


@dataclass(frozen=True)
class TransformationParameters:
    scale: pd.Series
    offset: pd.Series
    clamped: pd.Series
    n_overlap: int

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"scale": self.scale, "offset": self.offset, "clamped": self.clamped})


class PlatformEffectCorrector:
    """
    Learn per-gene (scale, offset) on overlapping donors, then put the
    reference profile in bulk units.

    Parameters
    ----------
    extrapolation : {'uniform', 'scale_only'}
        How the fitted map reaches samples without overlap evidence.
        'uniform' applies scale and offset to every reference value;
        'scale_only' applies the scale alone.
    """

    def __init__(self, extrapolation: str = "uniform"):
        if extrapolation not in EXTRAPOLATIONS:
            raise BisqueError(f"extrapolation must be one of {EXTRAPOLATIONS}, got {extrapolation!r}")
        self.extrapolation = extrapolation

    def fit(
        self,
        bulk: pd.DataFrame,
        donor_profiles: pd.DataFrame,
        overlap: Sequence[str],
        reference: Optional[pd.DataFrame] = None,
    ) -> TransformationParameters:
        """
        bulk : genes × samples; donor_profiles : genes × donors (same genes, same order).
        reference : genes × cell types, optional. Under 'uniform' extrapolation its
            per-gene minimum bounds the offset so the transformed reference stays
            non-negative.
        """
        overlap = sorted(overlap)
        if not overlap:
            raise NoOverlapError()
        if not bulk.index.equals(donor_profiles.index):
            raise DimensionMismatchError("Bulk and pseudobulk gene sets differ.")

        floor = None
        if reference is not None and self.extrapolation == "uniform":
            floor = reference.reindex(bulk.index).min(axis=1)
            if floor.isna().any():
                raise DimensionMismatchError("Reference profile does not cover every bulk gene.")
            floor = floor.to_numpy()

        scale, offset, clamped = fit_platform_effect(
            bulk.loc[:, overlap].to_numpy(),
            donor_profiles.loc[:, overlap].to_numpy(),
            floor=floor,
        )
        n_clamped = int(clamped.sum())
        if n_clamped:
            logger.debug(f"{n_clamped} gene(s) fall back to a ratio or identity platform map")
        logger.info(
            f"Platform effect fitted on {len(overlap)} overlapping donor(s); "
            f"median scale {float(np.median(scale)):.3g}"
        )
        genes = bulk.index
        return TransformationParameters(
            scale=pd.Series(scale, index=genes, name="scale"),
            offset=pd.Series(offset, index=genes, name="offset"),
            clamped=pd.Series(clamped, index=genes, name="clamped"),
            n_overlap=len(overlap),
        )

    def transform(self, reference: pd.DataFrame, params: TransformationParameters) -> pd.DataFrame:
        scale = params.scale.reindex(reference.index)
        if scale.isna().any():
            raise DimensionMismatchError("Transformation parameters do not cover every reference gene.")
        values = reference.to_numpy() * scale.to_numpy()[:, None]
        if self.extrapolation == "uniform":
            values = values + params.offset.reindex(reference.index).to_numpy()[:, None]
        return pd.DataFrame(values, index=reference.index, columns=reference.columns)


def semisupervised_transform(bulk: np.ndarray, donor_profiles: np.ndarray) -> np.ndarray:
    """
    Put bulk values (genes × samples) on the pseudobulk scale without overlap.

    Each gene is z-scored across bulk samples, stretched by the shrunken
    pseudobulk spread sqrt(sum((pb - mean)^2) / n + 1) and shifted to the
    pseudobulk mean across donors. Genes constant across bulk samples map to
    the pseudobulk mean. The bulk statistics are taken over every column, so
    each output column depends on the whole batch; they are computed on
    row-sorted values and do not depend on column order.
    """
    bulk = np.ascontiguousarray(bulk, dtype=np.float64)
    pb = np.asarray(donor_profiles, dtype=np.float64)
    if bulk.shape[0] != pb.shape[0]:
        raise DimensionMismatchError("Bulk and pseudobulk gene sets differ.")

    pb_center = pb.mean(axis=1)
    n = pb.shape[1]
    shrink = np.sqrt(((pb - pb_center[:, None]) ** 2).sum(axis=1) / n + 1.0)

    if bulk.shape[1] == 0:
        return bulk.copy()
    ordered = np.sort(bulk, axis=1)
    b_center = ordered.mean(axis=1)
    b_sd = ordered.std(axis=1, ddof=1) if bulk.shape[1] > 1 else np.zeros(bulk.shape[0])
    with np.errstate(divide="ignore", invalid="ignore"):
        z = (bulk - b_center[:, None]) / b_sd[:, None]
    z[~np.isfinite(z)] = 0.0
    return z * shrink[:, None] + pb_center[:, None]


__all__ = [
    "EXTRAPOLATIONS",
    "find_overlap",
    "fit_platform_effect",
    "TransformationParameters",
    "PlatformEffectCorrector",
    "semisupervised_transform",
]

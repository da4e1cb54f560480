# src/pybisque/reference.py
"""
Reference-based decomposition

decompose_reference, UncorrectedPipeline, CorrectedPipeline, SemisupervisedPipeline

Flow: restrict genes → pseudobulk → (platform correction) → weighted NNLS per
bulk sample. The three pipeline variants differ only in how the reference and
the bulk matrix are brought to common units; they share the solver stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

import anndata as ad
import numpy as np
import pandas as pd

from .adata_utils import subset_and_normalize
from .config import ReferenceConfig
from .correction import (
    PlatformEffectCorrector,
    TransformationParameters,
    find_overlap,
    semisupervised_transform,
)
from .errors import BisqueError, DegenerateSampleError, DimensionMismatchError, NoOverlapError
from .matrix import ExpressionMatrix, SingleCellData, as_expression_matrix
from .nnls import check_weights, inverse_variance_weights, solve_samples
from .pseudobulk import Pseudobulk, build_pseudobulk

logger = logging.getLogger(__name__)

_NO_EXPRESSION = "Bulk sample has no expressed genes"


@dataclass(frozen=True)
class ReferenceDecomposition:
    proportions: pd.DataFrame               # samples × cell types, rows sum to 1
    reference: pd.DataFrame                 # genes × cell types actually solved against
    sc_proportions: pd.DataFrame            # donors × cell types observed in the reference
    genes_used: pd.Index
    rnorm: pd.Series
    pipeline: str
    transformation: Optional[TransformationParameters] = None
    failures: Dict[str, DegenerateSampleError] = field(default_factory=dict)


# ---------------------------------------------------------------------
# Pipeline variants
# ---------------------------------------------------------------------
class _Pipeline:
    name = "base"

    def __init__(self, config: ReferenceConfig):
        self.config = config

    def prepare(
        self, bulk: pd.DataFrame, pseudobulk: Pseudobulk
    ) -> Tuple[pd.DataFrame, pd.DataFrame, Optional[TransformationParameters]]:
        """Return (reference, bulk) in common units plus any fitted transform."""
        raise NotImplementedError

    def screen(self, bulk: pd.DataFrame) -> Tuple[pd.DataFrame, Dict[str, DegenerateSampleError]]:
        """Drop samples that cannot enter `prepare`; the solver reports the rest."""
        return bulk, {}

    def run(
        self, bulk: pd.DataFrame, pseudobulk: Pseudobulk, weights: np.ndarray
    ) -> ReferenceDecomposition:
        screened, rejected = self.screen(bulk)
        reference, target, params = self.prepare(screened, pseudobulk)
        logger.info(f"Solving {target.shape[1]} bulk sample(s) with the {self.name} pipeline")
        solved = solve_samples(
            target.to_numpy(),
            reference.to_numpy(),
            weights=weights,
            samples=list(target.columns),
            n_jobs=self.config.n_jobs,
            on_degenerate=self.config.on_degenerate,
        )
        failures = {**rejected, **solved.failures}
        ok = solved.ok
        proportions = pd.DataFrame(
            solved.proportions[ok],
            index=pd.Index(np.asarray(solved.samples, dtype=object)[ok], name="sample"),
            columns=reference.columns,
        )
        rnorm = pd.Series(solved.rnorm[ok], index=proportions.index, name="rnorm")
        return ReferenceDecomposition(
            proportions=proportions,
            reference=reference,
            sc_proportions=pseudobulk.sc_proportions,
            genes_used=reference.index,
            rnorm=rnorm,
            pipeline=self.name,
            transformation=params,
            failures={s: failures[s] for s in bulk.columns if s in failures},
        )


class UncorrectedPipeline(_Pipeline):
    """Solve bulk values directly against the single-cell reference."""

    name = "uncorrected"

    def prepare(self, bulk, pseudobulk):
        return pseudobulk.reference, bulk, None


class CorrectedPipeline(_Pipeline):
    """Fit the platform effect on overlapping donors and move the reference to bulk units."""

    name = "corrected"

    def __init__(self, config: ReferenceConfig, overlap: List[str]):
        super().__init__(config)
        if not overlap:
            raise NoOverlapError()
        self.overlap = list(overlap)
        self.corrector = PlatformEffectCorrector(extrapolation=config.extrapolation)

    def prepare(self, bulk, pseudobulk):
        params = self.corrector.fit(
            bulk, pseudobulk.donor_profiles(), self.overlap, reference=pseudobulk.reference
        )
        return self.corrector.transform(pseudobulk.reference, params), bulk, params


class SemisupervisedPipeline(_Pipeline):
    """
    Without overlapping donors: move bulk values onto the pseudobulk scale.

    The transform standardizes each gene across the bulk samples, so the
    estimate for one sample depends on the rest of the batch. Samples with no
    expression at all are rejected before that step and never enter the
    batch statistics.
    """

    name = "semisupervised"

    def screen(self, bulk):
        empty = [str(s) for s, has in zip(bulk.columns, (bulk.to_numpy() > 0).any(axis=0)) if not has]
        if not empty:
            return bulk, {}
        if self.config.on_degenerate == "raise":
            raise DegenerateSampleError(empty[0], reason=_NO_EXPRESSION)
        logger.warning(f"{len(empty)} bulk sample(s) with no expression left out of the semisupervised transform")
        return bulk.drop(columns=empty), {s: DegenerateSampleError(s, reason=_NO_EXPRESSION) for s in empty}

    def prepare(self, bulk, pseudobulk):
        if bulk.shape[1] == 1:
            logger.warning("Semisupervised transform with a single bulk sample maps it to the pseudobulk mean")
        values = semisupervised_transform(bulk.to_numpy(), pseudobulk.donor_profiles().to_numpy())
        return pseudobulk.reference, pd.DataFrame(values, index=bulk.index, columns=bulk.columns), None


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _shared_genes(bulk: ExpressionMatrix, sc_genes: pd.Index, markers: Optional[Iterable[str]]) -> List[str]:
    sc_set = {str(g) for g in sc_genes}
    genes = [g for g in bulk.genes if g in sc_set]
    if markers is not None:
        marker_set = {str(m) for m in markers}
        genes = [g for g in genes if g in marker_set]
    return genes


def _resolve_weights(
    weights: Optional[pd.Series], pseudobulk: Pseudobulk, config: ReferenceConfig
) -> np.ndarray:
    genes = pseudobulk.reference.index
    if weights is not None:
        w = pd.Series(weights)
        w.index = w.index.map(str)
        missing = genes.difference(w.index)
        if len(missing):
            raise DimensionMismatchError(f"No weight for {len(missing)} gene(s): {list(missing[:5])}")
        return check_weights(w.reindex(genes).to_numpy(dtype=np.float64), len(genes))
    if config.weighting == "uniform":
        return np.ones(len(genes))
    return inverse_variance_weights(
        pseudobulk.gene_variance.to_numpy(), pseudobulk.zero_variance.to_numpy()
    )


def select_pipeline(
    use_overlap: bool, overlap: List[str], config: ReferenceConfig
) -> _Pipeline:
    if use_overlap:
        return CorrectedPipeline(config, overlap)
    if config.semisupervised:
        return SemisupervisedPipeline(config)
    return UncorrectedPipeline(config)


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------
def decompose_reference(
    bulk: Union[pd.DataFrame, ExpressionMatrix],
    single_cell: ad.AnnData,
    markers: Optional[Iterable[str]] = None,
    use_overlap: bool = True,
    *,
    cell_type_key: str = "cell_type",
    donor_key: str = "individual_id",
    layer: Optional[str] = None,
    weights: Optional[pd.Series] = None,
    config: Optional[ReferenceConfig] = None,
) -> ReferenceDecomposition:
    """
    Estimate cell-type proportions of every bulk sample from a single-cell reference.

    Parameters
    ----------
    bulk : DataFrame | ExpressionMatrix
        genes × samples non-negative expression.
    single_cell : AnnData
        cells × genes reference; `obs[cell_type_key]` and `obs[donor_key]` label every cell.
    markers : iterable of str | None
        If given, every matrix is restricted to these genes first.
    use_overlap : bool
        Fit the platform effect on donors that are also bulk samples. Requires
        at least one such donor.
    weights : Series | None
        Per-gene solver weights; overrides `config.weighting`.
    config : ReferenceConfig | None

    Returns
    -------
    ReferenceDecomposition
        `proportions` has one row per bulk sample (input order), rows summing to 1.

    Raises
    ------
    DimensionMismatchError, EmptyCellTypeError, EmptyDonorError, NoOverlapError
        Before any sample is solved.
    DegenerateSampleError
        For a sample whose optimum is all-zero (unless config.on_degenerate='collect').
    """
    config = config or ReferenceConfig()
    bulk_m = as_expression_matrix(bulk)

    genes = _shared_genes(bulk_m, single_cell.var_names, markers)
    if not genes:
        raise DimensionMismatchError("No genes shared by the bulk matrix, the single-cell reference and the marker list.")
    if len(genes) < config.warn_min_overlap:
        logger.warning(f"Low gene overlap ({len(genes)}); results may be less stable.")
    logger.info(f"Using {len(genes):,} shared gene(s) across {bulk_m.n_samples} bulk sample(s)")

    sc_adata = subset_and_normalize(single_cell, genes, normalize=config.normalize, layer=layer)
    sc_data = SingleCellData.from_anndata(sc_adata, cell_type_key=cell_type_key, donor_key=donor_key)
    overlap = find_overlap(bulk_m.samples, sc_data.donor_ids)
    if use_overlap:
        logger.info(f"Overlapping donors ({len(overlap)}): {overlap[:10]}")
    pipeline = select_pipeline(use_overlap, overlap, config)

    pseudobulk = build_pseudobulk(sc_data, aggregation=config.aggregation)
    if pseudobulk.reference.shape[1] == 0:
        raise BisqueError("Single-cell reference has no cell types.")

    bulk_m = bulk_m.subset(genes=genes)
    if config.normalize:
        bulk_m = bulk_m.cpm()
    bulk_df = bulk_m.to_frame()

    w = _resolve_weights(weights, pseudobulk, config)
    return pipeline.run(bulk_df, pseudobulk, w)


__all__ = [
    "ReferenceDecomposition",
    "UncorrectedPipeline",
    "CorrectedPipeline",
    "SemisupervisedPipeline",
    "select_pipeline",
    "decompose_reference",
]

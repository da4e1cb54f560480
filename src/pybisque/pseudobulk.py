# src/pybisque/pseudobulk.py
"""
Pseudobulk builder

Aggregates single-cell columns into
  - a reference profile (genes × cell types),
  - per-donor pseudobulk sums (genes × donors),
  - per-donor cell-type counts, and
  - per-gene pooled within-cell-type variance (used for solver weights).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import sparse

from .errors import BisqueError, EmptyCellTypeError, EmptyDonorError
from .matrix import SingleCellData, counts_per_million

logger = logging.getLogger(__name__)

AGGREGATIONS = ("mean", "sum")


def _indicator(codes: np.ndarray, n_groups: int) -> sparse.csr_matrix:
    """cells × groups 0/1 membership matrix."""
    n = len(codes)
    return sparse.csr_matrix(
        (np.ones(n, dtype=np.float64), (np.arange(n), codes)),
        shape=(n, n_groups),
    )


def _group_sums(X: sparse.csr_matrix, membership: sparse.csr_matrix) -> np.ndarray:
    # (groups × cells) @ (cells × genes), returned as genes × groups
    return np.asarray((membership.T @ X).toarray()).T


def _constant_genes(X: sparse.csr_matrix) -> np.ndarray:
    """True where a gene takes one value over every cell (implicit zeros count)."""
    if X.shape[0] == 0:
        return np.ones(X.shape[1], dtype=bool)
    hi = X.max(axis=0).toarray().ravel()
    lo = X.min(axis=0).toarray().ravel()
    return hi == lo


@dataclass(frozen=True)
class Pseudobulk:
    reference: pd.DataFrame        # genes × cell types
    donor_sums: pd.DataFrame       # genes × donors
    cell_counts: pd.DataFrame      # donors × cell types
    gene_variance: pd.Series       # pooled within-cell-type variance
    zero_variance: pd.Series       # True where a gene is constant over all cells
    aggregation: str = "mean"

    @property
    def donor_cells(self) -> pd.Series:
        return self.cell_counts.sum(axis=1)

    @property
    def sc_proportions(self) -> pd.DataFrame:
        """donors × cell types fraction of cells, as observed in the reference."""
        return self.cell_counts.div(self.donor_cells, axis=0)

    def donor_profiles(self) -> pd.DataFrame:
        """Per-donor pseudobulk expressed in the same units as `reference`."""
        if self.aggregation == "mean":
            return self.donor_sums.div(self.donor_cells, axis=1)
        values = counts_per_million(self.donor_sums.to_numpy())
        return pd.DataFrame(values, index=self.donor_sums.index, columns=self.donor_sums.columns)


def build_pseudobulk(single_cell: SingleCellData, aggregation: str = "mean") -> Pseudobulk:
    """
    Build the reference profile and the donor pseudobulk from one single-cell
    dataset.

    Parameters
    ----------
    single_cell : SingleCellData
        cells × genes sparse values with a donor and a cell type per cell.
    aggregation : {'mean', 'sum'}
        'mean' averages each gene over the cells of a type; 'sum' adds them up
        and scales every cell-type column to a total of 1e6.

    Raises
    ------
    EmptyCellTypeError
        A cell type of the label universe has no cells.
    EmptyDonorError
        A donor of the label universe has no cells.
    """
    if aggregation not in AGGREGATIONS:
        raise BisqueError(f"aggregation must be one of {AGGREGATIONS}, got {aggregation!r}")

    X = single_cell.X
    genes = single_cell.genes
    ct_ids = single_cell.cell_type_ids
    donor_ids = single_cell.donor_ids
    ct_codes = np.asarray(single_cell.cell_types.codes)
    donor_codes = np.asarray(single_cell.donors.codes)

    ct_member = _indicator(ct_codes, len(ct_ids))
    donor_member = _indicator(donor_codes, len(donor_ids))

    n_per_ct = np.bincount(ct_codes, minlength=len(ct_ids))
    n_per_donor = np.bincount(donor_codes, minlength=len(donor_ids))
    for ct, n in zip(ct_ids, n_per_ct):
        if n == 0:
            raise EmptyCellTypeError(ct)
    for donor, n in zip(donor_ids, n_per_donor):
        if n == 0:
            raise EmptyDonorError(donor)

    ct_sums = _group_sums(X, ct_member)
    if aggregation == "mean":
        ref = ct_sums / n_per_ct
    else:
        ref = counts_per_million(ct_sums)

    donor_sums = _group_sums(X, donor_member)

    # donors × cell types cell counts
    pair = np.zeros((len(donor_ids), len(ct_ids)), dtype=np.int64)
    np.add.at(pair, (donor_codes, ct_codes), 1)

    # pooled within-type population variance: sum_ct n_ct * var_ct / N
    ct_means = ct_sums / n_per_ct
    ct_sq = _group_sums(X.multiply(X).tocsr(), ct_member) / n_per_ct
    within = np.clip(ct_sq - ct_means ** 2, 0.0, None)
    pooled = (within * n_per_ct).sum(axis=1) / n_per_ct.sum()
    constant = _constant_genes(X)

    if constant.any():
        logger.info(f"Flagged {int(constant.sum())} zero-variance gene(s) in the single-cell reference")
    logger.info(
        f"Pseudobulk built: {len(genes):,} genes, {len(ct_ids)} cell types, "
        f"{len(donor_ids)} donors, {single_cell.n_cells:,} cells (aggregation={aggregation})"
    )

    return Pseudobulk(
        reference=pd.DataFrame(ref, index=genes, columns=ct_ids),
        donor_sums=pd.DataFrame(donor_sums, index=genes, columns=donor_ids),
        cell_counts=pd.DataFrame(pair, index=donor_ids, columns=ct_ids),
        gene_variance=pd.Series(pooled, index=genes, name="variance"),
        zero_variance=pd.Series(constant, index=genes, name="zero_variance"),
        aggregation=aggregation,
    )


__all__ = ["AGGREGATIONS", "Pseudobulk", "build_pseudobulk"]

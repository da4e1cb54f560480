# src/pybisque/matrix.py
"""
Label-indexed expression containers.

ExpressionMatrix, SingleCellData, counts_per_million

Gene, sample, donor and cell-type ids are mapped to integer positions once,
when a container is built (`pandas.Index` / `pandas.Categorical`), and every
later lookup goes through those mappings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import sparse

from .errors import BisqueError, DimensionMismatchError


def _as_id_index(ids: Iterable, what: str) -> pd.Index:
    idx = pd.Index([str(i) for i in ids], dtype=object)
    if not idx.is_unique:
        dups = idx[idx.duplicated()].unique().tolist()[:5]
        raise DimensionMismatchError(f"Duplicate {what} ids: {dups}")
    return idx


def counts_per_million(values: np.ndarray) -> np.ndarray:
    """Scale every column to a total of 1e6; all-zero columns stay zero."""
    lib = values.sum(axis=0)
    lib = np.where(np.isfinite(lib) & (lib > 0), lib, 1.0)
    return values * (1e6 / lib)


@dataclass(frozen=True)
class ExpressionMatrix:
    """
    genes × samples matrix of non-negative finite values.

    `values` is stored as a read-only float64 copy; `genes` and `samples` are
    unique string indexes.
    """

    values: np.ndarray
    genes: pd.Index
    samples: pd.Index

    def __post_init__(self):
        values = np.array(self.values, dtype=np.float64, order="C")
        if values.ndim != 2:
            raise DimensionMismatchError(f"Expected a 2-D matrix, got {values.ndim} dimension(s).")
        genes = _as_id_index(self.genes, "gene")
        samples = _as_id_index(self.samples, "sample")
        if values.shape != (len(genes), len(samples)):
            raise DimensionMismatchError(
                f"Matrix shape {values.shape} does not match "
                f"{len(genes)} genes × {len(samples)} samples."
            )
        if not np.isfinite(values).all():
            raise BisqueError("Expression matrix contains NaN or infinite values.")
        if (values < 0).any():
            raise BisqueError("Expression matrix contains negative values.")
        values.setflags(write=False)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "genes", genes)
        object.__setattr__(self, "samples", samples)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "ExpressionMatrix":
        """Build from a genes × samples DataFrame (index = genes)."""
        try:
            values = df.to_numpy(dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise BisqueError(f"Expression table has non-numeric entries: {e}") from e
        return cls(values=values, genes=df.index, samples=df.columns)

    @property
    def n_genes(self) -> int:
        return len(self.genes)

    @property
    def n_samples(self) -> int:
        return len(self.samples)

    def gene_positions(self, ids: Sequence) -> np.ndarray:
        return _positions(self.genes, ids, "gene")

    def sample_positions(self, ids: Sequence) -> np.ndarray:
        return _positions(self.samples, ids, "sample")

    def subset(self, genes: Optional[Sequence] = None, samples: Optional[Sequence] = None) -> "ExpressionMatrix":
        gi = self.gene_positions(genes) if genes is not None else np.arange(self.n_genes)
        si = self.sample_positions(samples) if samples is not None else np.arange(self.n_samples)
        return ExpressionMatrix(
            values=self.values[np.ix_(gi, si)],
            genes=self.genes[gi],
            samples=self.samples[si],
        )

    def cpm(self) -> "ExpressionMatrix":
        return ExpressionMatrix(counts_per_million(self.values), self.genes, self.samples)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(np.array(self.values), index=self.genes.copy(), columns=self.samples.copy())


def _positions(index: pd.Index, ids: Sequence, what: str) -> np.ndarray:
    ids = [str(i) for i in ids]
    pos = index.get_indexer(ids)
    missing = [i for i, p in zip(ids, pos) if p < 0]
    if missing:
        raise DimensionMismatchError(f"Unknown {what} ids ({len(missing)}): {missing[:5]}")
    return pos


def as_expression_matrix(obj: Union[ExpressionMatrix, pd.DataFrame]) -> ExpressionMatrix:
    if isinstance(obj, ExpressionMatrix):
        return obj
    if isinstance(obj, pd.DataFrame):
        return ExpressionMatrix.from_frame(obj)
    raise TypeError(f"Expected ExpressionMatrix or pandas.DataFrame, got {type(obj).__name__}")


def _labels(values: pd.Series) -> pd.Categorical:
    """Per-cell labels as a Categorical; unused categories of a categorical column are kept."""
    if isinstance(values.dtype, pd.CategoricalDtype):
        cat = pd.Categorical(values)
        return cat.rename_categories([str(c) for c in cat.categories])
    labels = [
        None if (pd.isna(v) or str(v).strip() == "") else str(v)
        for v in values
    ]
    return pd.Categorical(labels)


@dataclass(frozen=True)
class SingleCellData:
    """
    cells × genes expression plus the (donor, cell type) pair of every cell.

    `X` is kept as a float64 CSR matrix in the AnnData orientation; nothing
    downstream densifies it. The categories of `donors` and `cell_types` are
    the donor and cell-type universes; a category without cells is kept so
    callers can detect it.
    """

    X: sparse.csr_matrix
    genes: pd.Index
    cells: pd.Index
    donors: pd.Categorical
    cell_types: pd.Categorical

    def __post_init__(self):
        X = sparse.csr_matrix(self.X, dtype=np.float64)
        genes = _as_id_index(self.genes, "gene")
        cells = _as_id_index(self.cells, "cell")
        if X.shape != (len(cells), len(genes)):
            raise DimensionMismatchError(
                f"Matrix shape {X.shape} does not match {len(cells)} cells × {len(genes)} genes."
            )
        if not np.isfinite(X.data).all():
            raise BisqueError("Single-cell matrix contains NaN or infinite values.")
        if (X.data < 0).any():
            raise BisqueError("Single-cell matrix contains negative values.")
        object.__setattr__(self, "X", X)
        object.__setattr__(self, "genes", genes)
        object.__setattr__(self, "cells", cells)

        n = len(cells)
        for name in ("donors", "cell_types"):
            labels = getattr(self, name)
            if len(labels) != n:
                raise DimensionMismatchError(
                    f"{len(labels)} {name} labels for {n} cells in the single-cell matrix."
                )
            n_missing = int((np.asarray(labels.codes) < 0).sum())
            if n_missing:
                raise BisqueError(f"{n_missing} cell(s) have no {name[:-1].replace('_', ' ')} label.")

    @classmethod
    def from_anndata(
        cls,
        adata,
        cell_type_key: str = "cell_type",
        donor_key: str = "individual_id",
        layer: Optional[str] = None,
    ) -> "SingleCellData":
        for key in (cell_type_key, donor_key):
            if key not in adata.obs.columns:
                raise BisqueError(f"Single-cell obs is missing column: {key}")
        X = adata.layers[layer] if layer else adata.X
        return cls(
            X=X,
            genes=adata.var_names,
            cells=adata.obs_names,
            donors=_labels(adata.obs[donor_key]),
            cell_types=_labels(adata.obs[cell_type_key]),
        )

    @property
    def n_cells(self) -> int:
        return self.X.shape[0]

    @property
    def donor_ids(self) -> pd.Index:
        return pd.Index(self.donors.categories, dtype=object)

    @property
    def cell_type_ids(self) -> pd.Index:
        return pd.Index(self.cell_types.categories, dtype=object)

    def subset_genes(self, genes: Sequence) -> "SingleCellData":
        pos = _positions(self.genes, genes, "gene")
        return SingleCellData(self.X[:, pos], self.genes[pos], self.cells, self.donors, self.cell_types)


__all__ = [
    "ExpressionMatrix",
    "SingleCellData",
    "as_expression_matrix",
    "counts_per_million",
]

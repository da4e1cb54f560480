# src/pybisque/markers.py
"""
Marker-based decomposition
normalize_marker_table, decompose_markers

Scores are relative: within one cluster they rank samples, but two clusters'
scores in the same sample are not comparable (z-scoring removes the scale of
every gene).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

from .config import MarkerConfig
from .errors import BisqueError, InsufficientMarkersError, NoMarkersForClusterError
from .matrix import ExpressionMatrix, as_expression_matrix

logger = logging.getLogger(__name__)

GENE_COLS = ["gene", "genes", "symbol", "gene_symbol", "hgnc_symbol", "feature", "id", "geneid", "name"]
CLUSTER_COLS = ["cluster", "cell_type", "celltype", "cell_type_label", "celltype_label", "label", "cell", "ct"]
WEIGHT_COLS = ["weight", "score", "scores", "logfoldchange", "logfoldchanges", "log2fc", "fold_change"]


def _pick(columns: List[str], candidates: List[str]) -> Optional[str]:
    lower = {c.lower(): c for c in columns}
    return next((lower[c] for c in candidates if c in lower), None)


def normalize_marker_table(markers: pd.DataFrame) -> pd.DataFrame:
    """
    Return a clean (gene, cluster, weight) table.

    - Gene / cluster / weight columns are detected by common names (case-insensitive).
    - Missing weight column or missing weights default to 1.
    - Blank rows and duplicate (gene, cluster) pairs are dropped (first kept).
    """
    cols = [str(c) for c in markers.columns]
    gcol = _pick(cols, GENE_COLS)
    ccol = _pick(cols, CLUSTER_COLS)
    if gcol is None or ccol is None:
        raise BisqueError(f"Marker table needs a gene and a cluster column; found {cols}")
    wcol = _pick(cols, WEIGHT_COLS)

    out = pd.DataFrame({
        "gene": markers[gcol],
        "cluster": markers[ccol],
        "weight": pd.to_numeric(markers[wcol], errors="coerce") if wcol else 1.0,
    })
    out = out[out["gene"].notna() & out["cluster"].notna()]
    out["gene"] = out["gene"].astype(str).str.strip()
    out["cluster"] = out["cluster"].astype(str).str.strip()
    out = out[(out["gene"] != "") & (out["cluster"] != "")]
    out["weight"] = out["weight"].fillna(1.0).astype(np.float64)
    return out.drop_duplicates(subset=["gene", "cluster"], keep="first").reset_index(drop=True)


def _zscore(values: np.ndarray) -> np.ndarray:
    """Per-row z-score across samples; constant rows score 0."""
    mean = values.mean(axis=1, keepdims=True)
    sd = values.std(axis=1, ddof=1, keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        z = (values - mean) / sd
    z[~np.isfinite(z)] = 0.0
    return z


@dataclass(frozen=True)
class MarkerDecomposition:
    scores: pd.DataFrame                 # samples × clusters
    genes_used: Dict[str, List[str]]
    weighted: bool


def decompose_markers(
    bulk: Union[pd.DataFrame, ExpressionMatrix],
    markers: pd.DataFrame,
    weighted: bool = False,
    config: Optional[MarkerConfig] = None,
) -> MarkerDecomposition:
    """
    Relative abundance per cluster from marker genes alone.

    For every cluster the score of a sample is the (weight-averaged if
    `weighted`) mean of its markers' z-scores across samples.

    Parameters
    ----------
    bulk : DataFrame | ExpressionMatrix
        genes × samples non-negative expression; at least two samples.
    markers : DataFrame
        Marker table with gene, cluster and optional weight columns.
    weighted : bool
        Weight markers by the table's weight column (e.g. fold change).
    config : MarkerConfig | None

    Raises
    ------
    NoMarkersForClusterError
        No marker of a cluster is present in the bulk genes.
    InsufficientMarkersError
        Fewer than `config.min_markers` markers remain for a cluster.
    """
    config = config or MarkerConfig()
    bulk_m = as_expression_matrix(bulk)
    if bulk_m.n_samples < 2:
        raise BisqueError("Marker-based decomposition needs at least two bulk samples.")

    table = normalize_marker_table(markers)
    if table.empty:
        raise BisqueError("Marker table is empty.")

    clusters = pd.unique(table["cluster"])

    if config.unique_markers:
        shared = table["gene"].duplicated(keep=False)
        if shared.any():
            logger.info(f"Dropping {int(table.loc[shared, 'gene'].nunique())} gene(s) that mark several clusters")
        table = table[~shared]

    present = table["gene"].isin(set(bulk_m.genes))
    n_absent = int((~present).sum())
    if n_absent:
        logger.info(f"Dropped {n_absent} marker row(s) whose gene is absent from the bulk matrix")

    # validate every cluster before scoring
    per_cluster: Dict[str, pd.DataFrame] = {}
    for cl in clusters:
        rows = table[present & (table["cluster"] == cl)]
        if rows.empty:
            raise NoMarkersForClusterError(cl)
        if config.max_markers is not None:
            rows = rows.sort_values("weight", ascending=False, kind="mergesort").head(int(config.max_markers))
        if len(rows) < config.min_markers:
            raise InsufficientMarkersError(cl, len(rows), config.min_markers)
        if weighted and (~np.isfinite(rows["weight"]) | (rows["weight"] <= 0)).any():
            raise BisqueError(f"Cluster '{cl}' has non-positive or non-finite marker weights.")
        per_cluster[cl] = rows

    values = bulk_m.cpm().values if config.normalize else bulk_m.values
    z = _zscore(values)

    genes = bulk_m.genes
    W = np.zeros((len(genes), len(clusters)), dtype=np.float64)
    for k, cl in enumerate(clusters):
        rows = per_cluster[cl]
        pos = bulk_m.gene_positions(rows["gene"].tolist())
        w = rows["weight"].to_numpy(dtype=np.float64) if weighted else np.ones(len(rows))
        W[pos, k] = w / w.sum()

    scores = pd.DataFrame(
        (W.T @ z).T,
        index=pd.Index(bulk_m.samples, name="sample"),
        columns=pd.Index(clusters, name="cluster"),
    )
    logger.info(
        f"Marker scores for {len(clusters)} cluster(s) over {bulk_m.n_samples} sample(s) "
        f"(weighted={weighted})"
    )
    return MarkerDecomposition(
        scores=scores,
        genes_used={cl: per_cluster[cl]["gene"].tolist() for cl in clusters},
        weighted=weighted,
    )


__all__ = ["normalize_marker_table", "MarkerDecomposition", "decompose_markers"]

# src/pybisque/adata_utils.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc

from .errors import DimensionMismatchError
from .io import clean_gene_ids

logger = logging.getLogger(__name__)


def find_h5ad_files(root_or_file: str) -> List[str]:
    """
    If given a .h5ad file, return [that file].
    If given a directory, return all *.h5ad files under it (non-recursive).
    """
    p = Path(root_or_file)
    if p.is_file() and p.suffix.lower() == ".h5ad":
        return [str(p.resolve())]
    if p.is_dir():
        return [str(q.resolve()) for q in sorted(p.glob("*.h5ad"))]
    raise FileNotFoundError(f"Not a file/dir or missing: {root_or_file}")


def read_h5ad(path: str) -> ad.AnnData:
    """Read a single .h5ad and return an AnnData."""
    return ad.read_h5ad(path)


def concat_adatas(adatas: Iterable[ad.AnnData]) -> ad.AnnData:
    """Concatenate multiple AnnData objects along observations (outer join on genes)."""
    adatas = list(adatas)
    if not adatas:
        raise ValueError("concat_adatas() received no AnnData objects.")
    if len(adatas) == 1:
        return adatas[0]
    return ad.concat(adatas, axis=0, join="outer", label=None, merge="unique")


def clean_var_names(adata: ad.AnnData) -> ad.AnnData:
    """
    Copy whose var_names use the bulk reader's id space (`io.clean_gene_ids`).
    The original names are kept in `var["original_var_name"]`.
    """
    out = adata.copy()
    out.var["original_var_name"] = out.var_names.astype(str)
    out.var_names = clean_gene_ids(pd.Series(out.var_names.astype(str))).values
    if not out.var_names.is_unique:
        logger.warning("Cleaned var_names are not unique; making them unique")
        out.var_names_make_unique()
    return out


def subset_and_normalize(
    adata: ad.AnnData,
    genes: Sequence[str],
    normalize: bool = True,
    layer: Optional[str] = None,
) -> ad.AnnData:
    """
    Copy of `adata` restricted to `genes` (in that order), optionally
    scaled to counts-per-million per cell over those genes.

    The input object is left untouched.
    """
    if not adata.var_names.is_unique:
        raise DimensionMismatchError("Single-cell var_names are not unique; call var_names_make_unique() first.")

    tmp = adata[:, list(genes)].copy()
    if layer:
        tmp.X = tmp.layers[layer]
    tmp.X = tmp.X.astype(np.float64)

    if normalize:
        sc.pp.normalize_total(tmp, target_sum=1e6)
        logger.info(f"Normalized {tmp.n_obs:,} cells to counts-per-million over {tmp.n_vars:,} genes")
    return tmp


__all__ = [
    "find_h5ad_files",
    "read_h5ad",
    "concat_adatas",
    "clean_var_names",
    "subset_and_normalize",
]

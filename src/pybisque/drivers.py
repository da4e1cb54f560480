from __future__ import annotations

import logging
import os
from dataclasses import asdict
from typing import Dict, Optional

import pandas as pd

from .adata_utils import clean_var_names, concat_adatas, find_h5ad_files, read_h5ad
from .config import MarkerConfig, ReferenceConfig
from .io import (
    clean_gene_ids,
    read_bulk_counts,
    read_gene_list,
    read_marker_table,
    write_json,
    write_table,
)
from .markers import decompose_markers, normalize_marker_table
from .reference import decompose_reference
from .utils import as_bool, as_optional_int, as_optional_str

logger = logging.getLogger(__name__)


def _load_reference(ref_h5ad: str):
    files = find_h5ad_files(ref_h5ad)
    if not files:
        raise FileNotFoundError(f"No .h5ad files under: {ref_h5ad}")
    logger.info(f"Reading {len(files)} .h5ad file(s)")
    adata = concat_adatas(read_h5ad(f) for f in files)
    return clean_var_names(adata)


def _wrote(path: str) -> str:
    print(f"[pybisque] Wrote {path}")
    return path


def run_reference(*, ref_h5ad, bulk, outdir, bulk_gene_col="gene", markers="", layer="",
                  cell_type_key="cell_type", donor_key="individual_id",
                  use_overlap="true", semisupervised="false", aggregation="mean", normalize="true",
                  weighting="inverse_variance", extrapolation="uniform", on_degenerate="raise",
                  n_jobs="1", warn_min_overlap="200") -> Dict[str, str]:
    config = ReferenceConfig(
        aggregation=str(aggregation),
        normalize=as_bool(normalize),
        weighting=str(weighting),
        extrapolation=str(extrapolation),
        semisupervised=as_bool(semisupervised),
        on_degenerate=str(on_degenerate),
        n_jobs=int(n_jobs),
        warn_min_overlap=int(warn_min_overlap),
    )
    adata = _load_reference(ref_h5ad)
    bulk_df = read_bulk_counts(bulk, gene_col=as_optional_str(bulk_gene_col))
    marker_path = as_optional_str(markers)
    gene_list = read_gene_list(marker_path) if marker_path else None

    result = decompose_reference(
        bulk_df,
        adata,
        markers=gene_list,
        use_overlap=as_bool(use_overlap),
        cell_type_key=cell_type_key,
        donor_key=donor_key,
        layer=as_optional_str(layer),
        config=config,
    )

    os.makedirs(outdir, exist_ok=True)
    paths = {
        "proportions": _wrote(write_table(result.proportions, os.path.join(outdir, "bulk_proportions.tsv"),
                                          index_label="sample")),
        "reference": _wrote(write_table(result.reference, os.path.join(outdir, "reference_profile.tsv"),
                                        index_label="gene")),
        "sc_proportions": _wrote(write_table(result.sc_proportions, os.path.join(outdir, "sc_proportions.tsv"),
                                             index_label="donor")),
    }

    genes_path = os.path.join(outdir, "genes_used.txt")
    with open(genes_path, "w", encoding="utf-8") as f:
        f.write("\n".join(map(str, result.genes_used)) + "\n")
    paths["genes_used"] = _wrote(genes_path)

    if result.transformation is not None:
        paths["transformation"] = _wrote(write_table(
            result.transformation.to_frame(), os.path.join(outdir, "transformation.tsv"), index_label="gene"))

    if result.failures:
        fail = pd.DataFrame({"sample": list(result.failures), "error": [str(e) for e in result.failures.values()]})
        paths["failures"] = _wrote(write_table(fail, os.path.join(outdir, "failures.tsv"), index=False))
        logger.warning(f"{len(result.failures)} bulk sample(s) could not be decomposed")

    summary = {
        "mode": "reference",
        "pipeline": result.pipeline,
        "n_samples": int(result.proportions.shape[0]),
        "n_failed": len(result.failures),
        "n_genes": len(result.genes_used),
        "cell_types": [str(c) for c in result.proportions.columns],
        "n_clamped_genes": (int(result.transformation.clamped.sum())
                            if result.transformation is not None else 0),
        "config": asdict(config),
    }
    paths["summary"] = _wrote(write_json(summary, os.path.join(outdir, "summary.json")))
    return paths


def run_markers(*, bulk, markers, outdir, bulk_gene_col="gene", weighted="false", normalize="true",
                min_markers="1", max_markers="", unique_markers="false") -> Dict[str, str]:
    marker_path: Optional[str] = as_optional_str(markers)
    if not marker_path:
        raise ValueError("Marker mode needs a marker table (--markers).")
    config = MarkerConfig(
        normalize=as_bool(normalize),
        min_markers=int(min_markers),
        max_markers=as_optional_int(max_markers),
        unique_markers=as_bool(unique_markers),
    )
    bulk_df = read_bulk_counts(bulk, gene_col=as_optional_str(bulk_gene_col))
    table = normalize_marker_table(read_marker_table(marker_path))
    table["gene"] = clean_gene_ids(table["gene"]).values

    result = decompose_markers(bulk_df, table, weighted=as_bool(weighted), config=config)

    os.makedirs(outdir, exist_ok=True)
    paths = {
        "scores": _wrote(write_table(result.scores, os.path.join(outdir, "marker_scores.tsv"), index_label="sample")),
    }
    used = pd.DataFrame(
        [(cl, g) for cl, genes in result.genes_used.items() for g in genes],
        columns=["cluster", "gene"],
    )
    paths["genes_used"] = _wrote(write_table(used, os.path.join(outdir, "genes_used.tsv"), index=False))

    summary = {
        "mode": "marker",
        "weighted": result.weighted,
        "n_samples": int(result.scores.shape[0]),
        "clusters": {str(cl): len(g) for cl, g in result.genes_used.items()},
        "config": asdict(config),
    }
    paths["summary"] = _wrote(write_json(summary, os.path.join(outdir, "summary.json")))
    return paths

# src/pybisque/cli.py
from __future__ import annotations

import argparse
import logging
import sys

from .config import USER_DEFAULTS, resolve_paths
from .errors import BisqueError
from .utils import timestamped_run_root


def _D(key: str, fallback):
    """pull from USER_DEFAULTS with a safe fallback"""
    return USER_DEFAULTS.get(key, fallback)


def _parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        "pybisque",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        description="Estimate cell-type composition of bulk RNA-seq samples "
                    "(reference mode: single-cell reference; marker mode: marker genes only).",
    )
    ap.add_argument("--mode", default=_D("mode", "reference"), choices=["reference", "marker"])

    # ---------- Inputs ----------
    ap.add_argument("--ref_h5ad",      default=_D("ref_h5ad", ""), help=".h5ad file or folder of .h5ad files")
    ap.add_argument("--bulk",          default=_D("bulk", ""), help="genes × samples counts table")
    ap.add_argument("--bulk_gene_col", default=_D("bulk_gene_col", "gene"))
    ap.add_argument("--markers",       default=_D("markers", ""),
                    help="reference mode: gene list (first column); marker mode: gene/cluster/weight table")
    ap.add_argument("--layer",         default=_D("layer", ""), help="AnnData layer with raw counts (default X)")

    # ---------- Single-cell labels ----------
    ap.add_argument("--cell_type_key", default=_D("cell_type_key", "cell_type"))
    ap.add_argument("--donor_key",     default=_D("donor_key", "individual_id"))

    # ---------- Outputs ----------
    ap.add_argument("--outdir", default=_D("outdir", ""))

    # ---------- Reference mode (strings on purpose; drivers normalize) ----------
    ap.add_argument("--use_overlap",      default=_D("use_overlap", "true"))
    ap.add_argument("--semisupervised",   default=_D("semisupervised", "false"))
    ap.add_argument("--aggregation",      default=_D("aggregation", "mean"), choices=["mean", "sum"])
    ap.add_argument("--normalize",        default=_D("normalize", "true"))
    ap.add_argument("--weighting",        default=_D("weighting", "inverse_variance"),
                    choices=["inverse_variance", "uniform"])
    ap.add_argument("--extrapolation",    default=_D("extrapolation", "uniform"), choices=["uniform", "scale_only"])
    ap.add_argument("--on_degenerate",    default=_D("on_degenerate", "raise"), choices=["raise", "collect"])
    ap.add_argument("--n_jobs",           default=_D("n_jobs", "1"))
    ap.add_argument("--warn_min_overlap", default=_D("warn_min_overlap", "200"))

    # ---------- Marker mode ----------
    ap.add_argument("--weighted",       default=_D("weighted", "false"))
    ap.add_argument("--min_markers",    default=_D("min_markers", "1"))
    ap.add_argument("--max_markers",    default=_D("max_markers", ""))
    ap.add_argument("--unique_markers", default=_D("unique_markers", "false"))

    ap.add_argument("-v", "--verbose", action="store_true", help="DEBUG logging")
    return ap.parse_args(argv)


def main(argv=None) -> None:
    a = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if a.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    # --- resolve paths ---
    paths = resolve_paths(a)
    bulk_abs, ref_abs, markers_abs = paths["bulk"], paths["ref_h5ad"], paths["markers"]

    if not bulk_abs:
        raise SystemExit("Bulk file required (--bulk).")
    if a.mode == "reference" and not ref_abs:
        raise SystemExit("Reference mode needs --ref_h5ad (file or folder).")
    if a.mode == "marker" and not markers_abs:
        raise SystemExit("Marker mode needs --markers (marker table).")

    outdir = paths["outdir"] or timestamped_run_root()

    from .drivers import run_markers, run_reference  # import late

    try:
        if a.mode == "reference":
            run_reference(
                ref_h5ad=ref_abs,
                bulk=bulk_abs,
                outdir=outdir,
                bulk_gene_col=a.bulk_gene_col,
                markers=markers_abs or "",
                layer=a.layer,
                cell_type_key=a.cell_type_key,
                donor_key=a.donor_key,
                use_overlap=a.use_overlap,
                semisupervised=a.semisupervised,
                aggregation=a.aggregation,
                normalize=a.normalize,
                weighting=a.weighting,
                extrapolation=a.extrapolation,
                on_degenerate=a.on_degenerate,
                n_jobs=a.n_jobs,
                warn_min_overlap=a.warn_min_overlap,
            )
        else:
            run_markers(
                bulk=bulk_abs,
                markers=markers_abs,
                outdir=outdir,
                bulk_gene_col=a.bulk_gene_col,
                weighted=a.weighted,
                normalize=a.normalize,
                min_markers=a.min_markers,
                max_markers=a.max_markers,
                unique_markers=a.unique_markers,
            )
    except BisqueError as e:
        raise SystemExit(f"[pybisque] {type(e).__name__}: {e}")
    print(f"[pybisque] Done. Outputs in {outdir}")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(130)

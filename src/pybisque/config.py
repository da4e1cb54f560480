#!/usr/bin/env python3
"""
pybisque.config

Contains:
- USER_DEFAULTS: baseline defaults for CLI & drivers
- ReferenceConfig / MarkerConfig: validated engine options
- resolve_paths(args): expand user paths, normalize relative ones
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import BisqueError


# -------------------------------------------------------------
# Default user-configurable parameters (used by CLI & drivers)
# -------------------------------------------------------------
# Central defaults used by the CLI. Make sure EVERY key the CLI reads exists here.
USER_DEFAULTS = {
    # Inputs
    "mode":          "reference",   # reference | marker
    "ref_h5ad":      "",            # .h5ad file or folder of .h5ad files
    "bulk":          "",
    "bulk_gene_col": "gene",        # "None" or "" means auto-detect
    "markers":       "",            # reference: gene list (first column); marker: marker table
    "layer":         "",

    # Single-cell labels
    "cell_type_key": "cell_type",
    "donor_key":     "individual_id",

    # Outputs
    "outdir": "",

    # Engine tuning (strings on purpose; drivers normalize)
    "use_overlap":      "true",
    "semisupervised":   "false",
    "aggregation":      "mean",             # mean | sum
    "normalize":        "true",
    "weighting":        "inverse_variance", # inverse_variance | uniform
    "extrapolation":    "uniform",          # uniform | scale_only
    "on_degenerate":    "raise",            # raise | collect
    "n_jobs":           "1",
    "warn_min_overlap": "200",

    # Marker mode
    "weighted":       "false",
    "min_markers":    "1",
    "max_markers":    "",
    "unique_markers": "false",
}


def _choice(name: str, value: str, allowed) -> None:
    if value not in allowed:
        raise BisqueError(f"{name} must be one of {tuple(allowed)}, got {value!r}")


@dataclass(frozen=True)
class ReferenceConfig:
    """Options of reference-based decomposition."""

    aggregation: str = "mean"
    normalize: bool = True
    weighting: str = "inverse_variance"
    extrapolation: str = "uniform"
    semisupervised: bool = False
    on_degenerate: str = "raise"
    n_jobs: int = 1
    warn_min_overlap: int = 200

    def __post_init__(self):
        _choice("aggregation", self.aggregation, ("mean", "sum"))
        _choice("weighting", self.weighting, ("inverse_variance", "uniform"))
        _choice("extrapolation", self.extrapolation, ("uniform", "scale_only"))
        _choice("on_degenerate", self.on_degenerate, ("raise", "collect"))
        if int(self.n_jobs) < 1:
            raise BisqueError(f"n_jobs must be >= 1, got {self.n_jobs}")
        if int(self.warn_min_overlap) < 0:
            raise BisqueError("warn_min_overlap must be >= 0")


@dataclass(frozen=True)
class MarkerConfig:
    """Options of marker-based decomposition."""

    normalize: bool = True
    min_markers: int = 1
    max_markers: Optional[int] = None
    unique_markers: bool = False

    def __post_init__(self):
        if int(self.min_markers) < 1:
            raise BisqueError(f"min_markers must be >= 1, got {self.min_markers}")
        if self.max_markers is not None and int(self.max_markers) < int(self.min_markers):
            raise BisqueError("max_markers must be >= min_markers")


# -------------------------------------------------------------
# Helper: normalize and expand paths
# -------------------------------------------------------------
def _expand_path(p: Optional[str]) -> Optional[str]:
    """Expand ~ and make absolute, or None if blank."""
    if p is None:
        return None
    p = str(p).strip()
    if not p:
        return None
    path = Path(p).expanduser()
    return str(path if path.is_absolute() else path.resolve())


def resolve_paths(args: Any) -> Dict[str, Optional[str]]:
    """
    Normalize all input/output paths in a CLI namespace or dict.

    Works with argparse.Namespace or plain dict.
    Returns a dict of resolved absolute paths (None for blanks).
    """
    if hasattr(args, "__dict__"):
        items = vars(args)
    elif isinstance(args, dict):
        items = args
    else:
        raise TypeError("resolve_paths() expects dict or argparse.Namespace")

    keys = ["ref_h5ad", "bulk", "markers", "outdir"]
    return {k: _expand_path(items.get(k)) for k in keys}


# -------------------------------------------------------------
# Optional: run as script to print defaults
# -------------------------------------------------------------
if __name__ == "__main__":
    import json
    print(json.dumps(USER_DEFAULTS, indent=2))

# src/pybisque/utils.py
from __future__ import annotations
from pathlib import Path
from datetime import datetime
from typing import Optional

TRUE_STRINGS = {"1", "t", "true", "yes", "y", "on"}
FALSE_STRINGS = {"0", "f", "false", "no", "n", "off", ""}


def timestamped_run_root(root_name: str = "pybisque_runs") -> str:
    """~/pybisque_runs/2026-10-19_153012"""
    stamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    root = Path.home() / root_name / stamp
    root.mkdir(parents=True, exist_ok=True)
    return str(root)


def as_bool(v) -> bool:
    """'true'/'false'-style CLI strings (and real bools) to bool."""
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in TRUE_STRINGS:
        return True
    if s in FALSE_STRINGS:
        return False
    raise ValueError(f"Not a boolean value: {v!r}")


def as_optional_int(v) -> Optional[int]:
    if v is None:
        return None
    s = str(v).strip()
    if s.lower() in {"", "none"}:
        return None
    return int(s)


def as_optional_str(v) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return None if s.lower() in {"", "none"} else s


__all__ = ["timestamped_run_root", "as_bool", "as_optional_int", "as_optional_str"]

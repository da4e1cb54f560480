# src/pybisque/io.py
from __future__ import annotations

import csv
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

GENE_CANDIDATES = [
    "ensembl_gene_id", "ensembl", "ensembl_id", "gene_id",
    "gene", "genes", "gene_symbol", "gene_symbols", "symbol", "gene_name", "hgnc_symbol",
    "ID", "Name", "Gene", "GeneID", "Gene_Symbol", "Gene.Name",
]


def load_table_auto(path: str, index_col: Optional[int] = None) -> pd.DataFrame:
    """
    Load a delimited table with delimiter detection.

    - .csv → comma; .tsv / .txt → tab; otherwise sniff between [',', '\\t', ';', '|']
    - Lines starting with '#' are comments
    - UTF-8 first, latin-1 as fallback
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Table not found: {path}")

    ext = p.suffix.lower()
    if ext == ".csv":
        sep = ","
    elif ext in {".tsv", ".txt"}:
        sep = "\t"
    else:
        with p.open("r", encoding="utf-8", errors="ignore", newline="") as f:
            sample = f.read(8192)
        try:
            sep = csv.Sniffer().sniff(sample, delimiters=[",", "\t", ";", "|"]).delimiter
        except csv.Error:
            sep = ","

    try:
        return pd.read_csv(path, sep=sep, index_col=index_col, comment="#", low_memory=False)
    except UnicodeDecodeError:
        return pd.read_csv(path, sep=sep, index_col=index_col, comment="#", low_memory=False, encoding="latin-1")


def _detect_gene_col(df: pd.DataFrame, gene_col: Optional[str]) -> str:
    if gene_col and gene_col in df.columns:
        return gene_col
    gcol = next((c for c in GENE_CANDIDATES if c in df.columns), None)
    if gcol is None:
        # first non-numeric column; else first column
        nonnum = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
        gcol = nonnum[0] if nonnum else df.columns[0]
    return gcol


def clean_gene_ids(s: pd.Series) -> pd.Series:
    """Drop Ensembl version suffix (.10 etc.) and normalize to upper-case strings."""
    return s.astype(str).str.replace(r"\.\d+$", "", regex=True).str.upper().str.strip()


def read_bulk_counts(path: str, gene_col: Optional[str] = None, clean_ids: bool = True) -> pd.DataFrame:
    """
    Return a numeric genes × samples matrix indexed by gene id.

    - Non-numeric sample columns are coerced, fully non-numeric ones dropped.
    - Gene ids lose Ensembl version suffixes and are upper-cased when `clean_ids`.
    - Duplicate genes keep the first occurrence.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Bulk file not found: {path}")
    df = load_table_auto(path)
    gcol = _detect_gene_col(df, gene_col)

    for c in df.columns:
        if c != gcol:
            df[c] = pd.to_numeric(df[c], errors="coerce")
    num = df.drop(columns=[gcol]).select_dtypes(include=[np.number]).dropna(axis=1, how="all")
    if num.shape[1] == 0:
        raise ValueError("No numeric sample columns found in bulk file.")

    idx = clean_gene_ids(df[gcol]) if clean_ids else df[gcol].astype(str)
    counts = num.fillna(0.0)
    counts.index = idx.values
    counts.columns = [str(c) for c in counts.columns]
    return counts[~counts.index.duplicated(keep="first")]


def read_marker_table(path: str) -> pd.DataFrame:
    return load_table_auto(path)


def read_gene_list(path: str, clean_ids: bool = True) -> List[str]:
    """Gene ids from the first column of a table (header expected)."""
    df = load_table_auto(path)
    genes = df.iloc[:, 0].dropna().astype(str).str.strip()
    if clean_ids:
        genes = clean_gene_ids(genes)
    return list(dict.fromkeys(genes[genes != ""]))


def write_table(df: pd.DataFrame, path: str, index_label: Optional[str] = None, index: bool = True) -> str:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t", index=index, index_label=index_label if index else None, encoding="utf-8")
    return str(path)


def write_json(obj: Dict[str, Any], path: str) -> str:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
    return str(path)


__all__ = [
    "load_table_auto",
    "clean_gene_ids",
    "read_bulk_counts",
    "read_marker_table",
    "read_gene_list",
    "write_table",
    "write_json",
]

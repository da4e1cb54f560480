from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from pybisque.io import (
    clean_gene_ids,
    load_table_auto,
    read_bulk_counts,
    read_gene_list,
    write_table,
)


def test_read_bulk_counts_cleans_gene_ids(tmp_path: Path):
    p = tmp_path / "bulk.csv"
    p.write_text(
        "gene_id,S1,S2,note\n"
        "ENSG0001.5,1,2,x\n"
        "ensg0002,3,4,y\n"
        "ENSG0001.7,9,9,z\n",
        encoding="utf-8",
    )
    df = read_bulk_counts(str(p))
    assert list(df.index) == ["ENSG0001", "ENSG0002"]
    assert list(df.columns) == ["S1", "S2"]
    assert df.loc["ENSG0001"].tolist() == [1.0, 2.0]


def test_read_bulk_counts_explicit_gene_column_and_tsv(tmp_path: Path):
    p = tmp_path / "bulk.tsv"
    p.write_text("sym\tA\tB\nabc\t1\t0\ndef\t0\t1\n", encoding="utf-8")
    df = read_bulk_counts(str(p), gene_col="sym")
    assert list(df.index) == ["ABC", "DEF"]


def test_read_bulk_counts_errors(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        read_bulk_counts(str(tmp_path / "missing.csv"))
    p = tmp_path / "words.csv"
    p.write_text("gene,a\ng1,x\n", encoding="utf-8")
    with pytest.raises(ValueError, match="numeric"):
        read_bulk_counts(str(p))


def test_sniffed_delimiter(tmp_path: Path):
    p = tmp_path / "table.dat"
    p.write_text("gene;cluster\nG1;A\nG2;B\n", encoding="utf-8")
    df = load_table_auto(str(p))
    assert list(df.columns) == ["gene", "cluster"]


def test_read_gene_list_dedupes(tmp_path: Path):
    p = tmp_path / "genes.csv"
    p.write_text("gene\nabc.1\nABC\ndef\n", encoding="utf-8")
    assert read_gene_list(str(p)) == ["ABC", "DEF"]
    assert read_gene_list(str(p), clean_ids=False) == ["abc.1", "ABC", "def"]


def test_clean_gene_ids():
    out = clean_gene_ids(pd.Series(["ensg1.12", " Actb ", "X.Y"]))
    assert out.tolist() == ["ENSG1", "ACTB", "X.Y"]


def test_write_table(tmp_path: Path):
    df = pd.DataFrame({"a": [1.0]}, index=["s1"])
    out = write_table(df, str(tmp_path / "sub" / "t.tsv"), index_label="sample")
    assert Path(out).read_text(encoding="utf-8").splitlines()[0] == "sample\ta"

from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from pybisque.cli import main
from pybisque.drivers import run_markers, run_reference


@pytest.fixture
def inputs(tmp_path: Path, sim, sc_overlap):
    h5ad = tmp_path / "ref.h5ad"
    sc_overlap.copy().write_h5ad(h5ad)
    bulk = tmp_path / "bulk.csv"
    sim.bulk.to_csv(bulk, index_label="gene")
    markers = tmp_path / "markers.csv"
    sim.markers.to_csv(markers, index=False)
    return {"ref_h5ad": str(h5ad), "bulk": str(bulk), "markers": str(markers)}


def test_run_reference_writes_outputs(tmp_path: Path, inputs):
    out = tmp_path / "out"
    paths = run_reference(ref_h5ad=inputs["ref_h5ad"], bulk=inputs["bulk"], outdir=str(out))
    for key in ("proportions", "reference", "sc_proportions", "genes_used", "transformation", "summary"):
        assert Path(paths[key]).exists(), key
    assert "failures" not in paths

    props = pd.read_csv(paths["proportions"], sep="\t", index_col="sample")
    assert props.shape == (10, 5)
    np.testing.assert_allclose(props.sum(axis=1), 1.0, atol=1e-6)

    summary = json.loads(Path(paths["summary"]).read_text(encoding="utf-8"))
    assert summary["pipeline"] == "corrected"
    assert summary["n_samples"] == 10
    assert summary["config"]["aggregation"] == "mean"


def test_run_reference_options_are_parsed_from_strings(tmp_path: Path, inputs):
    paths = run_reference(
        ref_h5ad=inputs["ref_h5ad"],
        bulk=inputs["bulk"],
        outdir=str(tmp_path / "out"),
        markers=inputs["markers"],
        use_overlap="false",
        semisupervised="true",
        n_jobs="2",
    )
    summary = json.loads(Path(paths["summary"]).read_text(encoding="utf-8"))
    assert summary["pipeline"] == "semisupervised"
    assert summary["n_genes"] == 50
    assert "transformation" not in paths


def test_run_markers_writes_outputs(tmp_path: Path, inputs):
    paths = run_markers(bulk=inputs["bulk"], markers=inputs["markers"], outdir=str(tmp_path / "m"), weighted="true")
    scores = pd.read_csv(paths["scores"], sep="\t", index_col="sample")
    assert scores.shape == (10, 5)
    used = pd.read_csv(paths["genes_used"], sep="\t")
    assert list(used.columns) == ["cluster", "gene"]
    assert len(used) == 50


def test_cli_marker_mode(tmp_path: Path, inputs, capsys):
    out = tmp_path / "cli"
    main(["--mode", "marker", "--bulk", inputs["bulk"], "--markers", inputs["markers"], "--outdir", str(out)])
    assert (out / "marker_scores.tsv").exists()
    assert "[pybisque] Done." in capsys.readouterr().out


def test_cli_requires_bulk():
    with pytest.raises(SystemExit):
        main(["--mode", "marker", "--markers", "m.csv"])

from __future__ import annotations

import pytest

from pybisque import simulate_data

OVERLAP = [f"Individual_{i}" for i in range(1, 6)]


@pytest.fixture(scope="session")
def sim():
    return simulate_data(seed=42)


@pytest.fixture(scope="session")
def sc_overlap(sim):
    """Single-cell reference restricted to the first five individuals."""
    adata = sim.single_cell
    return adata[adata.obs["individual_id"].isin(OVERLAP)].copy()

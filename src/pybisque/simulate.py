# src/pybisque/simulate.py
"""
Synthetic paired single-cell / bulk data with known proportions.

Only used to build test fixtures and examples; the engine never calls it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import anndata as ad
import numpy as np
import pandas as pd

DEFAULT_CELL_TYPES = ("Neurons", "Astrocytes", "Microglia", "Oligodendrocytes", "Endothelial Cells")
DEFAULT_AVG_PROPS = (0.5, 0.2, 0.1, 0.15, 0.05)


@dataclass(frozen=True)
class SimulatedData:
    single_cell: ad.AnnData        # cells × genes counts; obs: cell_type, individual_id
    bulk: pd.DataFrame             # genes × individuals counts
    proportions: pd.DataFrame      # individuals × cell types (truth used for bulk)
    markers: pd.DataFrame          # gene, cluster, weight
    platform_scale: pd.Series      # per-gene bulk / single-cell scale used


def simulate_data(
    n_individuals: int = 10,
    n_genes: int = 100,
    cells_per_individual: int = 500,
    cell_types: Sequence[str] = DEFAULT_CELL_TYPES,
    avg_props: Sequence[float] = DEFAULT_AVG_PROPS,
    *,
    n_markers_per_type: Optional[int] = None,
    marker_fold: float = 8.0,
    concentration: float = 30.0,
    platform_scale_sd: float = 0.3,
    platform_offset: float = 0.0,
    library_size: float = 1000.0,
    bulk_cells: int = 1000,
    seed: int = 0,
) -> SimulatedData:
    """
    Simulate a single-cell reference and bulk samples for the same individuals.

    Model
    -----
    - gene × cell-type means: lognormal baseline × lognormal fold, with a block
      of `n_markers_per_type` genes per type raised `marker_fold` times in that
      type; every type is scaled to the same expected library size.
    - per-individual proportions ~ Dirichlet(avg_props × concentration).
    - single cells: multinomial cell-type counts, Poisson counts with a small
      per-cell size factor.
    - bulk: Poisson counts of `bulk_cells` cells mixed at the cell-type fractions
      each individual contributed to the single-cell data,
      each gene multiplied by a lognormal platform scale (sd `platform_scale_sd`)
      plus `platform_offset` per cell.
    """
    cell_types = [str(c) for c in cell_types]
    avg = np.asarray(avg_props, dtype=np.float64)
    n_ct = len(cell_types)
    if avg.shape != (n_ct,):
        raise ValueError(f"avg_props has {avg.size} entries for {n_ct} cell types.")
    if (avg <= 0).any():
        raise ValueError("avg_props must be positive.")
    avg = avg / avg.sum()
    if n_markers_per_type is None:
        n_markers_per_type = max(1, n_genes // (2 * n_ct))
    if n_markers_per_type * n_ct > n_genes:
        raise ValueError("Not enough genes for the requested marker blocks.")

    rng = np.random.default_rng(seed)
    genes = [f"Gene_{g + 1}" for g in range(n_genes)]
    individuals = [f"Individual_{i + 1}" for i in range(n_individuals)]

    # --- expression model ---
    base = rng.lognormal(mean=0.0, sigma=0.5, size=n_genes)
    fold = rng.lognormal(mean=0.0, sigma=0.5, size=(n_genes, n_ct))
    for c in range(n_ct):
        fold[c * n_markers_per_type:(c + 1) * n_markers_per_type, c] *= marker_fold
    means = base[:, None] * fold
    means *= library_size / means.sum(axis=0)

    target = rng.dirichlet(avg * concentration, size=n_individuals)
    cell_counts = np.vstack([rng.multinomial(cells_per_individual, p) for p in target])
    # the bulk mixes the cells each donor actually contributed
    props = cell_counts / cells_per_individual

    # --- single cells ---
    blocks, ct_labels, donor_labels = [], [], []
    for i, ind in enumerate(individuals):
        labels = np.repeat(np.arange(n_ct), cell_counts[i])
        size_factor = rng.lognormal(mean=0.0, sigma=0.1, size=len(labels))
        blocks.append(rng.poisson(means[:, labels].T * size_factor[:, None]))
        ct_labels.extend(cell_types[c] for c in labels)
        donor_labels.extend([ind] * len(labels))

    X = np.vstack(blocks).astype(np.float32)
    obs = pd.DataFrame(
        {"cell_type": ct_labels, "individual_id": donor_labels},
        index=[f"Cell_{k + 1}" for k in range(X.shape[0])],
    )
    single_cell = ad.AnnData(X=X, obs=obs, var=pd.DataFrame(index=genes))

    # --- bulk ---
    scale = (
        rng.lognormal(mean=0.0, sigma=platform_scale_sd, size=n_genes)
        if platform_scale_sd > 0 else np.ones(n_genes)
    )
    mix = means @ props.T
    expected = (scale[:, None] * mix + platform_offset) * bulk_cells
    bulk = pd.DataFrame(rng.poisson(np.clip(expected, 0.0, None)), index=genes, columns=individuals)

    # --- marker table ---
    rows = []
    for c, ct in enumerate(cell_types):
        others = np.delete(means, c, axis=1).mean(axis=1)
        for g in range(c * n_markers_per_type, (c + 1) * n_markers_per_type):
            lfc = float(np.log2(means[g, c] / others[g]))
            rows.append((genes[g], ct, max(lfc, 0.1)))

    return SimulatedData(
        single_cell=single_cell,
        bulk=bulk,
        proportions=pd.DataFrame(props, index=individuals, columns=cell_types),
        markers=pd.DataFrame(rows, columns=["gene", "cluster", "weight"]),
        platform_scale=pd.Series(scale, index=genes, name="scale"),
    )


__all__ = ["DEFAULT_CELL_TYPES", "DEFAULT_AVG_PROPS", "SimulatedData", "simulate_data"]

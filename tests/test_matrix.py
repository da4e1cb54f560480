from __future__ import annotations

import anndata as ad
import numpy as np
import pandas as pd
import pytest
from scipy import sparse

from pybisque.errors import BisqueError, DimensionMismatchError
from pybisque.matrix import ExpressionMatrix, SingleCellData, counts_per_million


def _frame():
    return pd.DataFrame(
        [[1.0, 0.0, 4.0], [3.0, 0.0, 6.0]],
        index=["g1", "g2"],
        columns=["s1", "s2", "s3"],
    )


def test_from_frame_keeps_ids_and_is_read_only():
    m = ExpressionMatrix.from_frame(_frame())
    assert list(m.genes) == ["g1", "g2"]
    assert list(m.samples) == ["s1", "s2", "s3"]
    assert (m.n_genes, m.n_samples) == (2, 3)
    assert not m.values.flags.writeable
    with pytest.raises(ValueError):
        m.values[0, 0] = 5.0


def test_rejects_negative_and_non_finite_values():
    df = _frame()
    df.iloc[0, 0] = -1.0
    with pytest.raises(BisqueError, match="negative"):
        ExpressionMatrix.from_frame(df)
    df.iloc[0, 0] = np.nan
    with pytest.raises(BisqueError, match="NaN"):
        ExpressionMatrix.from_frame(df)


def test_rejects_duplicate_ids_and_bad_shape():
    df = _frame()
    df.index = ["g1", "g1"]
    with pytest.raises(DimensionMismatchError, match="Duplicate gene"):
        ExpressionMatrix.from_frame(df)
    with pytest.raises(DimensionMismatchError):
        ExpressionMatrix(np.zeros((2, 2)), genes=["a", "b"], samples=["x", "y", "z"])


def test_subset_follows_requested_order():
    m = ExpressionMatrix.from_frame(_frame())
    sub = m.subset(genes=["g2", "g1"], samples=["s3", "s1"])
    assert list(sub.genes) == ["g2", "g1"]
    assert list(sub.samples) == ["s3", "s1"]
    np.testing.assert_array_equal(sub.values, [[6.0, 3.0], [4.0, 1.0]])
    with pytest.raises(DimensionMismatchError, match="Unknown gene"):
        m.subset(genes=["g9"])


def test_counts_per_million_leaves_zero_columns_alone():
    out = counts_per_million(_frame().to_numpy())
    np.testing.assert_allclose(out.sum(axis=0), [1e6, 0.0, 1e6])
    np.testing.assert_allclose(out[:, 0], [250000.0, 750000.0])


def test_single_cell_from_anndata():
    adata = ad.AnnData(
        X=np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]]),
        obs=pd.DataFrame(
            {"cell_type": ["A", "B", "A"], "individual_id": ["d1", "d1", "d2"]},
            index=["c1", "c2", "c3"],
        ),
        var=pd.DataFrame(index=["g1", "g2"]),
    )
    scd = SingleCellData.from_anndata(adata)
    assert scd.X.shape == (3, 2)
    assert sparse.issparse(scd.X)
    assert list(scd.genes) == ["g1", "g2"]
    assert list(scd.cell_type_ids) == ["A", "B"]
    assert list(scd.donor_ids) == ["d1", "d2"]


def test_single_cell_missing_label_or_column():
    adata = ad.AnnData(
        X=np.ones((2, 2)),
        obs=pd.DataFrame({"cell_type": ["A", ""], "individual_id": ["d1", "d1"]}, index=["c1", "c2"]),
        var=pd.DataFrame(index=["g1", "g2"]),
    )
    with pytest.raises(BisqueError, match="cell type label"):
        SingleCellData.from_anndata(adata)
    with pytest.raises(BisqueError, match="missing column"):
        SingleCellData.from_anndata(adata, donor_key="donor")


def test_single_cell_keeps_sparse_matrix_and_checks_values():
    X = sparse.csr_matrix(np.array([[0.0, 2.0], [1.0, 0.0]], dtype=np.float32))
    adata = ad.AnnData(
        X=X,
        obs=pd.DataFrame({"cell_type": ["A", "B"], "individual_id": ["d1", "d1"]}, index=["c1", "c2"]),
        var=pd.DataFrame(index=["g1", "g2"]),
    )
    scd = SingleCellData.from_anndata(adata)
    assert sparse.isspmatrix_csr(scd.X)
    assert scd.X.dtype == np.float64
    assert scd.X.nnz == 2
    assert list(scd.subset_genes(["g2"]).X.toarray().ravel()) == [2.0, 0.0]

    with pytest.raises(BisqueError, match="negative"):
        SingleCellData(
            X=sparse.csr_matrix([[-1.0]]), genes=["g1"], cells=["c1"],
            donors=pd.Categorical(["d1"]), cell_types=pd.Categorical(["A"]),
        )

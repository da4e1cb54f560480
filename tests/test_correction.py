from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from pybisque.correction import (
    PlatformEffectCorrector,
    find_overlap,
    fit_platform_effect,
    semisupervised_transform,
)
from pybisque.errors import BisqueError, DimensionMismatchError, NoOverlapError


def test_find_overlap_keeps_bulk_order():
    assert find_overlap(["s3", "s1", "x", "s2"], ["s1", "s2", "s3"]) == ["s3", "s1", "s2"]
    assert find_overlap(["a"], ["b"]) == []


def test_identity_platform_is_recovered():
    rng = np.random.default_rng(0)
    x = rng.uniform(1.0, 10.0, size=(20, 5))
    scale, offset, clamped = fit_platform_effect(x.copy(), x)
    np.testing.assert_allclose(scale, 1.0)
    np.testing.assert_allclose(offset, 0.0, atol=1e-9)
    assert not clamped.any()


def test_linear_map_is_recovered():
    x = np.array([[1.0, 2.0, 3.0, 4.0]])
    scale, offset, _ = fit_platform_effect(2.0 * x + 3.0, x)
    np.testing.assert_allclose(scale, [2.0])
    np.testing.assert_allclose(offset, [3.0])


def test_single_overlap_uses_ratio_of_means():
    scale, offset, clamped = fit_platform_effect(np.array([[4.0], [3.0]]), np.array([[2.0], [6.0]]))
    np.testing.assert_allclose(scale, [2.0, 0.5])
    np.testing.assert_allclose(offset, [0.0, 0.0])
    assert not clamped.any()


def test_degenerate_fits_are_clamped_to_identity():
    x = np.array([[1.0, 2.0, 3.0], [5.0, 5.0, 5.0], [0.0, 0.0, 0.0]])
    y = np.array([[3.0, 2.0, 1.0], [1.0, 2.0, 3.0], [0.0, 0.0, 0.0]])
    scale, offset, clamped = fit_platform_effect(y, x)
    assert clamped.tolist() == [True, True, True]
    np.testing.assert_array_equal(scale, [1.0, 1.0, 1.0])
    np.testing.assert_array_equal(offset, [0.0, 0.0, 0.0])


def test_fit_requires_overlap_and_matching_shapes():
    with pytest.raises(NoOverlapError):
        fit_platform_effect(np.zeros((3, 0)), np.zeros((3, 0)))
    with pytest.raises(DimensionMismatchError):
        fit_platform_effect(np.zeros((3, 2)), np.zeros((2, 2)))


def _frames():
    genes = ["g1", "g2"]
    pseudo = pd.DataFrame([[1.0, 2.0, 3.0], [2.0, 4.0, 8.0]], index=genes, columns=["d1", "d2", "d3"])
    bulk = pd.DataFrame(
        {"d1": 2.0 * pseudo["d1"] + 1.0, "d2": 2.0 * pseudo["d2"] + 1.0, "other": [7.0, 7.0]},
        index=genes,
    )
    return bulk, pseudo


def test_corrector_fit_and_transform():
    bulk, pseudo = _frames()
    corrector = PlatformEffectCorrector()
    params = corrector.fit(bulk, pseudo, ["d1", "d2"])
    assert params.n_overlap == 2
    np.testing.assert_allclose(params.scale, 2.0)
    np.testing.assert_allclose(params.offset, 1.0)

    ref = pd.DataFrame({"A": [1.0, 1.0], "B": [0.0, 3.0]}, index=["g1", "g2"])
    np.testing.assert_allclose(corrector.transform(ref, params).to_numpy(), [[3.0, 1.0], [3.0, 7.0]])
    scaled = PlatformEffectCorrector("scale_only").transform(ref, params)
    np.testing.assert_allclose(scaled.to_numpy(), [[2.0, 0.0], [2.0, 6.0]])
    assert list(params.to_frame().columns) == ["scale", "offset", "clamped"]


def test_corrector_errors():
    bulk, pseudo = _frames()
    with pytest.raises(NoOverlapError):
        PlatformEffectCorrector().fit(bulk, pseudo, [])
    with pytest.raises(DimensionMismatchError):
        PlatformEffectCorrector().fit(bulk.iloc[::-1], pseudo, ["d1"])
    with pytest.raises(BisqueError):
        PlatformEffectCorrector("bogus")


def test_semisupervised_transform_matches_pseudobulk_moments():
    pb = np.array([[1.0, 3.0], [10.0, 10.0]])
    bulk = np.array([[100.0, 200.0, 300.0], [5.0, 5.0, 5.0]])
    out = semisupervised_transform(bulk, pb)
    # gene 1: centre 2, spread sqrt(((1)^2 + (1)^2) / 2 + 1) = sqrt(2)
    np.testing.assert_allclose(out[0].mean(), 2.0)
    np.testing.assert_allclose(out[0].std(ddof=1), np.sqrt(2.0))
    # constant bulk gene maps to the pseudobulk mean
    np.testing.assert_allclose(out[1], 10.0)


def test_negative_offset_is_refitted_through_origin():
    x = np.array([[10.0, 20.0, 30.0], [10.0, 20.0, 30.0]])
    y = np.array([[1.0, 21.0, 41.0], [1.0, 21.0, 41.0]])
    # fitted map is 2x - 19: fine above 9.5, negative below
    scale, offset, clamped = fit_platform_effect(y, x, floor=np.array([2.0, 10.0]))
    np.testing.assert_allclose(scale, [21.0 / 20.0, 2.0])
    np.testing.assert_allclose(offset, [0.0, -19.0])
    assert clamped.tolist() == [True, False]
    with pytest.raises(DimensionMismatchError):
        fit_platform_effect(y, x, floor=np.zeros(3))


def test_uniform_transform_keeps_reference_non_negative():
    genes = ["g1", "g2"]
    pseudo = pd.DataFrame([[10.0, 20.0, 30.0], [1.0, 2.0, 3.0]], index=genes, columns=["d1", "d2", "d3"])
    bulk = pd.DataFrame([[1.0, 21.0, 41.0], [3.0, 5.0, 7.0]], index=genes, columns=["d1", "d2", "d3"])
    ref = pd.DataFrame({"A": [0.5, 0.0], "B": [40.0, 4.0]}, index=genes)

    corrector = PlatformEffectCorrector("uniform")
    params = corrector.fit(bulk, pseudo, ["d1", "d2", "d3"], reference=ref)
    out = corrector.transform(ref, params)
    assert (out.to_numpy() >= 0).all()
    assert params.clamped.tolist() == [True, False]
    np.testing.assert_allclose(params.offset, [0.0, 1.0])

    # without extrapolated offsets the floor is not needed
    scaled = PlatformEffectCorrector("scale_only").fit(bulk, pseudo, ["d1", "d2", "d3"], reference=ref)
    assert not scaled.clamped.any()
    np.testing.assert_allclose(scaled.offset, [-19.0, 1.0])


def test_fit_does_not_depend_on_overlap_order():
    bulk, pseudo = _frames()
    corrector = PlatformEffectCorrector()
    a = corrector.fit(bulk, pseudo, ["d1", "d2"])
    b = corrector.fit(bulk, pseudo, ["d2", "d1"])
    np.testing.assert_array_equal(a.scale.to_numpy(), b.scale.to_numpy())
    np.testing.assert_array_equal(a.offset.to_numpy(), b.offset.to_numpy())


def test_semisupervised_transform_follows_column_order():
    rng = np.random.default_rng(3)
    bulk = rng.uniform(0.0, 50.0, size=(6, 5))
    pb = rng.uniform(0.0, 50.0, size=(6, 4))
    perm = [3, 0, 4, 2, 1]
    out = semisupervised_transform(bulk, pb)
    np.testing.assert_array_equal(semisupervised_transform(bulk[:, perm], pb), out[:, perm])
    assert semisupervised_transform(bulk[:, :0], pb).shape == (6, 0)

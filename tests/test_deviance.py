import numpy as np
import pytest

from batchsvg.stats.deviance import binomial_deviance


def test_binomial_deviance_matches_closed_form():
    x = np.array([1.0, 3.0])
    n = np.array([2.0, 4.0])
    p = 4.0 / 6.0
    expected = 2.0 * (
        1.0 * np.log(1.0 / (2.0 * p))
        + 3.0 * np.log(3.0 / (4.0 * p))
        + 1.0 * np.log(1.0 / (2.0 * (1.0 - p)))
        + 1.0 * np.log(1.0 / (4.0 * (1.0 - p)))
    )
    dev = binomial_deviance(x, n)
    assert dev.shape == (1,)
    assert np.isclose(dev[0], expected)


def test_constant_proportion_has_zero_deviance():
    x = np.array([[1.0, 2.0, 3.0], [0.0, 0.0, 0.0]])
    n = np.array([10.0, 20.0, 30.0])
    dev = binomial_deviance(x, n)
    assert np.allclose(dev, 0.0, atol=1e-9)


def test_batch_levels_absorb_group_differences():
    x = np.array([5.0, 5.0, 0.0, 0.0])
    n = np.full(4, 10.0)
    batch = np.array(["a", "a", "b", "b"])
    assert binomial_deviance(x, n)[0] > 1.0
    assert np.isclose(binomial_deviance(x, n, batch)[0], 0.0, atol=1e-9)


def test_batched_deviance_never_exceeds_unbatched(spatial_adata):
    X = np.asarray(spatial_adata.X, dtype=float)
    totals = X.sum(axis=1)
    batch = spatial_adata.obs["sample_id"].to_numpy()
    plain = binomial_deviance(X.T, totals)
    batched = binomial_deviance(X.T, totals, batch)
    assert np.all(batched <= plain + 1e-8)
    assert np.all(batched >= 0.0)


def test_non_finite_rows_are_nan():
    x = np.array([[1.0, np.nan, 2.0], [1.0, 2.0, 3.0]])
    n = np.array([5.0, 5.0, 5.0])
    dev = binomial_deviance(x, n)
    assert np.isnan(dev[0])
    assert np.isfinite(dev[1])


def test_shape_mismatch_rejected():
    with pytest.raises(ValueError, match="spots"):
        binomial_deviance(np.ones((2, 3)), np.ones(4))
    with pytest.raises(ValueError, match="labels"):
        binomial_deviance(np.ones((2, 3)), np.ones(3), np.array(["a", "b"]))

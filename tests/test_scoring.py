import numpy as np
import pytest

from batchsvg.errors import DegenerateInputError, InvalidInputError
from batchsvg.stats.scoring import (
    flag_outliers,
    nsd_bin_counts,
    rank_descending,
    relative_change,
    standardize,
)


def test_rank_descending_is_stable_permutation():
    ranks = rank_descending(np.array([5.0, 9.0, 5.0, 1.0, 9.0]))
    assert ranks.tolist() == [3, 1, 4, 5, 2]
    assert sorted(ranks.tolist()) == [1, 2, 3, 4, 5]


def test_rank_descending_puts_nan_last():
    ranks = rank_descending(np.array([np.nan, 2.0, np.nan, 3.0]))
    assert ranks.tolist() == [3, 2, 4, 1]


def test_relative_change_handles_zero_baseline():
    rel = relative_change(np.array([60.0, 0.0, np.nan]), np.array([10.0, 0.0, 1.0]))
    assert np.isclose(rel[0], 50.0 / 60.0)
    assert rel[1] == 0.0
    assert np.isnan(rel[2])


def test_standardize_centers_and_scales():
    rng = np.random.default_rng(3)
    values = rng.normal(5.0, 2.0, 200)
    z = standardize(values)
    assert np.isclose(np.mean(z), 0.0, atol=1e-9)
    assert np.isclose(np.std(z), 1.0, atol=1e-9)

    z1 = standardize(values, ddof=1)
    assert np.isclose(np.std(z1, ddof=1), 1.0, atol=1e-9)


def test_standardize_respects_mask():
    values = np.array([1.0, 2.0, 3.0, 100.0])
    z = standardize(values, np.array([True, True, True, False]))
    assert np.isnan(z[3])
    assert np.isclose(np.nanmean(z), 0.0)


def test_standardize_rejects_zero_spread():
    with pytest.raises(DegenerateInputError, match="standard deviation is zero"):
        standardize(np.zeros(5), name="rank_diff")
    with pytest.raises(DegenerateInputError, match="usable"):
        standardize(np.array([1.0, np.nan]))


def test_five_gene_scenario_flags_only_the_collapsed_gene():
    dev_nobatch = np.array([100.0, 90.0, 80.0, 70.0, 60.0])
    dev_batch = np.array([100.0, 90.0, 80.0, 70.0, 10.0])
    assert rank_descending(dev_nobatch).tolist() == [1, 2, 3, 4, 5]
    assert rank_descending(dev_batch).tolist() == [1, 2, 3, 4, 5]

    rel = relative_change(dev_nobatch, dev_batch)
    assert np.isclose(rel[4], 0.8333, atol=1e-4)
    flags = flag_outliers(standardize(rel), 2.0)
    assert flags.tolist() == [False, False, False, False, True]


def test_flag_outliers_threshold_monotone():
    rng = np.random.default_rng(7)
    z = rng.normal(size=500)
    counts = [int(flag_outliers(z, t).sum()) for t in (0.0, 0.5, 1.0, 2.0, 3.0)]
    assert counts == sorted(counts, reverse=True)
    assert counts[0] == z.size


def test_flag_outliers_ignores_nan_and_rejects_bad_threshold():
    flags = flag_outliers(np.array([np.nan, -3.0, 0.1]), 2.0)
    assert flags.tolist() == [False, True, False]
    with pytest.raises(InvalidInputError):
        flag_outliers(np.zeros(3), -1.0)


def test_nsd_bin_counts():
    labels, lower, counts = nsd_bin_counts(np.array([0.2, -1.5, 2.5, 7.0, np.nan]), max_bin=3)
    assert labels == ["[0,1)", "[1,2)", "[2,3)", ">=3"]
    assert lower.tolist() == [0, 1, 2, 3]
    assert counts.tolist() == [1, 1, 1, 1]

"""Statistical utilities for BatchSVG."""

from batchsvg.stats.deviance import binomial_deviance
from batchsvg.stats.scoring import (
    flag_outliers,
    nsd_bin_counts,
    rank_descending,
    relative_change,
    standardize,
)

__all__ = [
    "binomial_deviance",
    "flag_outliers",
    "nsd_bin_counts",
    "rank_descending",
    "relative_change",
    "standardize",
]

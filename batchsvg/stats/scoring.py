"""Deterministic ranking, standardization, and outlier flagging for bias scores."""

from __future__ import annotations

import numpy as np

from batchsvg.errors import DegenerateInputError, InvalidInputError

# Scores this close to a threshold count as reaching it.
THRESHOLD_TOL = 1e-9
_SD_RTOL = 1e-12


def rank_descending(values: np.ndarray) -> np.ndarray:
    """Rank values 1..N from highest to lowest.

    Ties keep input order and NaN values are ranked last, so the result is
    always a permutation of 1..N.
    """
    arr = np.asarray(values, dtype=float).ravel()
    keyed = np.where(np.isnan(arr), np.inf, -arr)
    order = np.argsort(keyed, kind="mergesort")
    ranks = np.empty(arr.size, dtype=int)
    ranks[order] = np.arange(1, arr.size + 1, dtype=int)
    return ranks


def relative_change(before: np.ndarray, after: np.ndarray) -> np.ndarray:
    """Compute `(before - after) / before`, with 0 where `before == 0`."""
    b = np.asarray(before, dtype=float)
    a = np.asarray(after, dtype=float)
    out = np.full(b.shape, np.nan, dtype=float)
    finite = np.isfinite(b) & np.isfinite(a)
    zero = finite & (b == 0.0)
    nonzero = finite & (b != 0.0)
    out[zero] = 0.0
    out[nonzero] = (b[nonzero] - a[nonzero]) / b[nonzero]
    return out


def standardize(
    values: np.ndarray,
    mask: np.ndarray | None = None,
    *,
    ddof: int = 0,
    name: str = "values",
) -> np.ndarray:
    """Z-score `values` against the mean/SD of the masked, finite entries.

    Entries outside the mask stay NaN. Raises DegenerateInputError when fewer
    than two entries are usable or the SD is (numerically) zero.
    """
    arr = np.asarray(values, dtype=float).ravel()
    use = np.isfinite(arr)
    if mask is not None:
        use &= np.asarray(mask, dtype=bool).ravel()
    n_use = int(np.sum(use))
    if n_use < 2 or n_use <= int(ddof):
        raise DegenerateInputError(
            f"Cannot standardize {name}: only {n_use} usable gene(s)."
        )

    mu = float(np.mean(arr[use]))
    sd = float(np.std(arr[use], ddof=int(ddof)))
    if not np.isfinite(sd) or sd <= _SD_RTOL * max(1.0, abs(mu)):
        raise DegenerateInputError(
            f"Cannot standardize {name}: standard deviation is zero across genes."
        )

    z = np.full(arr.size, np.nan, dtype=float)
    z[use] = (arr[use] - mu) / sd
    return z


def flag_outliers(nsd: np.ndarray, threshold: float) -> np.ndarray:
    """Flag `|nSD| >= threshold`; NaN scores are never flagged."""
    t = float(threshold)
    if not np.isfinite(t) or t < 0.0:
        raise InvalidInputError(f"nSD threshold must be a finite value >= 0, got {threshold}.")
    z = np.asarray(nsd, dtype=float)
    with np.errstate(invalid="ignore"):
        return np.isfinite(z) & (np.abs(z) >= t - THRESHOLD_TOL)


def nsd_bin_counts(nsd: np.ndarray, max_bin: int = 5) -> tuple[list[str], np.ndarray, np.ndarray]:
    """Count |nSD| values per unit bin `[k, k+1)` with an open last bin.

    Returns `(labels, lower_edges, counts)`.
    """
    if int(max_bin) < 1:
        raise InvalidInputError(f"max_bin must be >= 1, got {max_bin}.")
    z = np.abs(np.asarray(nsd, dtype=float))
    z = z[np.isfinite(z)]
    k = int(max_bin)
    lower = np.arange(0, k + 1, dtype=int)
    labels = [f"[{i},{i + 1})" for i in range(k)] + [f">={k}"]
    idx = np.minimum(np.floor(z).astype(int), k)
    counts = np.bincount(idx, minlength=k + 1).astype(int)
    return labels, lower, counts

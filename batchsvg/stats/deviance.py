"""Closed-form binomial deviance under a multinomial null model.

For gene g and spot i with count x_gi and spot library size n_i, the null
model gives every spot the same gene proportion p_g = sum_i x_gi / sum_i n_i:

    D_g = 2 * sum_i [ x log(x / (n p)) + (n - x) log((n - x) / (n (1 - p))) ]

with 0 log 0 = 0. Conditioning on a batch covariate fits p_gb separately in
each batch level b and sums the per-level deviances.

Reference:
    Townes, F. W., Hicks, S. C., Aryee, M. J., & Irizarry, R. A. (2019).
    Feature selection and dimension reduction for single-cell RNA-Seq based on
    a multinomial model. Genome Biology, 20(1), 295.
"""

from __future__ import annotations

import numpy as np


def _xlog_ratio(x: np.ndarray, denom: np.ndarray) -> np.ndarray:
    """Elementwise x * log(x / denom) with zero where x == 0."""
    out = np.zeros(np.broadcast(x, denom).shape, dtype=float)
    x_b = np.broadcast_to(x, out.shape)
    d_b = np.broadcast_to(denom, out.shape)
    mask = x_b != 0
    with np.errstate(divide="ignore", invalid="ignore"):
        out[mask] = x_b[mask] * np.log(x_b[mask] / d_b[mask])
    return out


def _binomial_deviance_block(counts: np.ndarray, totals: np.ndarray) -> np.ndarray:
    x = np.asarray(counts, dtype=float)
    n = np.asarray(totals, dtype=float).reshape(1, -1)
    n_sum = float(n.sum())
    if n_sum <= 0.0:
        return np.zeros(x.shape[0], dtype=float)
    p = (x.sum(axis=1) / n_sum).reshape(-1, 1)
    with np.errstate(invalid="ignore"):
        term1 = _xlog_ratio(x, n * p)
        term2 = _xlog_ratio(n - x, n * (1.0 - p))
    return 2.0 * (term1.sum(axis=1) + term2.sum(axis=1))


def binomial_deviance(
    counts: np.ndarray,
    totals: np.ndarray,
    batch: np.ndarray | None = None,
) -> np.ndarray:
    """Binomial deviance per gene.

    Args:
        counts: Genes x spots count block; a 1D vector is one gene.
        totals: Per-spot library sizes over the full matrix.
        batch: Optional per-spot batch labels; the null proportion is fitted
            within each level.

    Returns:
        Deviance per gene. Rows with non-finite counts come back as NaN.
    """
    x = np.asarray(counts, dtype=float)
    if x.ndim == 1:
        x = x.reshape(1, -1)
    n = np.asarray(totals, dtype=float).ravel()
    if x.shape[1] != n.size:
        raise ValueError(
            f"counts have {x.shape[1]} spots but totals have {n.size} entries."
        )
    if np.any(n < 0) or not np.all(np.isfinite(n)):
        raise ValueError("Spot totals must be finite and non-negative.")

    if batch is None:
        dev = _binomial_deviance_block(x, n)
    else:
        labels = np.asarray(batch, dtype=object).ravel()
        if labels.size != n.size:
            raise ValueError(
                f"batch has {labels.size} labels but totals have {n.size} entries."
            )
        _, codes = np.unique(labels.astype(str), return_inverse=True)
        dev = np.zeros(x.shape[0], dtype=float)
        for level in range(int(codes.max()) + 1):
            cols = codes == level
            dev = dev + _binomial_deviance_block(x[:, cols], n[cols])

    bad_rows = ~np.all(np.isfinite(x), axis=1)
    dev = np.where(bad_rows | ~np.isfinite(dev), np.nan, np.maximum(dev, 0.0))
    return dev

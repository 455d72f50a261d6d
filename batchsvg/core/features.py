"""Candidate gene, count matrix, and batch label resolution."""

from __future__ import annotations

import logging
import warnings
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd
import scipy.sparse as sp

from batchsvg.config import ON_MISSING_MODES
from batchsvg.errors import InvalidInputError

SYMBOL_COLUMNS: tuple[str, ...] = ("hugo_symbol", "gene_name", "gene_symbol")


def _pick_symbol_column(adata_like: Any) -> str | None:
    if not hasattr(adata_like, "var") or adata_like.var is None:
        return None
    for col in SYMBOL_COLUMNS:
        if col in adata_like.var.columns:
            return str(col)
    return None


def _symbol_series(adata_like: Any, symbol_col: str) -> pd.Series:
    return (
        adata_like.var[symbol_col]
        .astype("string")
        .fillna("")
        .astype(str)
        .str.strip()
    )


def _positions(names: Iterable[str]) -> dict[str, list[int]]:
    pos: dict[str, list[int]] = {}
    for i, name in enumerate(names):
        if name != "":
            pos.setdefault(str(name), []).append(i)
    return pos


def gene_names_for(adata_like: Any, idx: np.ndarray) -> list[str]:
    """Display names for var positions; symbols where present, else var_names."""
    var_names = pd.Index(adata_like.var_names).astype(str)
    names = var_names[np.asarray(idx, dtype=int)].tolist()
    symbol_col = _pick_symbol_column(adata_like)
    if symbol_col is None:
        return names
    symbols = _symbol_series(adata_like, symbol_col).to_numpy()[np.asarray(idx, dtype=int)]
    return [str(sym) if str(sym) != "" else name for sym, name in zip(symbols, names)]


def resolve_candidates(
    adata_like: Any,
    candidates: Iterable[str],
    *,
    on_missing: str = "raise",
    logger: logging.Logger | None = None,
) -> tuple[np.ndarray, list[str]]:
    """Resolve candidate genes to var positions without mutating `var_names`.

    Candidates match `var_names` first, then the symbol column. Returns
    `(idx, gene_ids)` in candidate order, with duplicates collapsed.
    """
    if on_missing not in ON_MISSING_MODES:
        raise InvalidInputError(
            f"on_missing must be one of {ON_MISSING_MODES}, got '{on_missing}'."
        )
    log = logger or logging.getLogger("batchsvg")

    keys = [str(c).strip() for c in candidates]
    unique_keys = list(dict.fromkeys(keys))
    if len(unique_keys) != len(keys):
        warnings.warn(
            f"Candidate list contains {len(keys) - len(unique_keys)} duplicate(s); "
            "keeping first occurrence.",
            RuntimeWarning,
            stacklevel=2,
        )

    var_names = pd.Index(adata_like.var_names).astype(str)
    id_pos = _positions(var_names)
    symbol_col = _pick_symbol_column(adata_like)
    sym_pos = (
        _positions(_symbol_series(adata_like, symbol_col))
        if symbol_col is not None
        else {}
    )

    idx: list[int] = []
    missing: list[str] = []
    for key in unique_keys:
        hits = id_pos.get(key) or sym_pos.get(key, [])
        if not hits:
            missing.append(key)
            continue
        if len(hits) > 1:
            raise InvalidInputError(
                f"Candidate '{key}' matches {len(hits)} genes; gene identifiers must be unique."
            )
        idx.append(hits[0])

    if missing:
        head = ", ".join(missing[:5])
        more = "..." if len(missing) > 5 else ""
        if on_missing == "raise":
            raise InvalidInputError(
                f"{len(missing)} candidate gene(s) not found in the expression matrix: {head}{more}"
            )
        log.warning(
            "Dropping %d candidate gene(s) absent from the expression matrix: %s%s",
            len(missing),
            head,
            more,
        )

    idx_arr = np.asarray(list(dict.fromkeys(idx)), dtype=int)
    if idx_arr.size == 0:
        raise InvalidInputError("No candidate genes resolved against the expression matrix.")
    return idx_arr, var_names[idx_arr].tolist()


def get_count_matrix(adata_like: Any, layer: str | None = None) -> Any:
    """Return the spots x genes count matrix from `.X` or a named layer."""
    if layer is None:
        X = adata_like.X
    else:
        if layer not in adata_like.layers:
            raise InvalidInputError(f"adata.layers['{layer}'] not found.")
        X = adata_like.layers[layer]
    if X is None:
        raise InvalidInputError("Expression matrix is empty.")
    if X.shape != (adata_like.n_obs, adata_like.n_vars):
        raise InvalidInputError(
            f"Count matrix shape {X.shape} does not match AnnData {(adata_like.n_obs, adata_like.n_vars)}."
        )
    return X


def get_gene_block(X: Any, idx: np.ndarray) -> np.ndarray:
    """Dense genes x spots float block for the given var positions."""
    block = X[:, np.asarray(idx, dtype=int)]
    if sp.issparse(block):
        block = block.toarray()
    return np.asarray(block, dtype=float).T


def spot_totals(X: Any) -> np.ndarray:
    """Per-spot library size over all genes, ignoring non-finite entries."""
    if sp.issparse(X):
        M = sp.csr_matrix(X, dtype=float, copy=True)
        M.data[~np.isfinite(M.data)] = 0.0
        totals = np.asarray(M.sum(axis=1)).ravel()
    else:
        arr = np.asarray(X, dtype=float)
        totals = np.where(np.isfinite(arr), arr, 0.0).sum(axis=1)
    return totals.astype(float)


def check_non_negative(X: Any) -> None:
    values = X.data if sp.issparse(X) else np.asarray(X, dtype=float)
    values = np.asarray(values, dtype=float)
    finite = values[np.isfinite(values)]
    if finite.size and float(finite.min()) < 0.0:
        raise InvalidInputError("Expression matrix contains negative counts.")


def resolve_batch_labels(
    adata_like: Any,
    batch: str | pd.Series | Sequence[Any] | np.ndarray,
    covariate: str | None = None,
) -> tuple[str, np.ndarray]:
    """Return `(covariate_name, labels)` aligned to obs order.

    `batch` is either an obs column name or explicit labels (a Series indexed
    by obs names, or a sequence in obs order).
    """
    n_obs = int(adata_like.n_obs)
    if isinstance(batch, str):
        if batch not in adata_like.obs.columns:
            raise InvalidInputError(f"adata.obs['{batch}'] not found.")
        name = covariate or batch
        series = adata_like.obs[batch]
    elif isinstance(batch, pd.Series):
        name = covariate or (str(batch.name) if batch.name is not None else None)
        obs_names = pd.Index(adata_like.obs_names)
        if not obs_names.isin(batch.index).all():
            raise InvalidInputError(
                f"Batch labels for '{name}' do not cover every obs name."
            )
        series = batch.loc[obs_names]
    else:
        name = covariate
        series = pd.Series(list(batch))
        if series.size != n_obs:
            raise InvalidInputError(
                f"Batch labels for '{name}' have length {series.size}, expected {n_obs}."
            )
    if name is None:
        raise InvalidInputError("Explicit batch labels require a covariate name.")

    labels = np.asarray(series.to_numpy(), dtype=object)
    if labels.size != n_obs:
        raise InvalidInputError(
            f"Batch labels for '{name}' have length {labels.size}, expected {n_obs}."
        )
    if pd.isna(labels).any():
        raise InvalidInputError(f"Batch covariate '{name}' has missing labels.")
    return str(name), labels

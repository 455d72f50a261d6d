"""Batched vs. unbatched deviance feature selection (`featureSelect`)."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from batchsvg.core.features import (
    check_non_negative,
    gene_names_for,
    get_count_matrix,
    get_gene_block,
    resolve_batch_labels,
    resolve_candidates,
    spot_totals,
)
from batchsvg.core.types import TABLE_COLUMNS, BiasTable, DevianceResult
from batchsvg.errors import InvalidInputError
from batchsvg.stats.deviance import binomial_deviance
from batchsvg.stats.scoring import rank_descending, relative_change, standardize

DevianceFn = Callable[[np.ndarray, np.ndarray, "np.ndarray | None"], float]
BatchSpec = Any


def _get_logger(logger: logging.Logger | None) -> logging.Logger:
    if isinstance(logger, logging.Logger):
        return logger
    return logging.getLogger("batchsvg")


def _safe_deviance(
    *,
    deviance_fn: DevianceFn,
    counts: np.ndarray,
    totals: np.ndarray,
    batch: np.ndarray | None,
    logger: logging.Logger,
    covariate: str | None,
    gene: str,
) -> float:
    """Run a per-gene deviance fit, recording expected failures as NaN."""
    try:
        value = float(deviance_fn(counts, totals, batch))
    except (ValueError, ArithmeticError, TypeError) as exc:
        logger.warning(
            "Deviance fit failed: covariate=%s gene=%s reason=%s",
            covariate or "<none>",
            gene,
            exc,
        )
        return float("nan")
    if not np.isfinite(value):
        logger.warning(
            "Deviance fit failed: covariate=%s gene=%s reason=non-finite deviance",
            covariate or "<none>",
            gene,
        )
        return float("nan")
    return value


def _fit_deviance(
    adata,
    candidates: Iterable[str],
    *,
    batch_labels: np.ndarray | None,
    covariate: str | None,
    layer: str | None,
    on_missing: str,
    deviance_fn: DevianceFn | None,
    logger: logging.Logger,
) -> DevianceResult:
    if int(adata.n_obs) == 0:
        raise InvalidInputError("Expression matrix has no spots.")
    X = get_count_matrix(adata, layer)
    check_non_negative(X)
    idx, gene_ids = resolve_candidates(
        adata, candidates, on_missing=on_missing, logger=logger
    )
    gene_names = gene_names_for(adata, idx)
    totals = spot_totals(X)
    block = get_gene_block(X, idx)

    if deviance_fn is None:
        dev = binomial_deviance(block, totals, batch_labels)
        failed = ~np.isfinite(dev)
        if np.any(failed):
            bad = [gene_ids[i] for i in np.flatnonzero(failed)]
            logger.warning(
                "Deviance fit failed: covariate=%s genes=%d (%s%s) reason=non-finite counts or deviance",
                covariate or "<none>",
                len(bad),
                ", ".join(bad[:5]),
                "..." if len(bad) > 5 else "",
            )
    else:
        dev = np.array(
            [
                _safe_deviance(
                    deviance_fn=deviance_fn,
                    counts=block[i],
                    totals=totals,
                    batch=batch_labels,
                    logger=logger,
                    covariate=covariate,
                    gene=gene_ids[i],
                )
                for i in range(block.shape[0])
            ],
            dtype=float,
        )
        failed = ~np.isfinite(dev)

    return DevianceResult(
        gene_ids=tuple(gene_ids),
        gene_names=tuple(gene_names),
        deviance=dev,
        rank=rank_descending(dev),
        fit_failed=failed,
        covariate=covariate,
    )


def compute_baseline(
    adata,
    candidates: Iterable[str],
    *,
    layer: str | None = None,
    on_missing: str = "raise",
    deviance_fn: DevianceFn | None = None,
    logger: logging.Logger | None = None,
) -> DevianceResult:
    """Unbatched binomial deviance and rank for each candidate gene.

    Args:
        adata: AnnData with raw counts (spots x genes).
        candidates: Candidate gene ids (var_names) or symbols.
        layer: Layer holding counts; None uses `.X`.
        on_missing: "raise" (InvalidInputError) or "intersect" (drop and warn)
            for candidates absent from the matrix.
        deviance_fn: Optional per-gene `fn(counts, totals, batch) -> float`
            replacing the closed-form binomial deviance.
        logger: Logger for per-gene fit failures.

    Returns:
        DevianceResult with ranks forming a permutation of 1..N.
    """
    log = _get_logger(logger)
    result = _fit_deviance(
        adata,
        candidates,
        batch_labels=None,
        covariate=None,
        layer=layer,
        on_missing=on_missing,
        deviance_fn=deviance_fn,
        logger=log,
    )
    log.info("Baseline deviance: genes=%d failed=%d", result.n_genes, int(result.fit_failed.sum()))
    return result


def compute_batched(
    adata,
    candidates: Iterable[str],
    batch: BatchSpec,
    *,
    covariate: str | None = None,
    layer: str | None = None,
    on_missing: str = "raise",
    deviance_fn: DevianceFn | None = None,
    logger: logging.Logger | None = None,
) -> DevianceResult:
    """Binomial deviance and rank with the null proportion fitted per batch level.

    `batch` is an obs column name or explicit labels (Series indexed by obs
    names, or a sequence in obs order; explicit labels need `covariate`).
    """
    log = _get_logger(logger)
    name, labels = resolve_batch_labels(adata, batch, covariate)
    result = _fit_deviance(
        adata,
        candidates,
        batch_labels=labels,
        covariate=name,
        layer=layer,
        on_missing=on_missing,
        deviance_fn=deviance_fn,
        logger=log,
    )
    log.info(
        "Batched deviance: covariate=%s levels=%d genes=%d failed=%d",
        name,
        int(pd.unique(labels.astype(str)).size),
        result.n_genes,
        int(result.fit_failed.sum()),
    )
    return result


def score_covariate(
    baseline: DevianceResult,
    batched: DevianceResult,
    *,
    ddof: int = 0,
    logger: logging.Logger | None = None,
) -> BiasTable:
    """Join baseline and batched fits and standardize the changes.

    Genes missing from either side are dropped (inner join on gene_id); the
    nSD scores are computed over the joined, non-failed genes only.
    """
    log = _get_logger(logger)
    covariate = batched.covariate or "batch"

    base = baseline.to_frame().rename(
        columns={"deviance": "dev_nobatch", "rank": "rank_nobatch", "fit_failed": "failed_nobatch"}
    )
    other = (
        batched.to_frame()
        .drop(columns=["gene_name"])
        .rename(columns={"deviance": "dev_batch", "rank": "rank_batch", "fit_failed": "failed_batch"})
    )
    df = base.merge(other, on="gene_id", how="inner", sort=False)
    n_candidates = int(baseline.n_genes)
    n_dropped = n_candidates - int(df.shape[0])
    if n_dropped > 0:
        log.warning(
            "Covariate %s: %d gene(s) missing from one side of the join were dropped.",
            covariate,
            n_dropped,
        )

    failed = df["failed_nobatch"].to_numpy(bool) | df["failed_batch"].to_numpy(bool)
    df["fit_failed"] = failed
    df["rel_change_dev"] = relative_change(df["dev_nobatch"].to_numpy(), df["dev_batch"].to_numpy())
    df["rank_diff"] = df["rank_batch"].astype(int) - df["rank_nobatch"].astype(int)
    df["nSD_dev"] = standardize(
        df["rel_change_dev"].to_numpy(),
        ~failed,
        ddof=ddof,
        name=f"rel_change_dev for covariate '{covariate}'",
    )
    df["nSD_rank"] = standardize(
        df["rank_diff"].to_numpy(dtype=float),
        ~failed,
        ddof=ddof,
        name=f"rank_diff for covariate '{covariate}'",
    )
    df["dev_outlier"] = False
    df["rank_outlier"] = False

    frame = df.loc[:, list(TABLE_COLUMNS)].reset_index(drop=True)
    return BiasTable(
        covariate=covariate,
        frame=frame,
        n_candidates=n_candidates,
        n_dropped=n_dropped,
        metadata={"ddof": int(ddof), "n_failed": int(failed.sum())},
    )


def _normalize_covariates(
    batch_covariates: str | Sequence[str] | Mapping[str, Any],
) -> list[tuple[str, Any]]:
    if isinstance(batch_covariates, str):
        items = [(batch_covariates, batch_covariates)]
    elif isinstance(batch_covariates, Mapping):
        items = [(str(k), v) for k, v in batch_covariates.items()]
    else:
        items = [(str(c), str(c)) for c in batch_covariates]
    if not items:
        raise InvalidInputError("At least one batch covariate is required.")
    names = [name for name, _ in items]
    if len(set(names)) != len(names):
        raise InvalidInputError(f"Duplicate batch covariates: {names}")
    return items


def feature_select(
    adata,
    candidates: Iterable[str],
    batch_covariates: str | Sequence[str] | Mapping[str, Any],
    *,
    baseline: DevianceResult | None = None,
    layer: str | None = None,
    on_missing: str = "raise",
    ddof: int = 0,
    deviance_fn: DevianceFn | None = None,
    n_jobs: int = 1,
    logger: logging.Logger | None = None,
) -> dict[str, BiasTable]:
    """Score candidate genes for bias against each batch covariate.

    The baseline is computed once (or taken from `baseline`) and shared by
    every covariate; each covariate is fitted, joined, and standardized on
    its own. Returns one BiasTable per covariate in input order.
    """
    log = _get_logger(logger)
    covariates = _normalize_covariates(batch_covariates)
    candidate_list = list(candidates)

    if baseline is None:
        baseline = compute_baseline(
            adata,
            candidate_list,
            layer=layer,
            on_missing=on_missing,
            deviance_fn=deviance_fn,
            logger=log,
        )
    # Batched fits run on the genes the baseline resolved.
    resolved = list(baseline.gene_ids)

    def _run(item: tuple[str, Any]) -> BiasTable:
        name, spec = item
        batched = compute_batched(
            adata,
            resolved,
            spec,
            covariate=name,
            layer=layer,
            on_missing=on_missing,
            deviance_fn=deviance_fn,
            logger=log,
        )
        table = score_covariate(baseline, batched, ddof=ddof, logger=log)
        log.info(
            "Covariate %s: scored %d/%d candidate genes",
            name,
            table.n_genes,
            table.n_candidates,
        )
        return table

    jobs = int(n_jobs)
    if jobs == 1 or len(covariates) == 1:
        tables = [_run(item) for item in covariates]
    else:
        from joblib import Parallel, delayed

        tables = Parallel(n_jobs=jobs, backend="threading")(
            delayed(_run)(item) for item in covariates
        )
    return {table.covariate: table for table in tables}

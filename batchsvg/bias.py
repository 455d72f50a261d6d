"""Outlier flagging (`biasDetect`), nSD binning (`svg_nSD`), and candidate refinement."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from batchsvg.config import THRESHOLD_MODES
from batchsvg.core.types import BiasTable
from batchsvg.errors import InvalidInputError
from batchsvg.stats.scoring import flag_outliers, nsd_bin_counts

Thresholds = float | Sequence[float] | None


def _as_table_list(
    tables: Mapping[str, BiasTable] | Iterable[BiasTable] | BiasTable,
) -> list[BiasTable]:
    if isinstance(tables, BiasTable):
        return [tables]
    if isinstance(tables, Mapping):
        return list(tables.values())
    return list(tables)


def _expand_thresholds(value: Thresholds, n: int, name: str) -> list[float]:
    if value is None:
        raise InvalidInputError(f"{name} is required for this threshold mode.")
    if np.isscalar(value):
        values = [float(value)] * n
    else:
        values = [float(v) for v in value]
        if len(values) != n:
            raise InvalidInputError(
                f"{name} has {len(values)} value(s) but there are {n} covariate table(s)."
            )
    for v in values:
        if not np.isfinite(v) or v < 0.0:
            raise InvalidInputError(f"{name} must be finite and >= 0, got {v}.")
    return values


def bias_detect(
    tables: Mapping[str, BiasTable] | Iterable[BiasTable] | BiasTable,
    threshold: str = "both",
    nsd_dev: Thresholds = None,
    nsd_rank: Thresholds = None,
) -> dict[str, BiasTable]:
    """Flag genes whose nSD scores reach the given thresholds.

    Args:
        tables: Output of `feature_select`.
        threshold: "dev", "rank", or "both" (which flags to compute).
        nsd_dev: nSD cutoff for `dev_outlier`; a scalar or one per table.
        nsd_rank: nSD cutoff for `rank_outlier`; a scalar or one per table.

    Returns:
        New BiasTables keyed by covariate with the outlier columns filled in.
        Flags not requested by `threshold` are left False.
    """
    if threshold not in THRESHOLD_MODES:
        raise InvalidInputError(
            f"threshold must be one of {THRESHOLD_MODES}, got '{threshold}'."
        )
    items = _as_table_list(tables)
    n = len(items)
    use_dev = threshold in ("dev", "both")
    use_rank = threshold in ("rank", "both")
    dev_cut = _expand_thresholds(nsd_dev, n, "nsd_dev") if use_dev else [None] * n
    rank_cut = _expand_thresholds(nsd_rank, n, "nsd_rank") if use_rank else [None] * n

    out: dict[str, BiasTable] = {}
    for table, t_dev, t_rank in zip(items, dev_cut, rank_cut):
        frame = table.frame.copy()
        n_genes = int(frame.shape[0])
        frame["dev_outlier"] = (
            flag_outliers(frame["nSD_dev"].to_numpy(), t_dev)
            if t_dev is not None
            else np.zeros(n_genes, dtype=bool)
        )
        frame["rank_outlier"] = (
            flag_outliers(frame["nSD_rank"].to_numpy(), t_rank)
            if t_rank is not None
            else np.zeros(n_genes, dtype=bool)
        )
        out[table.covariate] = replace(
            table,
            frame=frame,
            threshold=threshold,
            nsd_dev=t_dev,
            nsd_rank=t_rank,
            metadata={
                **table.metadata,
                "n_dev_outlier": int(frame["dev_outlier"].sum()),
                "n_rank_outlier": int(frame["rank_outlier"].sum()),
            },
        )
    return out


def outlier_subsets(table: BiasTable) -> dict[str, list[str]]:
    """Split flagged genes into dev-only, rank-only, both (AND), and either (OR)."""
    frame = table.frame
    dev = frame["dev_outlier"].to_numpy(bool)
    rank = frame["rank_outlier"].to_numpy(bool)
    ids = frame["gene_id"].astype(str).to_numpy()
    return {
        "dev_only": ids[dev & ~rank].tolist(),
        "rank_only": ids[rank & ~dev].tolist(),
        "both": ids[dev & rank].tolist(),
        "either": ids[dev | rank].tolist(),
    }


def biased_gene_ids(
    tables: Mapping[str, BiasTable] | Iterable[BiasTable] | BiasTable,
) -> list[str]:
    """Genes flagged by either outlier flag in any covariate, in first-seen order."""
    seen: dict[str, None] = {}
    for table in _as_table_list(tables):
        for gene in table.outlier_ids():
            seen.setdefault(gene, None)
    return list(seen)


def _gene_keys(tables: list[BiasTable]) -> dict[str, str]:
    """Map each gene id and symbol to its gene id; ids win over symbols."""
    keys: dict[str, str] = {}
    for table in tables:
        ids = table.frame["gene_id"].astype(str).tolist()
        names = table.frame["gene_name"].astype(str).tolist()
        for gene_id, name in zip(ids, names):
            keys.setdefault(name, gene_id)
    for table in tables:
        for gene_id in table.gene_ids:
            keys[gene_id] = gene_id
    return keys


def refine(
    candidates: Iterable[str],
    biased: Mapping[str, BiasTable] | Iterable[BiasTable] | BiasTable | Iterable[str],
) -> list[str]:
    """Candidates minus biased genes, keeping candidate order.

    `biased` is either gene ids (as from `biased_gene_ids`) or the flagged
    tables. Given tables, candidates written as symbols are matched through
    the `gene_name` column the same way `feature_select` resolved them.
    """
    if isinstance(biased, (BiasTable, Mapping)):
        items: list = _as_table_list(biased)
    else:
        items = list(biased)
    if items and all(isinstance(t, BiasTable) for t in items):
        drop = set(biased_gene_ids(items))
        keys = _gene_keys(items)
    else:
        drop = {str(g) for g in items}
        keys = {}
    out: list[str] = []
    for gene in candidates:
        key = str(gene).strip()
        if keys.get(key, key) not in drop:
            out.append(str(gene))
    return out


def svg_nsd(
    tables: Mapping[str, BiasTable] | Iterable[BiasTable] | BiasTable,
    *,
    max_bin: int = 5,
) -> pd.DataFrame:
    """Count genes per |nSD| bin for each covariate and metric.

    Used to pick `bias_detect` thresholds: bins run `[0,1)`, `[1,2)`, ...,
    with the last bin open-ended at `max_bin`.
    """
    rows: list[dict[str, object]] = []
    for table in _as_table_list(tables):
        for metric, column in (("dev", "nSD_dev"), ("rank", "nSD_rank")):
            labels, lower, counts = nsd_bin_counts(
                table.frame[column].to_numpy(), max_bin=max_bin
            )
            for label, lo, count in zip(labels, lower, counts):
                rows.append(
                    {
                        "covariate": table.covariate,
                        "metric": metric,
                        "bin": label,
                        "lower": int(lo),
                        "count": int(count),
                    }
                )
    return pd.DataFrame(rows, columns=["covariate", "metric", "bin", "lower", "count"])

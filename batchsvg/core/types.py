"""Typed result containers for BatchSVG core operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

TABLE_COLUMNS: tuple[str, ...] = (
    "gene_id",
    "gene_name",
    "dev_nobatch",
    "dev_batch",
    "rel_change_dev",
    "rank_nobatch",
    "rank_batch",
    "rank_diff",
    "nSD_dev",
    "nSD_rank",
    "dev_outlier",
    "rank_outlier",
    "fit_failed",
)


@dataclass(frozen=True)
class DevianceResult:
    """Per-gene deviance fit over one candidate set.

    - `covariate`: batch covariate the fit conditioned on (None for the baseline).
    - `rank`: 1 = highest deviance; failed fits are ranked last.
    """

    gene_ids: tuple[str, ...]
    gene_names: tuple[str, ...]
    deviance: np.ndarray
    rank: np.ndarray
    fit_failed: np.ndarray
    covariate: str | None = None

    @property
    def n_genes(self) -> int:
        return len(self.gene_ids)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "gene_id": list(self.gene_ids),
                "gene_name": list(self.gene_names),
                "deviance": np.asarray(self.deviance, dtype=float),
                "rank": np.asarray(self.rank, dtype=int),
                "fit_failed": np.asarray(self.fit_failed, dtype=bool),
            }
        )


@dataclass(frozen=True)
class BiasTable:
    """Per-covariate comparison of batched and unbatched deviance rankings."""

    covariate: str
    frame: pd.DataFrame
    n_candidates: int
    n_dropped: int = 0
    threshold: str | None = None
    nsd_dev: float | None = None
    nsd_rank: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def n_genes(self) -> int:
        return int(self.frame.shape[0])

    @property
    def gene_ids(self) -> list[str]:
        return self.frame["gene_id"].astype(str).tolist()

    def outlier_ids(self) -> list[str]:
        """Gene ids with either outlier flag set."""
        mask = self.frame["dev_outlier"].to_numpy(bool) | self.frame[
            "rank_outlier"
        ].to_numpy(bool)
        return self.frame.loc[mask, "gene_id"].astype(str).tolist()

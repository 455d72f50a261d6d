"""Core types and input resolution."""

from batchsvg.core.features import (
    gene_names_for,
    resolve_batch_labels,
    resolve_candidates,
)
from batchsvg.core.types import TABLE_COLUMNS, BiasTable, DevianceResult

__all__ = [
    "TABLE_COLUMNS",
    "BiasTable",
    "DevianceResult",
    "gene_names_for",
    "resolve_batch_labels",
    "resolve_candidates",
]

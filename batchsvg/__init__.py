"""BatchSVG public API."""

from batchsvg._version import __version__
from batchsvg.bias import bias_detect, biased_gene_ids, outlier_subsets, refine, svg_nsd
from batchsvg.config import BiasConfig, load_bias_config
from batchsvg.core.types import BiasTable, DevianceResult
from batchsvg.errors import BatchSVGError, DegenerateInputError, InvalidInputError
from batchsvg.selection import compute_baseline, compute_batched, feature_select


def plot_bias(*args, **kwargs):
    """Lazy wrapper to avoid importing matplotlib at import time."""
    from batchsvg.plotting.bias import plot_bias as _plot_bias

    return _plot_bias(*args, **kwargs)


__all__ = [
    "__version__",
    "BiasConfig",
    "BiasTable",
    "DevianceResult",
    "BatchSVGError",
    "InvalidInputError",
    "DegenerateInputError",
    "compute_baseline",
    "compute_batched",
    "feature_select",
    "bias_detect",
    "biased_gene_ids",
    "outlier_subsets",
    "refine",
    "svg_nsd",
    "load_bias_config",
    "plot_bias",
]

"""Optional rendering of BatchSVG tables."""

from batchsvg.plotting.bias import plot_bias, plot_nsd_bins
from batchsvg.plotting.styles import (
    DEFAULT_PLOT_STYLE,
    PlotStyle,
    apply_plot_style,
    plot_style_dict,
)
from batchsvg.plotting.utils import save_figure

__all__ = [
    "PlotStyle",
    "DEFAULT_PLOT_STYLE",
    "apply_plot_style",
    "plot_style_dict",
    "plot_bias",
    "plot_nsd_bins",
    "save_figure",
]

"""Shared plotting style settings for deterministic figure outputs."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import matplotlib
import matplotlib.pyplot as plt


@dataclass(frozen=True)
class PlotStyle:
    """Centralized plotting defaults used across bias figures."""

    dpi: int = 200
    figsize_panel: tuple[float, float] = (5.0, 4.6)
    figsize_bins: tuple[float, float] = (8.2, 4.2)
    s_point: float = 8.0
    s_outlier: float = 16.0
    alpha_point: float = 0.55
    alpha_outlier: float = 0.9
    color_inlier: str = "#a6a6a6"
    color_outlier: str = "#d62728"
    color_dev: str = "#1f77b4"
    color_rank: str = "#ff7f0e"
    legend_fontsize: int = 8
    axis_label_fontsize: int = 10
    title_fontsize: int = 11
    label_top_k: int = 10


DEFAULT_PLOT_STYLE = PlotStyle()


def apply_plot_style(style: PlotStyle = DEFAULT_PLOT_STYLE) -> None:
    """Apply deterministic matplotlib rcParams for bias plots."""
    plt.rcParams.update(
        {
            "figure.dpi": style.dpi,
            "savefig.dpi": style.dpi,
            "savefig.facecolor": "white",
            "font.family": "DejaVu Sans",
            "axes.titlesize": style.title_fontsize,
            "axes.labelsize": style.axis_label_fontsize,
            "legend.fontsize": style.legend_fontsize,
            "axes.grid": False,
        }
    )


def plot_style_dict(style: PlotStyle = DEFAULT_PLOT_STYLE) -> dict[str, Any]:
    """Style fields and renderer version, recorded in `summary.json` next to figures."""
    out = {key: (list(val) if isinstance(val, tuple) else val) for key, val in asdict(style).items()}
    out["backend"] = str(matplotlib.get_backend())
    out["matplotlib_version"] = str(matplotlib.__version__)
    return out

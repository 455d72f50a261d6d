"""Figure factories for bias tables and nSD bin counts."""

from __future__ import annotations

from pathlib import Path

import matplotlib.axes
import matplotlib.figure
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from batchsvg.core.types import BiasTable
from batchsvg.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from batchsvg.plotting.utils import save_figure


def _scatter_panel(
    ax: matplotlib.axes.Axes,
    x: np.ndarray,
    y: np.ndarray,
    flags: np.ndarray,
    labels: np.ndarray,
    *,
    title: str,
    xlabel: str,
    ylabel: str,
    log: bool,
    style: PlotStyle,
) -> None:
    finite = np.isfinite(x) & np.isfinite(y)
    if log:
        finite &= (x > 0) & (y > 0)
    inl = finite & ~flags
    out = finite & flags
    ax.scatter(
        x[inl],
        y[inl],
        s=style.s_point,
        alpha=style.alpha_point,
        color=style.color_inlier,
        linewidths=0.0,
        rasterized=True,
        label=f"not flagged (n={int(inl.sum())})",
    )
    ax.scatter(
        x[out],
        y[out],
        s=style.s_outlier,
        alpha=style.alpha_outlier,
        color=style.color_outlier,
        linewidths=0.0,
        label=f"flagged (n={int(out.sum())})",
    )
    if np.any(finite):
        lo = float(min(np.min(x[finite]), np.min(y[finite])))
        hi = float(max(np.max(x[finite]), np.max(y[finite])))
        ax.plot([lo, hi], [lo, hi], color="black", linestyle="--", linewidth=0.8)
    for i in np.flatnonzero(out)[: style.label_top_k]:
        ax.annotate(str(labels[i]), (x[i], y[i]), fontsize=6, xytext=(2, 2), textcoords="offset points")
    if log:
        ax.set_xscale("log")
        ax.set_yscale("log")
    ax.set_title(title, fontsize=style.title_fontsize)
    ax.set_xlabel(xlabel, fontsize=style.axis_label_fontsize)
    ax.set_ylabel(ylabel, fontsize=style.axis_label_fontsize)
    ax.legend(loc="best", fontsize=style.legend_fontsize, frameon=False)


def plot_bias(
    table: BiasTable,
    *,
    out_path: Path | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> matplotlib.figure.Figure:
    """Batched vs. unbatched deviance and rank, flagged genes highlighted.

    Panels follow the table's threshold mode: deviance for "dev", rank for
    "rank", both for "both" (or an unflagged table).
    """
    mode = table.threshold or "both"
    panels = [m for m in ("dev", "rank") if mode in (m, "both")]
    w, h = style.figsize_panel
    fig, axes = plt.subplots(1, len(panels), figsize=(w * len(panels), h), squeeze=False)

    frame = table.frame
    labels = frame["gene_name"].astype(str).to_numpy()
    for ax, metric in zip(axes[0], panels):
        if metric == "dev":
            cut = f" (|nSD| >= {table.nsd_dev:g})" if table.nsd_dev is not None else ""
            _scatter_panel(
                ax,
                frame["dev_nobatch"].to_numpy(dtype=float),
                frame["dev_batch"].to_numpy(dtype=float),
                frame["dev_outlier"].to_numpy(bool),
                labels,
                title=f"{table.covariate}: deviance{cut}",
                xlabel="deviance (no batch)",
                ylabel=f"deviance ({table.covariate})",
                log=True,
                style=style,
            )
        else:
            cut = f" (|nSD| >= {table.nsd_rank:g})" if table.nsd_rank is not None else ""
            _scatter_panel(
                ax,
                frame["rank_nobatch"].to_numpy(dtype=float),
                frame["rank_batch"].to_numpy(dtype=float),
                frame["rank_outlier"].to_numpy(bool),
                labels,
                title=f"{table.covariate}: rank{cut}",
                xlabel="rank (no batch)",
                ylabel=f"rank ({table.covariate})",
                log=False,
                style=style,
            )
    fig.tight_layout()
    if out_path is not None:
        save_figure(fig, out_path, style=style, close=False)
    return fig


def plot_nsd_bins(
    bins_df: pd.DataFrame,
    *,
    out_path: Path | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> matplotlib.figure.Figure:
    """Grouped bars of gene counts per |nSD| bin, one panel per covariate."""
    covariates = list(dict.fromkeys(bins_df["covariate"].astype(str).tolist()))
    n_panels = max(1, len(covariates))
    w, h = style.figsize_bins
    fig, axes = plt.subplots(1, n_panels, figsize=(w * n_panels / 2.0 + 1.0, h), squeeze=False)

    if not covariates:
        axes[0][0].text(0.5, 0.5, "no tables", ha="center", va="center")
        axes[0][0].set_axis_off()
    for ax, cov in zip(axes[0], covariates):
        sub = bins_df.loc[bins_df["covariate"].astype(str) == cov]
        dev = sub.loc[sub["metric"] == "dev"].sort_values("lower", kind="mergesort")
        rank = sub.loc[sub["metric"] == "rank"].sort_values("lower", kind="mergesort")
        pos = np.arange(dev.shape[0], dtype=float)
        ax.bar(pos - 0.2, dev["count"].to_numpy(), width=0.4, color=style.color_dev, label="nSD_dev")
        ax.bar(pos + 0.2, rank["count"].to_numpy(), width=0.4, color=style.color_rank, label="nSD_rank")
        ax.set_xticks(pos)
        ax.set_xticklabels(dev["bin"].astype(str).tolist(), rotation=0, fontsize=8)
        ax.set_yscale("symlog")
        ax.set_title(cov, fontsize=style.title_fontsize)
        ax.set_xlabel("|nSD| bin", fontsize=style.axis_label_fontsize)
        ax.set_ylabel("genes", fontsize=style.axis_label_fontsize)
        ax.legend(loc="upper right", fontsize=style.legend_fontsize, frameon=False)
    fig.tight_layout()
    if out_path is not None:
        save_figure(fig, out_path, style=style, close=False)
    return fig

"""Command-line interface for BatchSVG bias screening."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable

from batchsvg.bias import bias_detect, biased_gene_ids, refine, svg_nsd
from batchsvg.config import ON_MISSING_MODES, THRESHOLD_MODES, BiasConfig, load_bias_config
from batchsvg.core.types import BiasTable
from batchsvg.errors import BatchSVGError, InvalidInputError
from batchsvg.pipeline.io import (
    ensure_dir,
    read_gene_list,
    sanitize_label,
    setup_logger,
    table_summary,
    write_bias_table,
    write_gene_list,
    write_json,
)
from batchsvg.selection import feature_select

EXIT_INPUT_ERROR = 2


def _get_scanpy():
    import scanpy as sc

    return sc


def _read_adata(h5ad_path: str):
    path = Path(h5ad_path)
    if not path.exists():
        raise FileNotFoundError(f"Input file '{h5ad_path}' not found.")
    return _get_scanpy().read_h5ad(path)


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--h5ad", required=True, help="Path to .h5ad file with raw counts")
    parser.add_argument(
        "--candidates",
        required=True,
        help="Text file with one candidate gene id per line",
    )
    parser.add_argument(
        "--batch",
        nargs="+",
        default=None,
        help="adata.obs columns to test as batch covariates",
    )
    parser.add_argument("--outdir", default=".", help="Output directory root")
    parser.add_argument("--config", default=None, help="Optional JSON config")
    parser.add_argument("--layer", default=None, help="Layer holding raw counts")
    parser.add_argument(
        "--on-missing",
        choices=list(ON_MISSING_MODES),
        default=None,
        help="Handling of candidates absent from the matrix",
    )
    parser.add_argument("--ddof", type=int, choices=[0, 1], default=None)
    parser.add_argument("--n-jobs", type=int, default=None, help="Parallel covariates")
    parser.add_argument("--max-bin", type=int, default=None, help="Last |nSD| bin edge")
    parser.add_argument(
        "--no-plots", action="store_true", help="Skip figure rendering"
    )


def _resolve_config(args: argparse.Namespace) -> BiasConfig:
    cfg = load_bias_config(args.config)
    cfg = cfg.override(
        layer=args.layer,
        batch=args.batch,
        on_missing=args.on_missing,
        ddof=args.ddof,
        n_jobs=args.n_jobs,
        max_bin=args.max_bin,
        threshold=getattr(args, "threshold", None),
        nsd_dev=getattr(args, "nsd_dev", None),
        nsd_rank=getattr(args, "nsd_rank", None),
    )
    if args.no_plots:
        cfg = cfg.override(plots=False)
    if not cfg.batch:
        raise InvalidInputError("No batch covariates given (use --batch or config 'batch').")
    return cfg


def _score(
    args: argparse.Namespace, cfg: BiasConfig, logger: logging.Logger
) -> tuple[list[str], dict[str, BiasTable]]:
    candidates = read_gene_list(args.candidates)
    adata = _read_adata(args.h5ad)
    logger.info(
        "Loaded %s: spots=%d genes=%d candidates=%d covariates=%s",
        args.h5ad,
        adata.n_obs,
        adata.n_vars,
        len(candidates),
        ",".join(cfg.batch),
    )
    tables = feature_select(
        adata,
        candidates,
        list(cfg.batch),
        layer=cfg.layer,
        on_missing=cfg.on_missing,
        ddof=cfg.ddof,
        n_jobs=cfg.n_jobs,
        logger=logger,
    )
    return candidates, tables


def _write_bins(tables: dict[str, BiasTable], cfg: BiasConfig, outdir: Path) -> None:
    bins = svg_nsd(tables, max_bin=cfg.max_bin)
    table_dir = outdir / "tables"
    ensure_dir(table_dir)
    bins.to_csv((table_dir / "nsd_bins.csv").as_posix(), index=False)
    if cfg.plots:
        from batchsvg.plotting import apply_plot_style, plot_nsd_bins, save_figure

        apply_plot_style()
        fig = plot_nsd_bins(bins)
        save_figure(fig, outdir / "figures" / "nsd_bins.png")


def run_main(argv: Iterable[str] | None = None) -> int:
    """Score candidates, flag biased genes, and write the refined list.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success, 2 for input errors).
    """
    parser = argparse.ArgumentParser(description="BatchSVG bias screening")
    _add_common_args(parser)
    parser.add_argument(
        "--threshold", choices=list(THRESHOLD_MODES), default=None, help="Flags to compute"
    )
    parser.add_argument("--nsd-dev", type=float, default=None, help="nSD cutoff for deviance")
    parser.add_argument("--nsd-rank", type=float, default=None, help="nSD cutoff for rank")
    args = parser.parse_args(list(argv) if argv is not None else None)

    outdir = Path(args.outdir)
    logger = setup_logger(outdir / "logs" / "batchsvg.log", "batchsvg")
    try:
        cfg = _resolve_config(args)
        candidates, tables = _score(args, cfg, logger)
        flagged = bias_detect(
            tables,
            threshold=cfg.threshold,
            nsd_dev=cfg.nsd_dev,
            nsd_rank=cfg.nsd_rank,
        )
    except BatchSVGError as exc:
        logger.error("BatchSVG run failed: %s", exc)
        return EXIT_INPUT_ERROR

    table_dir = outdir / "tables"
    for cov, table in flagged.items():
        write_bias_table(table_dir / f"{sanitize_label(cov)}_bias.csv", table)

    biased = biased_gene_ids(flagged)
    remaining = refine(candidates, flagged)
    write_gene_list(outdir / "biased_genes.txt", biased)
    write_gene_list(outdir / "refined_genes.txt", remaining)

    _write_bins(flagged, cfg, outdir)
    plot_style = None
    if cfg.plots:
        from batchsvg.plotting import apply_plot_style, plot_bias, plot_style_dict, save_figure

        plot_style = plot_style_dict()
        apply_plot_style()
        for cov, table in flagged.items():
            fig = plot_bias(table)
            save_figure(fig, outdir / "figures" / f"{sanitize_label(cov)}_bias.png")

    write_json(
        outdir / "summary.json",
        {
            "h5ad": str(args.h5ad),
            "n_candidates": len(candidates),
            "n_biased": len(biased),
            "n_refined": len(remaining),
            "covariates": [table_summary(t) for t in flagged.values()],
            "config": {
                "layer": cfg.layer,
                "batch": list(cfg.batch),
                "on_missing": cfg.on_missing,
                "threshold": cfg.threshold,
                "nsd_dev": cfg.nsd_dev,
                "nsd_rank": cfg.nsd_rank,
                "ddof": cfg.ddof,
            },
            "plot_style": plot_style,
        },
    )
    logger.info(
        "Biased genes=%d; refined candidates=%d/%d",
        len(biased),
        len(remaining),
        len(candidates),
    )
    return 0


def nsd_main(argv: Iterable[str] | None = None) -> int:
    """Write nSD bin counts (and plot) to help choose thresholds.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success, 2 for input errors).
    """
    parser = argparse.ArgumentParser(description="BatchSVG nSD bin summary")
    _add_common_args(parser)
    args = parser.parse_args(list(argv) if argv is not None else None)

    outdir = Path(args.outdir)
    logger = setup_logger(outdir / "logs" / "batchsvg.log", "batchsvg")
    try:
        cfg = _resolve_config(args)
        _, tables = _score(args, cfg, logger)
    except BatchSVGError as exc:
        logger.error("BatchSVG run failed: %s", exc)
        return EXIT_INPUT_ERROR

    _write_bins(tables, cfg, outdir)
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(description="BatchSVG CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Score, flag, and refine candidate SVGs", add_help=False)
    sub.add_parser("nsd", help="Summarize nSD bins for threshold choice", add_help=False)

    args, remainder = parser.parse_known_args(list(argv) if argv is not None else None)
    if args.command == "run":
        return run_main(remainder)
    if args.command == "nsd":
        return nsd_main(remainder)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())

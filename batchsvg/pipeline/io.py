"""Pipeline I/O, logging, and utility helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from batchsvg.core.types import BiasTable
from batchsvg.errors import InvalidInputError


def ensure_dir(path: str | Path) -> None:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, payload: dict[str, Any]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)


def setup_logger(log_path: Path, logger_name: str) -> logging.Logger:
    ensure_dir(log_path.parent)
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


def read_gene_list(path: str | Path) -> list[str]:
    """Read one gene id per line; blank lines and `#` comments are skipped."""
    list_path = Path(path)
    if not list_path.exists():
        raise FileNotFoundError(f"Gene list not found: {list_path}")
    genes: list[str] = []
    with list_path.open("r", encoding="utf-8") as fh:
        for line in fh:
            item = line.split("#", 1)[0].strip()
            if item:
                genes.append(item)
    if not genes:
        raise InvalidInputError(f"Gene list '{list_path}' is empty.")
    return genes


def write_gene_list(path: str | Path, genes: Iterable[str]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as fh:
        for gene in genes:
            fh.write(f"{gene}\n")


def write_bias_table(path: str | Path, table: BiasTable) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    table.frame.to_csv(out.as_posix(), index=False)


def table_summary(table: BiasTable) -> dict[str, Any]:
    """JSON-ready per-covariate summary for run manifests."""
    frame = table.frame
    return {
        "covariate": table.covariate,
        "n_candidates": int(table.n_candidates),
        "n_scored": int(frame.shape[0]),
        "n_dropped": int(table.n_dropped),
        "n_fit_failed": int(frame["fit_failed"].sum()),
        "threshold": table.threshold,
        "nsd_dev": table.nsd_dev,
        "nsd_rank": table.nsd_rank,
        "n_dev_outlier": int(frame["dev_outlier"].sum()),
        "n_rank_outlier": int(frame["rank_outlier"].sum()),
        "n_biased": len(table.outlier_ids()),
    }


def sanitize_label(label: str, max_len: int = 40) -> str:
    """Create deterministic filesystem-safe stems for covariate labels."""
    clean = "".join(ch if (ch.isalnum() or ch == "_") else "_" for ch in str(label))
    clean = clean.strip("_") or "covariate"
    return clean[:max_len]

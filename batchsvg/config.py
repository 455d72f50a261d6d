"""Configuration loading utilities for BatchSVG runs."""

from __future__ import annotations

import json
import math
import numbers
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from batchsvg.errors import InvalidInputError

THRESHOLD_MODES: tuple[str, ...] = ("dev", "rank", "both")
ON_MISSING_MODES: tuple[str, ...] = ("raise", "intersect")


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a run config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


@dataclass(frozen=True)
class BiasConfig:
    """Settings for one batch-bias run.

    - `layer`: AnnData layer holding raw counts (None uses `.X`).
    - `batch`: obs columns tested as batch covariates.
    - `on_missing`: "raise" or "intersect" for candidates absent from the matrix.
    - `threshold`: which flags `bias_detect` computes ("dev", "rank", "both").
    - `ddof`: delta degrees of freedom of the nSD standard deviation.
    """

    layer: str | None = None
    batch: tuple[str, ...] = ()
    on_missing: str = "raise"
    threshold: str = "both"
    nsd_dev: float = 3.0
    nsd_rank: float = 3.0
    ddof: int = 0
    n_jobs: int = 1
    max_bin: int = 5
    plots: bool = True

    def __post_init__(self) -> None:
        self._check_types()
        if self.on_missing not in ON_MISSING_MODES:
            raise InvalidInputError(
                f"on_missing must be one of {ON_MISSING_MODES}, got '{self.on_missing}'."
            )
        if self.threshold not in THRESHOLD_MODES:
            raise InvalidInputError(
                f"threshold must be one of {THRESHOLD_MODES}, got '{self.threshold}'."
            )
        for name in ("nsd_dev", "nsd_rank"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0.0:
                raise InvalidInputError(f"{name} must be a finite value >= 0, got {value}.")
        if int(self.ddof) not in (0, 1):
            raise InvalidInputError(f"ddof must be 0 or 1, got {self.ddof}.")
        if int(self.max_bin) < 1:
            raise InvalidInputError(f"max_bin must be >= 1, got {self.max_bin}.")
        if int(self.n_jobs) == 0:
            raise InvalidInputError("n_jobs must be non-zero.")

    def _check_types(self) -> None:
        if self.layer is not None and not isinstance(self.layer, str):
            raise InvalidInputError(f"layer must be a string or null, got {self.layer!r}.")
        if not all(isinstance(b, str) for b in self.batch):
            raise InvalidInputError(f"batch must be column names, got {self.batch!r}.")
        for name in ("on_missing", "threshold"):
            if not isinstance(getattr(self, name), str):
                raise InvalidInputError(f"{name} must be a string, got {getattr(self, name)!r}.")
        for name in ("nsd_dev", "nsd_rank"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise InvalidInputError(f"{name} must be a number, got {value!r}.")
        for name in ("ddof", "n_jobs", "max_bin"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise InvalidInputError(f"{name} must be an integer, got {value!r}.")
        if not isinstance(self.plots, bool):
            raise InvalidInputError(f"plots must be true or false, got {self.plots!r}.")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BiasConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidInputError(f"Unknown config keys: {', '.join(unknown)}")
        values = dict(data)
        if "batch" in values:
            batch = values["batch"]
            if isinstance(batch, str):
                batch = [batch]
            elif not isinstance(batch, (list, tuple)):
                raise InvalidInputError(f"batch must be a string or a list, got {batch!r}.")
            values["batch"] = tuple(str(b) for b in batch)
        return cls(**values)

    def override(self, **changes: Any) -> "BiasConfig":
        """Return a copy with every non-None change applied."""
        applied = {k: v for k, v in changes.items() if v is not None}
        if "batch" in applied:
            applied["batch"] = tuple(applied["batch"])
        return replace(self, **applied)


def load_bias_config(path: str | Path | None) -> BiasConfig:
    """Build a BiasConfig from a JSON file, or defaults when `path` is None."""
    if path is None:
        return BiasConfig()
    return BiasConfig.from_dict(load_json_config(path))

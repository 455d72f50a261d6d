"""Exception types raised by BatchSVG scoring."""

from __future__ import annotations


class BatchSVGError(Exception):
    """Base class for BatchSVG errors."""


class InvalidInputError(BatchSVGError, ValueError):
    """Inputs cannot be scored as given (unknown genes, bad covariates, bad thresholds)."""


class DegenerateInputError(BatchSVGError, ValueError):
    """A statistic has no spread across genes and cannot be standardized."""

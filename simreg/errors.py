"""
Error taxonomy for SimReg.

Configuration-level problems are exceptions raised before any simulation is
scheduled. Per-replication problems are *markers* (``FitFailure`` and its
``TimeoutFailure`` variant) that are returned, recorded and counted, but never
raised.
"""

from dataclasses import dataclass

__all__ = [
    "SimRegError",
    "ConfigurationError",
    "InvalidCorrelationMatrix",
    "DimensionMismatch",
    "FitFailure",
    "TimeoutFailure",
]


class SimRegError(Exception):
    """Base class for all SimReg exceptions."""


class ConfigurationError(SimRegError, ValueError):
    """Malformed or contradictory simulation specification."""


class InvalidCorrelationMatrix(ConfigurationError):
    """Target correlation matrix is not square, symmetric, unit-diagonal and PSD."""


class DimensionMismatch(ConfigurationError):
    """Regression weights do not line up with the design columns."""


@dataclass(frozen=True)
class FitFailure:
    """Marker for a replication whose model fit did not produce usable estimates.

    Attributes:
        reason: Human-readable description (exception text, convergence
            message, ...).
    """

    reason: str

    kind = "fit_failure"

    def __bool__(self):
        return False


@dataclass(frozen=True)
class TimeoutFailure(FitFailure):
    """Fit abandoned after exceeding the per-replication timeout."""

    kind = "timeout"

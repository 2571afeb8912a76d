"""
Validation utilities for SimReg.

This module provides validation functions for specification fields,
parameters, and mathematical constraints. Validators collect every problem
into a ``_ValidationResult`` and the caller decides when to raise.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Type, Union

import numpy as np

from ..errors import ConfigurationError, InvalidCorrelationMatrix

__all__ = []


@dataclass
class _ValidationResult:
    """Outcome of a validation check, carrying errors and warnings.

    Attributes:
        is_valid: ``True`` if no errors were found.
        errors: List of error messages (empty when valid).
        warnings: List of non-fatal warning messages.
    """

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: Optional[str]):
        if message:
            self.errors.append(message)
            self.is_valid = False

    def merge(self, other: "_ValidationResult"):
        for err in other.errors:
            self.add_error(err)
        self.warnings.extend(other.warnings)
        return self

    def raise_if_invalid(self, error_type: Type[ConfigurationError] = ConfigurationError):
        """Raise *error_type* if the validation failed."""
        if not self.is_valid:
            error_msg = "Validation failed:\n" + "\n".join(f"• {err}" for err in self.errors)
            raise error_type(error_msg)


class _Validator:
    """Static helpers for type and range checks used by all validators."""

    @staticmethod
    def _check_type(value: Any, expected_types: tuple, name: str) -> Optional[str]:
        """Check if value has expected type."""
        if isinstance(value, bool) or not isinstance(value, expected_types):
            actual_type = type(value).__name__
            expected = expected_types[0].__name__ if len(expected_types) == 1 else f"one of {[t.__name__ for t in expected_types]}"
            return f"{name} must be {expected}, got {actual_type}"
        return None

    @staticmethod
    def _check_range(
        value: Union[int, float],
        min_val: Optional[float],
        max_val: Optional[float],
        name: str,
        exclusive: bool = False,
    ) -> Optional[str]:
        """Check if value is within range."""
        if exclusive:
            if min_val is not None and value <= min_val:
                return f"{name} must be > {min_val}, got {value}"
            if max_val is not None and value >= max_val:
                return f"{name} must be < {max_val}, got {value}"
            return None
        if min_val is not None and value < min_val:
            return f"{name} must be >= {min_val}, got {value}"
        if max_val is not None and value > max_val:
            return f"{name} must be <= {max_val}, got {value}"
        return None


_validator = _Validator()


def _validate_numeric_parameter(
    value: Any,
    name: str,
    expected_types: tuple = (int, float, np.integer, np.floating),
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
    exclusive: bool = False,
) -> _ValidationResult:
    """Generic validation for numeric parameters."""
    result = _ValidationResult()

    type_error = _validator._check_type(value, expected_types, name)
    if type_error:
        result.add_error(type_error)
        return result

    if isinstance(value, (float, np.floating)) and not np.isfinite(value):
        result.add_error(f"{name} must be finite, got {value}")
        return result

    result.add_error(_validator._check_range(value, min_val, max_val, name, exclusive))
    return result


def _validate_alpha(alpha: Any) -> _ValidationResult:
    """Validate significance level (strictly between 0 and 1)."""
    return _validate_numeric_parameter(alpha, "alpha", min_val=0, max_val=1, exclusive=True)


def _validate_replications(replications: Any) -> _ValidationResult:
    """Validate number of replications (positive integer)."""
    result = _validate_numeric_parameter(replications, "replications", expected_types=(int, np.integer), min_val=1)
    if result.is_valid and replications < 100:
        result.warnings.append(
            f"Low replication count ({replications}). Consider using at least 100 for stable rejection rates."
        )
    return result


def _validate_sample_size(sample_size: Any, name: str = "sample_size", min_val: int = 2) -> _ValidationResult:
    """Validate a single-level sample size (integer >= 2)."""
    return _validate_numeric_parameter(sample_size, name, expected_types=(int, np.integer), min_val=min_val)


def _validate_variance(value: Any, name: str) -> _ValidationResult:
    """Validate a variance component (finite, non-negative)."""
    return _validate_numeric_parameter(value, name, min_val=0)


def _validate_probabilities(weights: Any, n_levels: int, name: str) -> _ValidationResult:
    """Validate a level-weight vector: right length, non-negative, positive sum."""
    result = _ValidationResult()
    if weights is None:
        return result
    arr = np.asarray(weights, dtype=float)
    if arr.ndim != 1 or len(arr) != n_levels:
        result.add_error(f"{name}: expected {n_levels} weights, got {len(np.atleast_1d(arr))}")
        return result
    if np.any(arr < 0) or not np.all(np.isfinite(arr)):
        result.add_error(f"{name}: weights must be finite and non-negative")
    elif arr.sum() <= 0:
        result.add_error(f"{name}: weights must have a positive sum")
    return result


def _validate_correlation_matrix(corr_matrix: Optional[np.ndarray]) -> _ValidationResult:
    """Validate correlation matrix meets mathematical requirements."""
    result = _ValidationResult()

    if corr_matrix is None:
        result.add_error("Correlation matrix is None")
        return result

    corr_matrix = np.asarray(corr_matrix, dtype=float)

    if corr_matrix.ndim != 2 or corr_matrix.shape[0] != corr_matrix.shape[1]:
        result.add_error("Correlation matrix must be square")
        return result

    if not np.all(np.isfinite(corr_matrix)):
        result.add_error("Correlation matrix must contain only finite values")
        return result

    if not np.allclose(np.diag(corr_matrix), 1.0):
        result.add_error("Diagonal elements of correlation matrix must be 1")

    if not np.allclose(corr_matrix, corr_matrix.T):
        result.add_error("Correlation matrix must be symmetric")

    if np.any(np.abs(corr_matrix) > 1):
        result.add_error("All correlations must be between -1 and 1")

    if result.is_valid:
        try:
            eigenvals = np.linalg.eigvalsh(corr_matrix)
            if np.any(eigenvals < -1e-8):  # Tolerance for floating point noise
                result.add_error("Correlation matrix must be positive semi-definite")
        except np.linalg.LinAlgError:
            result.add_error("Cannot compute eigenvalues of correlation matrix")

    return result


def _check_correlation_matrix(corr_matrix: Optional[np.ndarray]):
    """Raise ``InvalidCorrelationMatrix`` if *corr_matrix* is not a valid target."""
    _validate_correlation_matrix(corr_matrix).raise_if_invalid(InvalidCorrelationMatrix)


def _validate_n_jobs(n_jobs: Any) -> _ValidationResult:
    """Validate worker count (positive int, or -1 for all cores)."""
    result = _ValidationResult()
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, (int, np.integer)):
        result.add_error(f"n_jobs must be an integer, got {type(n_jobs).__name__}")
    elif n_jobs == 0 or n_jobs < -1:
        result.add_error(f"n_jobs must be a positive integer or -1, got {n_jobs}")
    return result


def _validate_timeout(timeout: Any) -> _ValidationResult:
    """Validate per-replication timeout (``None`` or positive seconds)."""
    if timeout is None:
        return _ValidationResult()
    return _validate_numeric_parameter(timeout, "timeout", min_val=0, exclusive=True)


def _validate_seed(seed: Any) -> _ValidationResult:
    """Validate run seed (``None`` or a non-negative integer)."""
    if seed is None:
        return _ValidationResult()
    return _validate_numeric_parameter(seed, "seed", expected_types=(int, np.integer), min_val=0)

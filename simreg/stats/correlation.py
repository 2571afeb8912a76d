"""
Correlation induction for generated predictors.

Two methods impose a target correlation on independently generated columns:

* ``"rank"`` (Iman-Conover): reorders each column so its ranks follow a
  correlated van der Waerden score matrix. Marginals are preserved exactly,
  so it works for continuous and ordinal columns alike.
* ``"cholesky"``: whitens the standardised columns and recolours them with
  the Cholesky factor of the target. Only meaningful for continuous columns.

Also provides the within-group AR(1) filter used for autocorrelated errors.
"""

import numpy as np
from scipy import signal, stats

from ..utils.validators import _check_correlation_matrix

CORRELATION_METHODS = ("rank", "cholesky")


def validate_correlation_matrix(matrix) -> np.ndarray:
    """Return *matrix* as a float array, or raise ``InvalidCorrelationMatrix``.

    A valid target is square, symmetric, unit-diagonal, has entries in
    [-1, 1] and is positive semi-definite.
    """
    matrix = np.asarray(matrix, dtype=float)
    _check_correlation_matrix(matrix)
    return matrix


def _cholesky_decomposition(matrix: np.ndarray) -> np.ndarray:
    """Cholesky factor, with an eigendecomposition fallback for PSD matrices."""
    try:
        return np.linalg.cholesky(matrix)
    except np.linalg.LinAlgError:
        eigenvals, eigenvecs = np.linalg.eigh(matrix)
        eigenvals = np.maximum(eigenvals, 1e-8)
        return eigenvecs @ np.diag(np.sqrt(eigenvals))


def _recolor(scores: np.ndarray, target: np.ndarray) -> np.ndarray:
    """Transform *scores* so that their sample correlation equals *target*."""
    sample = np.corrcoef(scores, rowvar=False)
    p = _cholesky_decomposition(sample)
    t = _cholesky_decomposition(target)
    return scores @ np.linalg.pinv(p).T @ t.T


def _ranks(values: np.ndarray) -> np.ndarray:
    return np.argsort(np.argsort(values, kind="stable"), kind="stable")


def induce_correlation(
    columns: np.ndarray,
    target: np.ndarray,
    rng: np.random.Generator,
    method: str = "rank",
) -> np.ndarray:
    """Impose correlation *target* on the columns of an ``(n, k)`` array.

    Args:
        columns: Independently generated predictor columns.
        target: ``(k, k)`` correlation matrix.
        rng: Random generator (used by the rank method to shuffle scores).
        method: ``"rank"`` or ``"cholesky"``.

    Returns:
        New ``(n, k)`` array. With ``"rank"`` every column is a permutation of
        the input column.

    Raises:
        InvalidCorrelationMatrix: If *target* is not a valid correlation matrix.
    """
    columns = np.asarray(columns, dtype=float)
    target = validate_correlation_matrix(target)
    n, k = columns.shape
    if target.shape != (k, k):
        raise ValueError(f"Target shape {target.shape} doesn't match {k} columns")
    if k < 2 or n <= k:
        return columns.copy()

    if method == "rank":
        base = stats.norm.ppf(np.arange(1, n + 1) / (n + 1))
        scores = np.column_stack([rng.permutation(base) for _ in range(k)])
        correlated = _recolor(scores, target)

        result = np.empty_like(columns)
        for j in range(k):
            result[:, j] = np.sort(columns[:, j])[_ranks(correlated[:, j])]
        return result

    if method == "cholesky":
        mean = columns.mean(axis=0)
        sd = columns.std(axis=0)
        sd[sd == 0] = 1.0
        z = (columns - mean) / sd
        return _recolor(z, target) * sd + mean

    raise ValueError(f"Unknown correlation method '{method}'. Valid: {', '.join(CORRELATION_METHODS)}")


def ar1_filter(draws: np.ndarray, group_ids: np.ndarray, rho: float) -> np.ndarray:
    """Apply a stationary AR(1) filter to *draws* within each group.

    ``e[0] = u[0]`` and ``e[t] = rho * e[t-1] + sqrt(1 - rho^2) * u[t]``, so
    unit-variance input stays unit-variance. Groups must be contiguous.
    """
    draws = np.asarray(draws, dtype=float)
    if group_ids is None:
        group_ids = np.zeros(len(draws), dtype=int)
    out = np.empty_like(draws)
    scale = np.sqrt(1 - rho**2)

    boundaries = np.flatnonzero(np.diff(group_ids)) + 1
    for block in np.split(np.arange(len(draws)), boundaries):
        if len(block) == 0:
            continue
        u = draws[block]
        out[block[0]] = u[0]
        if len(block) > 1:
            filtered, _ = signal.lfilter([scale], [1.0, -rho], u[1:], zi=[rho * u[0]])
            out[block[1:]] = filtered
    return out

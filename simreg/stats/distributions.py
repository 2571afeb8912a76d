"""Statistical distribution helpers for SimReg.

Resolves distribution names to scipy distributions, freezes them with
validated parameters, computes reference-distribution critical values, and
provides the inverse link functions used by the response families.

Usage:
    from simreg.stats.distributions import frozen_distribution, critical_value
"""

from typing import Any, Dict, Mapping, Optional

import numpy as np
from scipy import special, stats

from ..errors import ConfigurationError

# Friendly names accepted in addition to scipy's own
_ALIASES = {
    "normal": "norm",
    "gaussian": "norm",
    "student_t": "t",
    "chisq": "chi2",
    "chi_square": "chi2",
    "lognormal": "lognorm",
    "exponential": "expon",
}

ALTERNATIVES = ("two-sided", "greater", "less")


def resolve_distribution(name: str) -> stats.rv_continuous:
    """Return the scipy continuous distribution named *name*.

    Raises:
        ConfigurationError: If the name is not a scipy continuous distribution.
    """
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"Distribution name must be a non-empty string, got {name!r}")
    scipy_name = _ALIASES.get(name.lower(), name.lower())
    dist = getattr(stats, scipy_name, None)
    if not isinstance(dist, stats.rv_continuous):
        raise ConfigurationError(f"Unknown continuous distribution '{name}'")
    return dist


def _normalize_params(scipy_name: str, params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Translate ``mean``/``sd`` to scipy's ``loc``/``scale`` for the normal."""
    params = dict(params or {})
    if scipy_name == "norm":
        if "mean" in params:
            params["loc"] = params.pop("mean")
        if "sd" in params:
            params["scale"] = params.pop("sd")
    return params


def frozen_distribution(name: str, params: Optional[Mapping[str, Any]] = None):
    """Freeze distribution *name* with *params*, checking that it is usable.

    Raises:
        ConfigurationError: For unknown names, unknown or invalid parameters.
    """
    dist = resolve_distribution(name)
    kwargs = _normalize_params(dist.name, params)
    try:
        frozen = dist(**kwargs)
        median = frozen.ppf(0.5)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid parameters {dict(params or {})} for distribution '{name}': {e}") from None
    if not np.isfinite(median):
        raise ConfigurationError(f"Invalid parameters {dict(params or {})} for distribution '{name}'")
    return frozen


def standardized_draws(frozen, size, rng: np.random.Generator) -> np.ndarray:
    """Draw from *frozen* and rescale to mean 0 and variance 1.

    Distributions without a finite variance (e.g. Cauchy) are centred on the
    median and scaled by the interquartile range of a standard normal.
    """
    draws = frozen.rvs(size=size, random_state=rng)
    mean, var = frozen.stats(moments="mv")
    if np.isfinite(mean) and np.isfinite(var) and var > 0:
        return (draws - mean) / np.sqrt(var)
    iqr = frozen.ppf(0.75) - frozen.ppf(0.25)
    return (draws - frozen.ppf(0.5)) / (iqr / (2 * stats.norm.ppf(0.75)))


def critical_value(
    distribution: str,
    alpha: float,
    params: Optional[Mapping[str, Any]] = None,
    alternative: str = "two-sided",
) -> float:
    """Critical value of the reference distribution for a test at level *alpha*.

    Two-sided tests use the ``1 - alpha/2`` quantile, one-sided tests the
    ``1 - alpha`` quantile.

    Args:
        distribution: Reference distribution name (``"normal"``, ``"t"``, ...).
        alpha: Significance level.
        params: Distribution parameters (e.g. ``{"df": 40}``).
        alternative: ``"two-sided"``, ``"greater"`` or ``"less"``.
    """
    if alternative not in ALTERNATIVES:
        raise ConfigurationError(f"alternative must be one of {ALTERNATIVES}, got '{alternative}'")
    q = 1 - alpha / 2 if alternative == "two-sided" else 1 - alpha
    return float(frozen_distribution(distribution, params).ppf(q))


def critical_values_by_df(alpha: float, df: np.ndarray, alternative: str = "two-sided") -> np.ndarray:
    """Vectorised t critical values for per-replication residual degrees of freedom."""
    q = 1 - alpha / 2 if alternative == "two-sided" else 1 - alpha
    df = np.asarray(df, dtype=float)
    crit = np.full(df.shape, stats.norm.ppf(q))
    finite = np.isfinite(df) & (df > 0)
    crit[finite] = stats.t.ppf(q, df[finite])
    return crit


def _inverse_cloglog(eta):
    return -np.expm1(-np.exp(eta))


INVERSE_LINKS = {
    "identity": lambda eta: eta,
    "logit": special.expit,
    "probit": stats.norm.cdf,
    "cloglog": _inverse_cloglog,
    "log": np.exp,
    "sqrt": np.square,
}

DEFAULT_LINKS = {"continuous": "identity", "binary": "logit", "count": "log"}

VALID_LINKS = {
    "continuous": ("identity",),
    "binary": ("logit", "probit", "cloglog"),
    "count": ("log", "identity", "sqrt"),
}

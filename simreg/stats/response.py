"""
Response generation and full dataset simulation.

The linear predictor is ``X @ reg_weights`` plus every random-effect
contribution (random intercepts add the group draw, random slopes add the
group draw times the slope predictor). The response is then produced by the
family:

* continuous: ``eta + error`` (error variance, distribution and optional
  within-group AR(1) from ``ErrorSpec``)
* binary: Bernoulli with probability ``inverse_link(eta)``
* count: Poisson or negative binomial with mean ``inverse_link(eta)``
"""

from typing import Optional

import numpy as np
import pandas as pd

from .correlation import ar1_filter
from .design import Predictors, design_matrix, simulate_predictors
from .distributions import INVERSE_LINKS, frozen_distribution, standardized_draws


def linear_predictor(spec, predictors: Predictors, X: np.ndarray) -> np.ndarray:
    """``X @ weights`` plus random intercept and slope contributions."""
    eta = X @ np.asarray(spec.reg_weights, dtype=float)
    for values, slope in predictors.random_effects.values():
        if slope is None:
            eta = eta + values
        else:
            eta = eta + values * predictors.data[slope].to_numpy(dtype=float)
    return eta


def simulate_errors(error_spec, n: int, rng: np.random.Generator, group_ids: Optional[np.ndarray] = None) -> np.ndarray:
    """Draw the error term for *n* rows.

    Standardised errors have mean 0 and the requested variance. The AR(1)
    filter runs within groups (the whole sample is one series for
    single-level designs).
    """
    frozen = frozen_distribution(error_spec.distribution, error_spec.params)
    if error_spec.standardize:
        draws = standardized_draws(frozen, n, rng)
    else:
        draws = np.asarray(frozen.rvs(size=n, random_state=rng), dtype=float)

    if error_spec.ar1:
        draws = ar1_filter(draws, group_ids, error_spec.ar1)
    if error_spec.standardize:
        draws = draws * np.sqrt(error_spec.variance)
    return draws


def simulate_response(spec, eta: np.ndarray, rng: np.random.Generator, group_ids: Optional[np.ndarray] = None) -> np.ndarray:
    """Turn the linear predictor into a response for the spec's family."""
    if spec.family == "continuous":
        return eta + simulate_errors(spec.error, len(eta), rng, group_ids)

    mean = INVERSE_LINKS[spec.link](eta)
    if spec.family == "binary":
        return rng.binomial(1, mean).astype(int)

    if spec.count_distribution == "negative_binomial":
        k = spec.dispersion
        return rng.negative_binomial(k, k / (k + mean)).astype(int)
    return rng.poisson(mean).astype(int)


def simulate_dataset(spec, rng: np.random.Generator) -> pd.DataFrame:
    """Generate one dataset: predictors, grouping id (two-level) and response.

    Args:
        spec: ``SimulationSpec``.
        rng: Random generator; the same generator state yields the same
            dataset.
    """
    predictors = simulate_predictors(spec, rng)
    X = design_matrix(spec, predictors.data)
    eta = linear_predictor(spec, predictors, X)
    y = simulate_response(spec, eta, rng, predictors.group_ids)

    data = predictors.data
    if spec.group_var is not None:
        data[spec.group_var] = predictors.group_ids
    data[spec.response] = y
    return data

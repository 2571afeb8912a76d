"""
Shared pytest fixtures for SimReg tests.
"""

import contextlib
import io
import warnings

import numpy as np
import pytest

from tests.config import N_REPS_CHECK, SEED


@pytest.fixture
def suppress_output():
    """Silence stdout (facade configuration echo and result tables)."""
    with contextlib.redirect_stdout(io.StringIO()):
        yield


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture
def simple_spec():
    """Two continuous predictors plus a binary one, OLS fit."""
    from simreg import ReplicationSpec

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        return ReplicationSpec(
            formula="y ~ x1 + x2 + x3",
            variables="x1=normal(0, 1), x2=normal(0, 1), x3=binary(0.5)",
            reg_weights=[0.0, 0.5, 0.0, 0.3],
            sample_size=60,
            replications=N_REPS_CHECK,
            seed=SEED,
        )


@pytest.fixture
def factor_spec():
    """Factor with three levels interacting with a continuous predictor."""
    from simreg import SimulationSpec

    return SimulationSpec(
        formula="y ~ x1 + g + x1:g",
        variables={"x1": "normal(0, 1)", "g": {"type": "factor", "levels": ["a", "b", "c"]}},
        reg_weights={"Intercept": 1.0, "x1": 0.5, "g[b]": 0.2, "g[c]": -0.2, "x1:g[b]": 0.1, "x1:g[c]": 0.0},
        sample_size=90,
    )


@pytest.fixture
def multilevel_spec():
    """Random intercept design with 20 clusters of 10."""
    from simreg import SimulationSpec

    return SimulationSpec(
        formula="y ~ x1 + (1|school)",
        variables={"x1": "normal(0, 1)", "u0": {"type": "random_effect", "group": "school", "variance": 0.5}},
        reg_weights=[0.0, 0.4],
        sample_size={"level1": 10, "level2": 20},
    )

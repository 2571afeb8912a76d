"""
Variable generation for SimReg datasets.

Each variable descriptor produces one column: continuous draws from a scipy
distribution, ordinal integers, factor labels (``pandas.Categorical`` with
the full declared level set), group-level random effects broadcast to their
members, or a within-group time index.
"""

from typing import Optional

import numpy as np
import pandas as pd

from ..errors import ConfigurationError
from .distributions import frozen_distribution, standardized_draws


def _generate_cluster_ids(sizes: np.ndarray) -> np.ndarray:
    """Contiguous integer group ids ``0..m-1`` repeated by group size."""
    return np.repeat(np.arange(len(sizes)), sizes)


def draw_group_sizes(sample_size, rng: np.random.Generator) -> np.ndarray:
    """Level-1 sizes for a two-level ``sample_size`` mapping.

    ``level1`` is either a fixed size or an inclusive ``(low, high)`` range
    drawn uniformly per group.
    """
    level1, n_groups = sample_size["level1"], sample_size["level2"]
    if isinstance(level1, (tuple, list)):
        low, high = level1
        return rng.integers(low, high + 1, size=n_groups)
    return np.full(n_groups, level1, dtype=int)


def within_group_index(group_ids: np.ndarray) -> np.ndarray:
    """Position of each row within its (contiguous) group, starting at 0."""
    starts = np.r_[0, np.flatnonzero(np.diff(group_ids)) + 1]
    sizes = np.diff(np.r_[starts, len(group_ids)])
    return np.arange(len(group_ids)) - np.repeat(starts, sizes)


def generate_variable(spec, n: int, rng: np.random.Generator, group_ids: Optional[np.ndarray] = None):
    """Generate one column of length *n* according to the descriptor *spec*.

    Args:
        spec: ``VariableSpec``.
        n: Number of rows.
        rng: Random generator.
        group_ids: Contiguous group ids (two-level designs only).

    Returns:
        ``numpy.ndarray`` for numeric variables and random effects,
        ``pandas.Categorical`` for factors.
    """
    if spec.type in ("random_effect", "time") or spec.level == 2:
        if group_ids is None:
            raise ConfigurationError(f"'{spec.type}' variables at level {spec.level} need grouped data")

    if spec.type == "time":
        return within_group_index(group_ids).astype(float)

    if spec.type == "random_effect":
        n_groups = int(group_ids.max()) + 1
        frozen = frozen_distribution(spec.distribution, spec.params)
        effects = standardized_draws(frozen, n_groups, rng) * np.sqrt(spec.variance)
        return effects[group_ids]

    size = n if spec.level == 1 else int(group_ids.max()) + 1

    if spec.type == "continuous":
        values = frozen_distribution(spec.distribution, spec.params).rvs(size=size, random_state=rng)
        values = np.asarray(values, dtype=float)
        return values if spec.level == 1 else values[group_ids]

    codes = rng.choice(len(spec.levels), size=size, p=spec.probabilities)
    if spec.level == 2:
        codes = codes[group_ids]

    if spec.type == "ordinal":
        return np.asarray(spec.levels, dtype=float)[codes]
    return pd.Categorical.from_codes(codes, categories=list(spec.levels))

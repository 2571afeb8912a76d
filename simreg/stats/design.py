"""
Design assembly: predictor generation and design-matrix construction.

Design columns follow patsy's treatment-coding names with the ``T.`` prefix
dropped: ``Intercept``, ``x1``, ``g[b]``, ``x1:g[b]``. The first declared
level of every factor is the reference level. Column order is intercept
first, then formula terms in order, with factor dummies expanded in level
order.
"""

from dataclasses import dataclass
from itertools import product
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from ..errors import DimensionMismatch
from .correlation import induce_correlation
from .variables import _generate_cluster_ids, draw_group_sizes, generate_variable

# (variable, factor level or None for numeric variables)
Component = Tuple[str, Optional[str]]


def design_columns(parsed, variables: Mapping) -> List[Tuple[str, Tuple[Component, ...]]]:
    """Names and components of the design columns for a parsed formula.

    Args:
        parsed: ``ParsedFormula``.
        variables: Mapping of variable name to ``VariableSpec``.

    Returns:
        List of ``(column_name, components)`` pairs.
    """
    columns: List[Tuple[str, Tuple[Component, ...]]] = []
    if parsed.intercept:
        columns.append(("Intercept", ()))

    for term in parsed.terms:
        choices = []
        for var in term.variables:
            spec = variables.get(var)
            if spec is not None and spec.type == "factor":
                choices.append([(var, level) for level in spec.levels[1:]])
            else:
                choices.append([(var, None)])
        for combo in product(*choices):
            name = ":".join(var if level is None else f"{var}[{level}]" for var, level in combo)
            columns.append((name, tuple(combo)))
    return columns


@dataclass
class Predictors:
    """Generated predictors of one dataset.

    Attributes:
        data: Fixed-part predictor columns.
        group_ids: Contiguous group ids, or ``None`` for single-level designs.
        random_effects: Random-effect name to ``(per-row values, slope)``.
    """

    data: pd.DataFrame
    group_ids: Optional[np.ndarray]
    random_effects: Dict[str, Tuple[np.ndarray, Optional[str]]]


def simulate_predictors(spec, rng: np.random.Generator) -> Predictors:
    """Generate every predictor and random effect of *spec*.

    Variables are drawn in declared order, then the target correlation (if
    any) is imposed on the level-1 continuous and ordinal predictors.
    """
    group_ids = None
    if spec.is_multilevel:
        group_ids = _generate_cluster_ids(draw_group_sizes(spec.sample_size, rng))
        n = len(group_ids)
    else:
        n = spec.sample_size

    fixed_vars = spec.parsed_formula.variables
    columns: Dict[str, object] = {}
    random_effects: Dict[str, Tuple[np.ndarray, Optional[str]]] = {}
    for name, var_spec in spec.variables.items():
        values = generate_variable(var_spec, n, rng, group_ids)
        if var_spec.type == "random_effect":
            random_effects[name] = (values, var_spec.slope)
        elif name in fixed_vars:
            columns[name] = values

    corr = spec.correlation
    if corr is not None:
        block = np.column_stack([columns[v] for v in corr.variables])
        block = induce_correlation(block, corr.matrix, rng, method=corr.method)
        for j, name in enumerate(corr.variables):
            columns[name] = block[:, j]

    data = pd.DataFrame({name: columns[name] for name in fixed_vars}, index=pd.RangeIndex(n))
    for name in fixed_vars:
        if spec.variables[name].type == "ordinal":
            data[name] = data[name].astype(int)
    return Predictors(data=data, group_ids=group_ids, random_effects=random_effects)


def design_matrix(spec, data: pd.DataFrame) -> np.ndarray:
    """Build the ``(n, p)`` design matrix aligned to ``spec.reg_weights``.

    Raises:
        DimensionMismatch: If the column count differs from the weight count.
    """
    n = len(data)
    matrix = []
    for _, components in design_columns(spec.parsed_formula, spec.variables):
        column = np.ones(n)
        for var, level in components:
            if level is None:
                column = column * data[var].to_numpy(dtype=float)
            else:
                column = column * (data[var].astype(object).to_numpy() == level)
        matrix.append(column)
    X = np.column_stack(matrix) if matrix else np.empty((n, 0))

    if X.shape[1] != len(spec.reg_weights):
        raise DimensionMismatch(f"Design has {X.shape[1]} columns but {len(spec.reg_weights)} weights were given")
    return X

"""
Simulation and replication specifications for SimReg.

``SimulationSpec`` describes how one synthetic dataset is generated;
``ReplicationSpec`` extends it with the model to fit, the number of
replications, the argument sweep and the power test. Both are frozen
dataclasses validated once, at construction, so that a malformed
configuration fails before any data is generated or any work scheduled.

Every descriptor accepts its natural Python form (dataclass instance, plain
dict, or the compact assignment-string syntax) and is normalised in
``__post_init__``. Specs round-trip through ``to_dict``/``from_dict`` and
``to_json``/``from_json``.
"""

import dataclasses
import importlib
import json
import warnings
from dataclasses import dataclass, field
from itertools import product
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import ConfigurationError, DimensionMismatch
from ..stats.design import design_columns
from ..stats.distributions import (
    ALTERNATIVES,
    DEFAULT_LINKS,
    VALID_LINKS,
    frozen_distribution,
    resolve_distribution,
)
from ..stats.fitting import available_estimators, check_fit_options
from ..utils.parsers import ParsedFormula, _parser, parse_formula
from ..utils.validators import (
    _check_correlation_matrix,
    _validate_alpha,
    _validate_numeric_parameter,
    _validate_probabilities,
    _validate_replications,
    _validate_sample_size,
    _validate_seed,
    _validate_timeout,
    _validate_variance,
    _ValidationResult,
)

VARIABLE_TYPES = ("continuous", "ordinal", "factor", "random_effect", "time")
FAMILIES = ("continuous", "binary", "count")
COUNT_DISTRIBUTIONS = ("poisson", "negative_binomial")
CORRELATION_METHODS = ("rank", "cholesky")
STATISTICS = ("power", "type_1_error", "precision")


def _set(obj, name, value):
    """Assign on a frozen dataclass during normalisation."""
    object.__setattr__(obj, name, value)


def _plain(value):
    """Convert numpy scalars and containers to JSON-friendly Python values."""
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class VariableSpec:
    """Descriptor for one generated variable.

    Attributes:
        type: ``"continuous"``, ``"ordinal"``, ``"factor"``,
            ``"random_effect"`` or ``"time"``.
        distribution: scipy distribution name for continuous variables and
            random effects (``"normal"`` by default).
        params: Distribution parameters (scipy keywords; ``mean``/``sd`` for
            the normal).
        levels: Ordinal: inclusive ``[low, high]`` range or an explicit list
            of integers. Factor: list of labels or an int ``k`` (labels
            ``"1"..."k"``).
        weights: Optional per-level probabilities (ordinal and factor).
        group: Grouping variable of a random effect.
        variance: Variance component of a random effect.
        slope: Predictor whose coefficient the random effect modifies
            (``None`` for a random intercept).
        level: ``1`` for per-row draws, ``2`` for one draw per group.
    """

    type: str = "continuous"
    distribution: str = "normal"
    params: Mapping[str, Any] = field(default_factory=dict)
    levels: Optional[Any] = None
    weights: Optional[Sequence[float]] = None
    group: Optional[str] = None
    variance: float = 1.0
    slope: Optional[str] = None
    level: int = 1

    def __post_init__(self):
        if self.type not in VARIABLE_TYPES:
            raise ConfigurationError(f"Unknown variable type '{self.type}'. Valid: {', '.join(VARIABLE_TYPES)}")
        _set(self, "params", dict(self.params or {}))
        if self.level not in (1, 2):
            raise ConfigurationError(f"level must be 1 or 2, got {self.level!r}")

        if self.type in ("continuous", "random_effect"):
            frozen_distribution(self.distribution, self.params)
        if self.type == "ordinal":
            _set(self, "levels", self._ordinal_levels(self.levels))
        elif self.type == "factor":
            _set(self, "levels", self._factor_levels(self.levels))
        if self.type in ("ordinal", "factor"):
            if self.weights is not None:
                _validate_probabilities(self.weights, len(self.levels), "weights").raise_if_invalid()
                _set(self, "weights", tuple(float(w) for w in self.weights))
        elif self.weights is not None:
            raise ConfigurationError(f"weights only apply to ordinal and factor variables, not '{self.type}'")

        if self.type == "random_effect":
            if not self.group:
                raise ConfigurationError("random_effect variables need a 'group'")
            _validate_variance(self.variance, "variance").raise_if_invalid()
            if self.level != 1:
                raise ConfigurationError("random_effect variables are group-level by construction; leave level at 1")
        elif self.group is not None or self.slope is not None:
            raise ConfigurationError(f"'group'/'slope' only apply to random_effect variables, not '{self.type}'")
        if self.type == "time" and self.level != 1:
            raise ConfigurationError("time variables vary within groups; level must be 1")

    @staticmethod
    def _ordinal_levels(levels) -> Tuple[int, ...]:
        if levels is None:
            raise ConfigurationError("ordinal variables need 'levels': [low, high] or a list of integers")
        values = list(levels)
        if not all(isinstance(v, (int, np.integer)) and not isinstance(v, bool) for v in values):
            raise ConfigurationError(f"ordinal levels must be integers, got {values}")
        if len(values) == 2:
            low, high = values
            if low >= high:
                raise ConfigurationError(f"ordinal range [low, high] needs low < high, got {values}")
            values = list(range(low, high + 1))
        if len(values) < 2 or len(set(values)) != len(values):
            raise ConfigurationError(f"ordinal levels must contain at least 2 distinct integers, got {values}")
        return tuple(int(v) for v in sorted(values))

    @staticmethod
    def _factor_levels(levels) -> Tuple[str, ...]:
        if isinstance(levels, (int, np.integer)) and not isinstance(levels, bool):
            labels = [str(i) for i in range(1, int(levels) + 1)]
        elif levels is not None and not isinstance(levels, str):
            labels = [str(v) for v in levels]
        else:
            raise ConfigurationError("factor variables need 'levels': a number of levels or a list of labels")
        if len(labels) < 2 or len(set(labels)) != len(labels):
            raise ConfigurationError(f"factor levels must contain at least 2 distinct labels, got {labels}")
        return tuple(labels)

    @property
    def is_numeric(self) -> bool:
        return self.type in ("continuous", "ordinal", "time")

    @property
    def probabilities(self) -> Optional[np.ndarray]:
        """Normalised level probabilities (uniform when no weights are given)."""
        if self.levels is None or self.type not in ("ordinal", "factor"):
            return None
        if self.weights is None:
            return np.full(len(self.levels), 1.0 / len(self.levels))
        w = np.asarray(self.weights, dtype=float)
        return w / w.sum()

    @classmethod
    def coerce(cls, value: Any) -> "VariableSpec":
        """Build a ``VariableSpec`` from an instance, a dict or a descriptor string."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            parsed, errors = _parser._parse(f"v={value}", "variable")
            if errors:
                raise ConfigurationError("Invalid variable descriptor:\n" + "\n".join(f"- {e}" for e in errors))
            value = parsed["v"]
        if not isinstance(value, Mapping):
            raise ConfigurationError(f"Variable descriptor must be a VariableSpec, dict or string, got {type(value).__name__}")
        unknown = set(value) - {f.name for f in dataclasses.fields(cls)}
        if unknown:
            raise ConfigurationError(f"Unknown variable descriptor fields: {', '.join(sorted(unknown))}")
        return cls(**value)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type}
        if self.type in ("continuous", "random_effect"):
            out["distribution"] = self.distribution
        if self.params:
            out["params"] = _plain(self.params)
        if self.levels is not None:
            out["levels"] = list(self.levels)
        if self.weights is not None:
            out["weights"] = list(self.weights)
        if self.type == "random_effect":
            out.update({"group": self.group, "variance": _plain(self.variance), "slope": self.slope})
        if self.level != 1:
            out["level"] = self.level
        return out


@dataclass(frozen=True)
class ErrorSpec:
    """Descriptor of the error term of continuous responses.

    Attributes:
        variance: Error variance (applied when ``standardize`` is true).
        distribution: scipy continuous distribution name.
        params: Distribution parameters.
        standardize: Rescale draws to mean 0 and ``variance``.
        ar1: Optional within-group AR(1) autocorrelation (``|ar1| < 1``).
    """

    variance: float = 1.0
    distribution: str = "normal"
    params: Mapping[str, Any] = field(default_factory=dict)
    standardize: bool = True
    ar1: Optional[float] = None

    def __post_init__(self):
        _set(self, "params", dict(self.params or {}))
        _validate_variance(self.variance, "error variance").raise_if_invalid()
        frozen_distribution(self.distribution, self.params)
        if self.ar1 is not None:
            _validate_numeric_parameter(self.ar1, "ar1", min_val=-1, max_val=1, exclusive=True).raise_if_invalid()

    @classmethod
    def coerce(cls, value: Any) -> "ErrorSpec":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        raise ConfigurationError(f"error must be an ErrorSpec or dict, got {type(value).__name__}")

    def to_dict(self) -> Dict[str, Any]:
        return _plain(dataclasses.asdict(self))


@dataclass(frozen=True, eq=False)
class CorrelationSpec:
    """Target correlation among level-1 numeric predictors.

    Attributes:
        variables: Names of the correlated predictors, in matrix order.
        matrix: Target correlation matrix.
        method: ``"rank"`` (Iman-Conover) or ``"cholesky"``.
    """

    variables: Tuple[str, ...]
    matrix: np.ndarray
    method: str = "rank"

    def __post_init__(self):
        _set(self, "variables", tuple(self.variables))
        matrix = np.array(self.matrix, dtype=float)
        _check_correlation_matrix(matrix)
        if matrix.shape[0] != len(self.variables):
            raise ConfigurationError(
                f"Correlation matrix shape {matrix.shape} doesn't match {len(self.variables)} variables"
            )
        if len(set(self.variables)) != len(self.variables):
            raise ConfigurationError(f"Duplicate variables in correlation spec: {self.variables}")
        matrix.setflags(write=False)
        _set(self, "matrix", matrix)
        if self.method not in CORRELATION_METHODS:
            raise ConfigurationError(f"correlation method must be one of {CORRELATION_METHODS}, got '{self.method}'")

    def __eq__(self, other):
        if not isinstance(other, CorrelationSpec):
            return NotImplemented
        return self.variables == other.variables and self.method == other.method and np.array_equal(self.matrix, other.matrix)

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def coerce(cls, value: Any, available: List[str], method: str = "rank") -> Optional["CorrelationSpec"]:
        """Normalise a matrix, pair mapping or ``corr(x1, x2)=r`` string.

        A bare matrix is aligned to *available* (the level-1 numeric
        predictors in declared order).
        """
        if value is None or isinstance(value, cls):
            return value
        if isinstance(value, Mapping) and "matrix" in value:
            return cls(
                variables=value.get("variables", available),
                matrix=value["matrix"],
                method=value.get("method", method),
            )
        if isinstance(value, (np.ndarray, list, tuple)):
            matrix = np.asarray(value, dtype=float)
            if matrix.shape != (len(available), len(available)):
                raise ConfigurationError(
                    f"Matrix shape {matrix.shape} doesn't match {len(available)} numeric predictors ({', '.join(available)})"
                )
            return cls(variables=available, matrix=matrix, method=method)

        if isinstance(value, str):
            pairs, errors = _parser._parse(value, "correlation", available)
            if errors:
                raise ConfigurationError("Error setting correlations:\n" + "\n".join(f"- {e}" for e in errors))
        elif isinstance(value, Mapping):
            pairs = {}
            for key, r in value.items():
                if isinstance(key, str):
                    names, errors = _parser._parse(f"{key}={r}", "correlation", available)
                    if errors:
                        raise ConfigurationError("Error setting correlations:\n" + "\n".join(f"- {e}" for e in errors))
                    pairs.update(names)
                else:
                    a, b = key
                    if a not in available or b not in available:
                        raise ConfigurationError(f"Correlation pair ({a}, {b}) must name numeric predictors: {', '.join(available)}")
                    pairs[(a, b)] = float(r)
        else:
            raise ConfigurationError(f"Unsupported correlation input of type {type(value).__name__}")

        involved = [v for v in available if any(v in pair for pair in pairs)]
        matrix = np.eye(len(involved))
        for (a, b), r in pairs.items():
            i, j = involved.index(a), involved.index(b)
            matrix[i, j] = matrix[j, i] = r
        return cls(variables=involved, matrix=matrix, method=method)

    def to_dict(self) -> Dict[str, Any]:
        return {"variables": list(self.variables), "matrix": self.matrix.tolist(), "method": self.method}


@dataclass(frozen=True)
class FitSpec:
    """Model-fitting descriptor.

    Attributes:
        formula: Analysis formula; ``None`` reuses the generating formula.
        estimator: Registered estimator id or a callable
            ``(data, formula, options) -> results``; ``None`` picks a
            default from the response family and random-effect structure.
        options: Keyword options for the estimator.
        requested: On a resolved spec, the descriptor as the user gave it.
    """

    formula: Optional[str] = None
    estimator: Optional[Union[str, Callable]] = None
    options: Mapping[str, Any] = field(default_factory=dict)
    requested: Optional["FitSpec"] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        _set(self, "options", dict(self.options or {}))
        if isinstance(self.estimator, str) and ":" in self.estimator:
            _set(self, "estimator", _import_callable(self.estimator))
        if self.estimator is not None and not callable(self.estimator):
            if self.estimator not in available_estimators():
                raise ConfigurationError(
                    f"Unknown estimator '{self.estimator}'. Available: {', '.join(available_estimators())}"
                )

    @classmethod
    def coerce(cls, value: Any) -> "FitSpec":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        raise ConfigurationError(f"fit must be a FitSpec or dict, got {type(value).__name__}")

    def to_dict(self) -> Dict[str, Any]:
        estimator = self.estimator
        if callable(estimator):
            estimator = f"{estimator.__module__}:{estimator.__qualname__}"
        return {"formula": self.formula, "estimator": estimator, "options": _plain(self.options)}


def _import_callable(path: str) -> Callable:
    """Resolve ``"package.module:qualname"`` to the object it names."""
    module_name, _, qualname = path.partition(":")
    try:
        obj: Any = importlib.import_module(module_name)
        for part in qualname.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot import estimator '{path}': {e}") from None
    return obj


@dataclass(frozen=True)
class PowerTestSpec:
    """Hypothesis-test descriptor used to turn test statistics into rejections.

    Attributes:
        distribution: Reference distribution (``"normal"``, ``"t"``, ...).
        alpha: Significance level.
        params: Reference distribution parameters. A ``"t"`` reference
            without ``df`` uses each fit's residual degrees of freedom.
        alternative: ``"two-sided"``, ``"greater"`` or ``"less"``.
    """

    distribution: str = "normal"
    alpha: float = 0.05
    params: Mapping[str, Any] = field(default_factory=dict)
    alternative: str = "two-sided"

    def __post_init__(self):
        _set(self, "params", dict(self.params or {}))
        _validate_alpha(self.alpha).raise_if_invalid()
        if self.alternative not in ALTERNATIVES:
            raise ConfigurationError(f"alternative must be one of {ALTERNATIVES}, got '{self.alternative}'")
        if not self.uses_residual_df:
            frozen_distribution(self.distribution, self.params)
        else:
            resolve_distribution(self.distribution)

    @property
    def uses_residual_df(self) -> bool:
        return resolve_distribution(self.distribution).name == "t" and "df" not in self.params

    @classmethod
    def coerce(cls, value: Any) -> "PowerTestSpec":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        raise ConfigurationError(f"power must be a PowerTestSpec or dict, got {type(value).__name__}")

    def to_dict(self) -> Dict[str, Any]:
        return _plain(dataclasses.asdict(self))


def _normalize_sample_size(value: Any) -> Union[int, Dict[str, Any]]:
    """Validate ``sample_size``: an int, or ``{"level1": n | [lo, hi], "level2": m}``."""
    if isinstance(value, Mapping):
        unknown = set(value) - {"level1", "level2"}
        if unknown or "level1" not in value or "level2" not in value:
            raise ConfigurationError("Two-level sample_size must be a mapping with exactly 'level1' and 'level2'")
        result = _validate_sample_size(value["level2"], "sample_size['level2']", min_val=2)
        level1 = value["level1"]
        if isinstance(level1, (list, tuple)):
            if len(level1) != 2:
                result.add_error("sample_size['level1'] range must be [low, high]")
            else:
                for bound in level1:
                    result.merge(_validate_sample_size(bound, "sample_size['level1'] bound", min_val=1))
                if result.is_valid and level1[0] > level1[1]:
                    result.add_error(f"sample_size['level1'] range needs low <= high, got {list(level1)}")
            level1 = tuple(int(v) for v in level1) if result.is_valid else level1
        else:
            result.merge(_validate_sample_size(level1, "sample_size['level1']", min_val=1))
            level1 = int(level1) if result.is_valid else level1
        result.raise_if_invalid()
        return {"level1": level1, "level2": int(value["level2"])}

    _validate_sample_size(value).raise_if_invalid()
    return int(value)


def _normalize_variables(value: Any) -> Dict[str, VariableSpec]:
    if isinstance(value, str):
        parsed, errors = _parser._parse(value, "variable")
        if errors:
            raise ConfigurationError("Error parsing variables:\n" + "\n".join(f"- {e}" for e in errors))
        value = parsed
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"variables must be a mapping or assignment string, got {type(value).__name__}")
    return {str(name): VariableSpec.coerce(spec) for name, spec in value.items()}


@dataclass(frozen=True)
class SimulationSpec:
    """Immutable configuration of one synthetic dataset.

    Example:
        >>> spec = SimulationSpec(
        ...     formula="y ~ x1 + x2 + x1:x2",
        ...     variables="x1=normal(0, 1), x2=binary(0.3)",
        ...     reg_weights=[1.0, 0.5, 0.3, 0.2],
        ...     sample_size=200,
        ... )

    Attributes:
        formula: Generating formula.
        variables: Predictor and random-effect descriptors.
        reg_weights: Weights aligned to ``design_columns`` (sequence), or a
            mapping / assignment string keyed by design column name.
        sample_size: ``int`` or ``{"level1": n | [lo, hi], "level2": m}``.
        error: Error-term descriptor (continuous family).
        family: ``"continuous"``, ``"binary"`` or ``"count"``.
        link: Link function; ``None`` uses the family default.
        count_distribution: ``"poisson"`` or ``"negative_binomial"``.
        dispersion: Negative-binomial size parameter.
        correlation: Target correlation among level-1 numeric predictors.
    """

    formula: str
    variables: Any
    reg_weights: Any
    sample_size: Any
    error: Any = None
    family: str = "continuous"
    link: Optional[str] = None
    count_distribution: str = "poisson"
    dispersion: float = 1.0
    correlation: Any = None

    _parsed: ParsedFormula = field(init=False, repr=False, compare=False)
    _columns: Tuple[str, ...] = field(init=False, repr=False, compare=False)
    _link_requested: Optional[str] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        parsed = parse_formula(self.formula)
        _set(self, "_parsed", parsed)
        _set(self, "variables", _normalize_variables(self.variables))
        _set(self, "sample_size", _normalize_sample_size(self.sample_size))
        _set(self, "error", ErrorSpec.coerce(self.error))
        self._validate_family()
        self._validate_structure()

        correlation_method = "rank"
        if isinstance(self.correlation, Mapping) and "method" in self.correlation and "matrix" not in self.correlation:
            correlation_method = self.correlation["method"]
            _set(self, "correlation", {k: v for k, v in self.correlation.items() if k != "method"})
        _set(self, "correlation", CorrelationSpec.coerce(self.correlation, self.correlatable_variables, correlation_method))
        self._validate_correlation()

        columns = tuple(name for name, _ in design_columns(parsed, self.variables))
        _set(self, "_columns", columns)
        _set(self, "reg_weights", self._normalize_weights(self.reg_weights))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_family(self):
        if self.family not in FAMILIES:
            raise ConfigurationError(f"family must be one of {FAMILIES}, got '{self.family}'")
        _set(self, "_link_requested", self.link)
        if self.link is None:
            _set(self, "link", DEFAULT_LINKS[self.family])
        if self.link not in VALID_LINKS[self.family]:
            raise ConfigurationError(f"Link '{self.link}' is not valid for the {self.family} family. Valid: {VALID_LINKS[self.family]}")
        if self.count_distribution not in COUNT_DISTRIBUTIONS:
            raise ConfigurationError(f"count_distribution must be one of {COUNT_DISTRIBUTIONS}, got '{self.count_distribution}'")
        _validate_numeric_parameter(self.dispersion, "dispersion", min_val=0, exclusive=True).raise_if_invalid()

    def _validate_structure(self):
        """Cross-check formula, variable descriptors and sample-size levels."""
        parsed = self._parsed
        result = _ValidationResult()

        for name in parsed.variables:
            spec = self.variables.get(name)
            if spec is None:
                result.add_error(f"Formula variable '{name}' has no descriptor in 'variables'")
            elif spec.type == "random_effect":
                result.add_error(f"'{name}' is a random_effect and cannot appear in the fixed part of the formula")

        random_vars = {n: s for n, s in self.variables.items() if s.type == "random_effect"}
        for name, spec in self.variables.items():
            if spec.type != "random_effect" and name not in parsed.variables:
                result.add_error(f"Variable '{name}' is declared but not used in the formula")
            if name == parsed.response or name in parsed.grouping_vars:
                result.add_error(f"Variable '{name}' clashes with the response or a grouping variable")

        for term in parsed.random:
            components = [None] * term.intercept + list(term.slopes)
            for slope in components:
                matches = [n for n, s in random_vars.items() if s.group == term.group and s.slope == slope]
                what = f"slope on '{slope}'" if slope else "intercept"
                if len(matches) != 1:
                    result.add_error(f"Random {what} for '{term.group}' needs exactly one random_effect variable, found {len(matches)}")
            for slope in term.slopes:
                spec = self.variables.get(slope)
                if spec is None or not spec.is_numeric or slope not in parsed.variables:
                    result.add_error(f"Random slope '{slope}' must be a numeric predictor of the fixed part")
        for name, spec in random_vars.items():
            declared = [t for t in parsed.random if t.group == spec.group]
            if not declared or (spec.slope is None and not declared[0].intercept) or (
                spec.slope is not None and spec.slope not in declared[0].slopes
            ):
                result.add_error(f"Random effect '{name}' has no matching '(...|{spec.group})' term in the formula")

        if parsed.random and not self.is_multilevel:
            result.add_error("Formulas with random effects need a two-level sample_size: {'level1': n, 'level2': m}")
        if self.is_multilevel and len(parsed.random) != 1:
            result.add_error("Two-level designs need exactly one '(...|group)' term in the formula")
        if not self.is_multilevel:
            for name, spec in self.variables.items():
                if spec.type == "time" or spec.level == 2:
                    result.add_error(f"Variable '{name}' needs a two-level sample_size")

        result.raise_if_invalid()

    def _validate_correlation(self):
        corr = self.correlation
        if corr is None:
            return
        if len(corr.variables) < 2:
            raise ConfigurationError("Need at least 2 numeric predictors for correlations")
        if corr.method == "cholesky":
            non_continuous = [v for v in corr.variables if self.variables[v].type != "continuous"]
            if non_continuous:
                raise ConfigurationError(
                    f"The cholesky method only supports continuous predictors; use method='rank' for {', '.join(non_continuous)}"
                )

    def _normalize_weights(self, weights: Any) -> Tuple[float, ...]:
        columns = self._columns
        if isinstance(weights, str):
            parsed, errors = _parser._parse(weights, "weight")
            if errors:
                raise ConfigurationError("Error parsing reg_weights:\n" + "\n".join(f"- {e}" for e in errors))
            weights = parsed
        if isinstance(weights, Mapping):
            unknown = [k for k in weights if k not in columns]
            if unknown:
                raise DimensionMismatch(f"reg_weights name unknown design columns {unknown}. Columns: {', '.join(columns)}")
            missing = [c for c in columns if c not in weights]
            if missing:
                raise DimensionMismatch(f"reg_weights has no weight for design columns {missing}")
            weights = [weights[c] for c in columns]

        try:
            values = np.asarray(weights, dtype=float)
        except (TypeError, ValueError):
            raise ConfigurationError(f"reg_weights must be numeric, got {weights!r}") from None
        if values.ndim != 1:
            raise DimensionMismatch(f"reg_weights must be one-dimensional, got shape {values.shape}")
        if len(values) != len(columns):
            raise DimensionMismatch(
                f"reg_weights has {len(values)} values but the formula has {len(columns)} design columns: {', '.join(columns)}"
            )
        if not np.all(np.isfinite(values)):
            raise ConfigurationError("reg_weights must be finite")
        return tuple(float(v) for v in values)

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def parsed_formula(self) -> ParsedFormula:
        return self._parsed

    @property
    def response(self) -> str:
        return self._parsed.response

    @property
    def design_columns(self) -> Tuple[str, ...]:
        """Design-matrix column names, aligned to ``reg_weights``."""
        return self._columns

    @property
    def weights(self) -> Dict[str, float]:
        return dict(zip(self._columns, self.reg_weights))

    def true_value(self, term: str) -> float:
        """Generating weight of *term*; terms outside the generating design are 0."""
        return self.weights.get(term, 0.0)

    @property
    def is_multilevel(self) -> bool:
        return isinstance(self.sample_size, Mapping)

    @property
    def group_var(self) -> Optional[str]:
        return self._parsed.random[0].group if self.is_multilevel and self._parsed.random else None

    @property
    def correlatable_variables(self) -> List[str]:
        """Level-1 continuous and ordinal predictors, in declared order."""
        return [
            n for n, s in self.variables.items() if s.type in ("continuous", "ordinal") and s.level == 1 and n in self._parsed.variables
        ]

    @property
    def dataset_columns(self) -> List[str]:
        """Columns of a simulated dataset: predictors, grouping id, response."""
        cols = list(self._parsed.variables)
        if self.group_var:
            cols.append(self.group_var)
        return cols + [self.response]

    def replace(self, **changes):
        """Copy with *changes*; defaults such as the link are derived afresh."""
        changes.setdefault("link", self._link_requested)
        return dataclasses.replace(self, **changes)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in dataclasses.fields(self):
            if not f.init:
                continue
            value = getattr(self, f.name)
            if f.name == "link":
                value = self._link_requested
            if hasattr(value, "to_dict"):
                value = value.to_dict()
            elif f.name == "variables":
                value = {k: v.to_dict() for k, v in value.items()}
            out[f.name] = _plain(value)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]):
        unknown = set(data) - {f.name for f in dataclasses.fields(cls) if f.init}
        if unknown:
            raise ConfigurationError(f"Unknown {cls.__name__} fields: {', '.join(sorted(unknown))}")
        return cls(**data)

    def to_json(self, **kwargs) -> str:
        kwargs.setdefault("indent", 2)
        return json.dumps(self.to_dict(), **kwargs)

    @classmethod
    def from_json(cls, text: str):
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class ReplicationSpec(SimulationSpec):
    """Simulation spec plus fitting, replication, sweep and power settings.

    Attributes:
        fit: Model-fitting descriptor.
        replications: Replications per sweep combination.
        vary_arguments: Field path to candidate values; the Cartesian product
            defines the sweep. Dotted paths reach into nested descriptors
            (``"error.variance"``, ``"variables.x1"``, ``"power.alpha"``).
        power: Hypothesis-test descriptor.
        statistics: Requested statistics (``power``, ``type_1_error``,
            ``precision``).
        type_1_error_terms: Terms for which Type-I error is requested
            explicitly; each must have a zero generating weight.
        seed: Run seed (``None`` draws fresh entropy).
        timeout: Per-replication fitting timeout in seconds.
    """

    fit: Any = None
    replications: int = 1000
    vary_arguments: Mapping[str, Sequence[Any]] = field(default_factory=dict)
    power: Any = None
    statistics: Sequence[str] = STATISTICS
    type_1_error_terms: Optional[Sequence[str]] = None
    seed: Optional[int] = None
    timeout: Optional[float] = None

    _combinations: Tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        super().__post_init__()
        _set(self, "power", PowerTestSpec.coerce(self.power))

        result = _validate_replications(self.replications)
        result.merge(_validate_seed(self.seed)).merge(_validate_timeout(self.timeout))
        result.raise_if_invalid()
        for warning in result.warnings:
            warnings.warn(warning, stacklevel=3)

        statistics = (self.statistics,) if isinstance(self.statistics, str) else tuple(self.statistics)
        if not statistics:
            raise ConfigurationError(f"At least one statistic must be requested: {', '.join(STATISTICS)}")
        unknown = [s for s in statistics if s not in STATISTICS]
        if unknown:
            raise ConfigurationError(f"Unknown statistics {unknown}. Valid: {', '.join(STATISTICS)}")
        _set(self, "statistics", statistics)
        if self.type_1_error_terms is not None:
            _set(self, "type_1_error_terms", tuple(self.type_1_error_terms))

        _set(self, "fit", self._resolve_fit(FitSpec.coerce(self.fit)))
        _set(self, "vary_arguments", {str(k): list(v) for k, v in dict(self.vary_arguments or {}).items()})
        _set(self, "_combinations", tuple(self._expand_combinations()))
        self._validate_type_1_error_terms()

    def _resolve_fit(self, fit: FitSpec) -> FitSpec:
        """Fill in the analysis formula and default estimator, then cross-check.

        Defaults are derived from the descriptor the user gave, so a spec
        rebuilt with another family or formula picks its own defaults.
        """
        request = fit.requested or fit
        formula = request.formula or self.formula
        parsed = parse_formula(formula)

        available = set(self._parsed.variables) | set(filter(None, [self.group_var]))
        missing = [v for v in parsed.variables + [s for t in parsed.random for s in t.slopes] if v not in available]
        if parsed.response != self.response:
            raise ConfigurationError(f"Fit formula response '{parsed.response}' differs from generated response '{self.response}'")
        if missing:
            raise ConfigurationError(f"Fit formula uses variables that are not generated: {', '.join(missing)}")
        bad_groups = [g for g in parsed.grouping_vars if g != self.group_var]
        if bad_groups:
            raise ConfigurationError(f"Fit formula groups by {bad_groups}, but the generated grouping variable is '{self.group_var}'")

        estimator = request.estimator
        options = dict(request.options)
        if estimator is None:
            grouped = bool(parsed.random)
            if self.family == "continuous":
                estimator = "mixedlm" if grouped else "ols"
            elif grouped:
                estimator = "gee"
                options.setdefault("family", "binomial" if self.family == "binary" else "poisson")
            else:
                estimator = "logit" if self.family == "binary" else "poisson"
        if estimator in ("mixedlm", "gee") and not parsed.random and "groups" not in options:
            raise ConfigurationError(f"Estimator '{estimator}' needs a '(1|group)' term in the fit formula")
        check_fit_options(estimator, options)
        resolved = FitSpec(formula=formula, estimator=estimator, options=options)
        _set(resolved, "requested", request)
        return resolved

    def _expand_combinations(self) -> List[Tuple[Dict[str, Any], "ReplicationSpec"]]:
        """Build one validated spec per sweep combination (fail-fast)."""
        if not self.vary_arguments:
            return [({}, self)]
        for path, values in self.vary_arguments.items():
            if path.split(".")[0] in ("vary_arguments", "seed"):
                raise ConfigurationError(f"'{path}' cannot be varied")
            if not values:
                raise ConfigurationError(f"vary_arguments['{path}'] has no candidate values")

        paths = list(self.vary_arguments)
        combos = []
        for values in product(*(self.vary_arguments[p] for p in paths)):
            key = dict(zip(paths, values))
            spec = self.replace(vary_arguments={}, fit=self.fit.requested or self.fit)
            for path, value in key.items():
                spec = _replace_path(spec, path.split("."), value)
            combos.append((key, spec))
        return combos

    def _validate_type_1_error_terms(self):
        if self.type_1_error_terms is None:
            return
        if "type_1_error" not in self.statistics:
            raise ConfigurationError("type_1_error_terms given but 'type_1_error' is not among the requested statistics")
        for key, spec in self._combinations:
            nonzero = [t for t in self.type_1_error_terms if spec.true_value(t) != 0]
            if nonzero:
                where = f" (combination {key})" if key else ""
                raise ConfigurationError(
                    f"Type-I error requested for terms with nonzero generating weights{where}: {', '.join(nonzero)}"
                )

    def combinations(self) -> List[Tuple[Dict[str, Any], "ReplicationSpec"]]:
        """``(sweep values, spec)`` pairs, one per sweep combination."""
        return list(self._combinations)

    @property
    def fit_terms(self) -> List[str]:
        """Design-column names the analysis formula is expected to report."""
        return [name for name, _ in design_columns(parse_formula(self.fit.formula), self.variables)]

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["fit"] = (self.fit.requested or self.fit).to_dict()
        return out


def _replace_path(obj: Any, parts: List[str], value: Any) -> Any:
    """Return a copy of *obj* with the value at dotted *parts* replaced."""
    head, rest = parts[0], parts[1:]
    if dataclasses.is_dataclass(obj):
        names = {f.name for f in dataclasses.fields(obj) if f.init}
        if head not in names:
            raise ConfigurationError(f"vary_arguments: '{head}' is not a field of {type(obj).__name__}")
        new_value = _replace_path(getattr(obj, head), rest, value) if rest else value
        try:
            if isinstance(obj, SimulationSpec):
                return obj.replace(**{head: new_value})
            return dataclasses.replace(obj, **{head: new_value})
        except TypeError as e:
            raise ConfigurationError(f"vary_arguments: cannot set '{head}': {e}") from None
    if isinstance(obj, Mapping):
        if rest and head not in obj:
            raise ConfigurationError(f"vary_arguments: unknown key '{head}'")
        updated = dict(obj)
        updated[head] = _replace_path(obj[head], rest, value) if rest else value
        return updated
    raise ConfigurationError(f"vary_arguments: cannot descend into '{head}' of {type(obj).__name__}")

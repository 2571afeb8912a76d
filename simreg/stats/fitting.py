"""
Model fitting for simulated datasets.

Estimators are registered by id and wrap ``statsmodels.formula.api``. A fit
never raises past ``fit_model``: estimation errors, non-convergence and
non-finite estimates come back as a ``FitFailure`` marker so the replication
can be recorded and counted.

Custom estimators are plain callables ``(data, formula, options)`` returning
a statsmodels-like results object (``params`` and ``bse``; ``tvalues``,
``pvalues`` and ``df_resid`` are optional).
"""

import warnings
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import numpy as np
import pandas as pd

from ..errors import ConfigurationError, FitFailure
from ..utils.parsers import parse_formula

_ESTIMATORS: Dict[str, Callable] = {}


def register_estimator(name: str, func: Optional[Callable] = None):
    """Register *func* under *name*; usable as a decorator."""

    def _register(f):
        _ESTIMATORS[name] = f
        return f

    return _register(func) if func is not None else _register


def available_estimators() -> List[str]:
    return sorted(_ESTIMATORS)


def resolve_estimator(estimator: Union[str, Callable]) -> Callable:
    if callable(estimator):
        return estimator
    try:
        return _ESTIMATORS[estimator]
    except KeyError:
        raise ConfigurationError(f"Unknown estimator '{estimator}'. Available: {', '.join(available_estimators())}") from None


def _smf():
    try:
        import statsmodels.formula.api as smf
    except ImportError as e:
        raise ImportError("statsmodels is required for model fitting: pip install statsmodels") from e
    return smf


GLM_FAMILIES = {
    "gaussian": "Gaussian",
    "binomial": "Binomial",
    "poisson": "Poisson",
    "negativebinomial": "NegativeBinomial",
    "gamma": "Gamma",
}
GEE_COV_STRUCTS = {
    "exchangeable": "Exchangeable",
    "independence": "Independence",
    "autoregressive": "Autoregressive",
}


def check_fit_options(estimator: Union[str, Callable], options: Mapping[str, Any]):
    """Reject ``family`` and ``cov_struct`` names the glm and gee estimators don't know.

    Raises:
        ConfigurationError: For an unknown family or covariance structure.
    """
    if estimator in ("glm", "gee"):
        family = options.get("family", "gaussian")
        if family not in GLM_FAMILIES:
            raise ConfigurationError(f"Unknown GLM family '{family}'. Available: {', '.join(GLM_FAMILIES)}")
    if estimator == "gee":
        cov_name = options.get("cov_struct", "exchangeable")
        if cov_name not in GEE_COV_STRUCTS:
            raise ConfigurationError(f"Unknown GEE cov_struct '{cov_name}'. Available: {', '.join(GEE_COV_STRUCTS)}")


def _family(name: str):
    import statsmodels.api as sm

    if name not in GLM_FAMILIES:
        raise ConfigurationError(f"Unknown GLM family '{name}'. Available: {', '.join(GLM_FAMILIES)}")
    return getattr(sm.families, GLM_FAMILIES[name])()


def _groups(data: pd.DataFrame, parsed, options: Dict[str, Any]) -> pd.Series:
    group = options.pop("groups", None) or (parsed.grouping_vars[0] if parsed.random else None)
    if group is None:
        raise ConfigurationError("Grouped estimators need a '(1|group)' term or a 'groups' option")
    return data[group]


@register_estimator("ols")
def _fit_ols(data, formula, options):
    return _smf().ols(parse_formula(formula).fixed_formula, data).fit(**options)


@register_estimator("logit")
def _fit_logit(data, formula, options):
    return _smf().logit(parse_formula(formula).fixed_formula, data).fit(disp=False, **options)


@register_estimator("probit")
def _fit_probit(data, formula, options):
    return _smf().probit(parse_formula(formula).fixed_formula, data).fit(disp=False, **options)


@register_estimator("poisson")
def _fit_poisson(data, formula, options):
    return _smf().poisson(parse_formula(formula).fixed_formula, data).fit(disp=False, **options)


@register_estimator("negativebinomial")
def _fit_negativebinomial(data, formula, options):
    return _smf().negativebinomial(parse_formula(formula).fixed_formula, data).fit(disp=False, **options)


@register_estimator("glm")
def _fit_glm(data, formula, options):
    family = _family(options.pop("family", "gaussian"))
    return _smf().glm(parse_formula(formula).fixed_formula, data, family=family).fit(**options)


@register_estimator("mixedlm")
def _fit_mixedlm(data, formula, options):
    """Linear mixed model (REML by default), retrying with more iterations."""
    parsed = parse_formula(formula)
    groups = _groups(data, parsed, options)
    model = _smf().mixedlm(parsed.fixed_formula, data, groups=groups, re_formula=parsed.re_formula)

    reml = options.pop("reml", True)
    method = options.pop("method", "lbfgs")
    attempts = [options.pop("maxiter")] if "maxiter" in options else [100, 200, 500]
    result = None
    for max_iter in attempts:
        result = model.fit(reml=reml, method=method, maxiter=max_iter, **options)
        if getattr(result, "converged", True):
            break
    return result


@register_estimator("gee")
def _fit_gee(data, formula, options):
    import statsmodels.api as sm

    parsed = parse_formula(formula)
    groups = _groups(data, parsed, options)
    family = _family(options.pop("family", "gaussian"))
    cov_name = options.pop("cov_struct", "exchangeable")
    if cov_name not in GEE_COV_STRUCTS:
        raise ConfigurationError(f"Unknown GEE cov_struct '{cov_name}'. Available: {', '.join(GEE_COV_STRUCTS)}")
    cov_struct = getattr(sm.cov_struct, GEE_COV_STRUCTS[cov_name])()
    model = _smf().gee(parsed.fixed_formula, groups, data, family=family, cov_struct=cov_struct)
    return model.fit(**options)



@dataclass
class FittedModel:
    """A successful fit.

    Attributes:
        estimator: Estimator id (or callable name).
        formula: Analysis formula.
        result: Estimator results object.
        n_obs: Rows in the fitted dataset.
    """

    estimator: str
    formula: str
    result: Any
    n_obs: int


def _fixed_effects(result):
    """``params``/``bse`` restricted to fixed effects (MixedLM adds variance rows)."""
    if hasattr(result, "fe_params"):
        return result.fe_params, result.bse_fe
    return result.params, result.bse


def _check_result(result) -> Optional[str]:
    """Reason the results object is unusable, or ``None`` when it is fine."""
    if getattr(result, "converged", True) is False:
        return "Model did not converge"
    retvals = getattr(result, "mle_retvals", None)
    if isinstance(retvals, Mapping) and retvals.get("converged") is False:
        return "Model did not converge"
    try:
        params, bse = _fixed_effects(result)
        params = np.asarray(params, dtype=float)
        bse = np.asarray(bse, dtype=float)
    except (AttributeError, TypeError, ValueError) as e:
        return f"Estimator returned unusable results: {e}"
    if params.size == 0:
        return "Estimator returned no coefficients"
    if not (np.all(np.isfinite(params)) and np.all(np.isfinite(bse))):
        return "Non-finite estimates or standard errors"
    return None


def fit_model(
    data: pd.DataFrame,
    formula: str,
    estimator: Union[str, Callable],
    options: Optional[Mapping[str, Any]] = None,
) -> Union[FittedModel, FitFailure]:
    """Fit *estimator* to *data*.

    Returns:
        ``FittedModel`` on success, ``FitFailure`` otherwise.

    Raises:
        ConfigurationError: For an unknown estimator id.
        ImportError: If statsmodels is not installed.
    """
    func = resolve_estimator(estimator)
    name = estimator if isinstance(estimator, str) else getattr(estimator, "__name__", repr(estimator))
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = func(data, formula, dict(options or {}))
    except (ImportError, ConfigurationError):
        raise
    except Exception as e:
        return FitFailure(f"{type(e).__name__}: {e}")

    reason = _check_result(result)
    if reason is not None:
        return FitFailure(reason)
    return FittedModel(estimator=name, formula=formula, result=result, n_obs=len(data))

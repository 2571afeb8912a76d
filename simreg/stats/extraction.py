"""
Coefficient extraction from fitted models.

Produces one row per fixed-effect term with the estimate, standard error,
test statistic, p-value and residual degrees of freedom. Term names are
normalised to the design-column convention (``Intercept``, ``x1``, ``g[b]``)
so that records line up with the generating weights.
"""

import re

import numpy as np
import pandas as pd
from scipy import stats

RECORD_COLUMNS = ["term", "estimate", "std_error", "statistic", "p_value", "df_resid"]

_INTERCEPT_NAMES = {"Intercept", "(Intercept)", "const", "intercept"}


def normalize_term(name: str) -> str:
    """Map estimator term names to design-column names.

    >>> normalize_term("C(g)[T.b]:x1")
    'g[b]:x1'
    """
    name = str(name)
    if name in _INTERCEPT_NAMES:
        return "Intercept"
    name = re.sub(r"C\(\s*([^,()\s]+)[^)]*\)", r"\1", name)
    return re.sub(r"\[T\.([^\]]*)\]", r"[\1]", name)


def extract_coefficients(fitted) -> pd.DataFrame:
    """One row per fixed-effect term of *fitted* (a ``FittedModel``).

    MixedLM variance-component rows are dropped. ``df_resid`` is NaN when the
    estimator does not use t-based inference.
    """
    result = fitted.result
    if hasattr(result, "fe_params"):
        params = result.fe_params
        bse = np.asarray(result.bse_fe, dtype=float)
    else:
        params = result.params
        bse = np.asarray(result.bse, dtype=float)
    k = len(params)
    names = list(getattr(params, "index", range(k)))
    estimates = np.asarray(params, dtype=float)

    tvalues = getattr(result, "tvalues", None)
    statistic = np.asarray(tvalues, dtype=float)[:k] if tvalues is not None else estimates / bse
    pvalues = getattr(result, "pvalues", None)
    p_value = np.asarray(pvalues, dtype=float)[:k] if pvalues is not None else 2 * stats.norm.sf(np.abs(statistic))

    df_resid = np.nan
    if getattr(result, "use_t", False):
        df_resid = float(getattr(result, "df_resid", np.nan))

    return pd.DataFrame(
        {
            "term": [normalize_term(n) for n in names],
            "estimate": estimates,
            "std_error": bse,
            "statistic": statistic,
            "p_value": p_value,
            "df_resid": df_resid,
        },
        columns=RECORD_COLUMNS,
    )

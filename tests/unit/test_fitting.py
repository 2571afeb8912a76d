"""
Tests for model fitting and coefficient extraction.
"""

import numpy as np
import pandas as pd
import pytest

from simreg.errors import ConfigurationError, FitFailure
from simreg.stats.extraction import RECORD_COLUMNS, extract_coefficients, normalize_term
from simreg.stats.fitting import FittedModel, available_estimators, check_fit_options, fit_model, register_estimator, resolve_estimator


@pytest.fixture
def ols_data(rng):
    n = 200
    x1 = rng.normal(size=n)
    g = pd.Categorical(rng.choice(["a", "b", "c"], size=n), categories=["a", "b", "c"])
    y = 1.0 + 0.5 * x1 + 0.3 * (np.asarray(g) == "b") + rng.normal(size=n)
    return pd.DataFrame({"x1": x1, "g": g, "y": y})


@pytest.fixture
def grouped_data(rng):
    groups = np.repeat(np.arange(30), 10)
    x1 = rng.normal(size=300)
    y = 0.4 * x1 + rng.normal(scale=0.7, size=30)[groups] + rng.normal(size=300)
    return pd.DataFrame({"x1": x1, "school": groups, "y": y})


class TestEstimatorRegistry:
    """Test estimator registration and lookup."""

    def test_builtin_estimators(self):
        for name in ["ols", "logit", "probit", "poisson", "negativebinomial", "glm", "mixedlm", "gee"]:
            assert name in available_estimators()

    def test_register_decorator(self):
        from simreg.stats import fitting

        @register_estimator("test_constant")
        def _constant(data, formula, options):
            return None

        try:
            assert resolve_estimator("test_constant") is _constant
        finally:
            fitting._ESTIMATORS.pop("test_constant")

    def test_unknown_estimator(self):
        with pytest.raises(ConfigurationError, match="Unknown estimator"):
            resolve_estimator("ridge")

    def test_fit_options_checked_by_estimator(self):
        check_fit_options("glm", {"family": "poisson"})
        check_fit_options("gee", {"family": "binomial", "cov_struct": "independence"})
        # family is only meaningful to glm and gee
        check_fit_options("ols", {"family": "bogus"})
        with pytest.raises(ConfigurationError, match="Unknown GLM family"):
            check_fit_options("glm", {"family": "tweedie"})
        with pytest.raises(ConfigurationError, match="Unknown GEE cov_struct"):
            check_fit_options("gee", {"cov_struct": "unstructured"})

    def test_callable_passes_through(self):
        def custom(data, formula, options):
            return None

        assert resolve_estimator(custom) is custom


class TestFitModel:
    """Test fit_model success and failure paths."""

    def test_ols(self, ols_data):
        fitted = fit_model(ols_data, "y ~ x1 + g", "ols")
        assert isinstance(fitted, FittedModel)
        assert fitted.estimator == "ols"
        assert fitted.n_obs == 200

    def test_exception_becomes_failure(self, ols_data):
        def broken(data, formula, options):
            raise np.linalg.LinAlgError("Singular matrix")

        failure = fit_model(ols_data, "y ~ x1", broken)
        assert isinstance(failure, FitFailure)
        assert failure.kind == "fit_failure"
        assert "Singular matrix" in failure.reason
        assert not failure

    def test_missing_column_becomes_failure(self, ols_data):
        failure = fit_model(ols_data, "y ~ x1 + x9", "ols")
        assert isinstance(failure, FitFailure)

    def test_non_finite_estimates(self, ols_data):
        class Result:
            params = pd.Series([1.0, np.nan], index=["Intercept", "x1"])
            bse = pd.Series([0.1, 0.1], index=["Intercept", "x1"])

        failure = fit_model(ols_data, "y ~ x1", lambda data, formula, options: Result())
        assert failure == FitFailure("Non-finite estimates or standard errors")

    def test_non_convergence(self, ols_data):
        class Result:
            converged = False
            params = pd.Series([1.0])
            bse = pd.Series([0.1])

        failure = fit_model(ols_data, "y ~ x1", lambda data, formula, options: Result())
        assert failure.reason == "Model did not converge"

    def test_configuration_error_propagates(self, ols_data):
        with pytest.raises(ConfigurationError, match="Unknown GLM family"):
            fit_model(ols_data, "y ~ x1", "glm", {"family": "tweedie"})

    def test_options_not_mutated(self, ols_data):
        options = {"family": "gaussian"}
        fit_model(ols_data, "y ~ x1", "glm", options)
        assert options == {"family": "gaussian"}

    def test_logit(self, rng):
        x1 = rng.normal(size=300)
        y = rng.binomial(1, 1 / (1 + np.exp(-0.8 * x1)))
        fitted = fit_model(pd.DataFrame({"x1": x1, "y": y}), "y ~ x1", "logit")
        assert isinstance(fitted, FittedModel)

    def test_mixedlm(self, grouped_data):
        fitted = fit_model(grouped_data, "y ~ x1 + (1|school)", "mixedlm")
        assert isinstance(fitted, FittedModel)

    def test_gee(self, grouped_data):
        fitted = fit_model(grouped_data, "y ~ x1 + (1|school)", "gee")
        assert isinstance(fitted, FittedModel)


class TestNormalizeTerm:
    """Test term-name normalisation."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Intercept", "Intercept"),
            ("const", "Intercept"),
            ("(Intercept)", "Intercept"),
            ("x1", "x1"),
            ("g[T.b]", "g[b]"),
            ("C(g)[T.b]", "g[b]"),
            ("C(g)[T.b]:x1", "g[b]:x1"),
            ("x1:g[T.c]", "x1:g[c]"),
        ],
    )
    def test_names(self, raw, expected):
        assert normalize_term(raw) == expected


class TestExtractCoefficients:
    """Test coefficient extraction."""

    def test_ols_records(self, ols_data):
        fitted = fit_model(ols_data, "y ~ x1 + g", "ols")
        records = extract_coefficients(fitted)
        assert list(records.columns) == RECORD_COLUMNS
        assert list(records["term"]) == ["Intercept", "g[b]", "g[c]", "x1"]
        assert (records["df_resid"] == 196).all()
        row = records.set_index("term").loc["x1"]
        assert row["statistic"] == pytest.approx(row["estimate"] / row["std_error"])

    def test_logit_has_no_residual_df(self, rng):
        x1 = rng.normal(size=300)
        y = rng.binomial(1, 0.5, size=300)
        fitted = fit_model(pd.DataFrame({"x1": x1, "y": y}), "y ~ x1", "logit")
        records = extract_coefficients(fitted)
        assert records["df_resid"].isna().all()

    def test_mixedlm_drops_variance_rows(self, grouped_data):
        fitted = fit_model(grouped_data, "y ~ x1 + (1|school)", "mixedlm")
        records = extract_coefficients(fitted)
        assert list(records["term"]) == ["Intercept", "x1"]
        assert np.all(np.isfinite(records["p_value"]))

    def test_minimal_custom_result(self):
        class Result:
            params = pd.Series([2.0, 0.5], index=["const", "x1"])
            bse = pd.Series([1.0, 0.25], index=["const", "x1"])

        fitted = FittedModel("custom", "y ~ x1", Result(), 10)
        records = extract_coefficients(fitted)
        assert list(records["term"]) == ["Intercept", "x1"]
        np.testing.assert_allclose(records["statistic"], [2.0, 2.0])
        np.testing.assert_allclose(records["p_value"], 2 * (1 - 0.9772498680518208), rtol=1e-6)
        assert records["df_resid"].isna().all()

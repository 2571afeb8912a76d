"""
Tests for simulation and replication specifications.
"""

import warnings

import numpy as np
import pytest

from simreg import (
    ConfigurationError,
    CorrelationSpec,
    DimensionMismatch,
    ErrorSpec,
    FitSpec,
    InvalidCorrelationMatrix,
    PowerTestSpec,
    ReplicationSpec,
    SimulationSpec,
    VariableSpec,
)


@pytest.fixture(autouse=True)
def _no_low_replication_warnings():
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        yield


def _custom_estimator(data, formula, options):
    import statsmodels.formula.api as smf

    return smf.ols(formula, data).fit()


def _spec(**overrides):
    args = dict(
        formula="y ~ x1 + x2",
        variables="x1=normal(0, 1), x2=binary(0.4)",
        reg_weights=[0.0, 0.5, 0.0],
        sample_size=50,
        replications=20,
        seed=2137,
    )
    args.update(overrides)
    return ReplicationSpec(**args)


class TestVariableSpec:
    """Test VariableSpec normalisation."""

    def test_coerce_string(self):
        spec = VariableSpec.coerce("normal(0, 2)")
        assert spec.type == "continuous"
        assert spec.params == {"mean": 0, "sd": 2}

    def test_coerce_binary_is_ordinal(self):
        spec = VariableSpec.coerce("binary(0.3)")
        assert spec.type == "ordinal"
        assert spec.levels == (0, 1)
        assert spec.weights == pytest.approx((0.7, 0.3))

    def test_ordinal_range(self):
        spec = VariableSpec(type="ordinal", levels=[1, 5])
        assert spec.levels == (1, 2, 3, 4, 5)

    def test_ordinal_explicit_levels(self):
        spec = VariableSpec(type="ordinal", levels=[7, 1, 3])
        assert spec.levels == (1, 3, 7)

    def test_ordinal_needs_integers(self):
        with pytest.raises(ConfigurationError, match="integers"):
            VariableSpec(type="ordinal", levels=[0.5, 1.5, 2.5])

    def test_factor_from_count(self):
        spec = VariableSpec(type="factor", levels=3)
        assert spec.levels == ("1", "2", "3")

    def test_factor_single_level_rejected(self):
        with pytest.raises(ConfigurationError, match="at least 2"):
            VariableSpec(type="factor", levels=["a"])

    def test_uniform_probabilities_by_default(self):
        spec = VariableSpec(type="factor", levels=["a", "b", "c", "d"])
        np.testing.assert_allclose(spec.probabilities, [0.25] * 4)

    def test_weights_normalised(self):
        spec = VariableSpec(type="factor", levels=["a", "b"], weights=[1, 3])
        np.testing.assert_allclose(spec.probabilities, [0.25, 0.75])

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="Unknown variable type"):
            VariableSpec(type="spline")

    def test_weights_on_continuous_rejected(self):
        with pytest.raises(ConfigurationError, match="weights only apply"):
            VariableSpec(type="continuous", weights=[0.5, 0.5])

    def test_unknown_distribution(self):
        with pytest.raises(ConfigurationError, match="Unknown continuous distribution"):
            VariableSpec(distribution="not_a_distribution")

    def test_random_effect_needs_group(self):
        with pytest.raises(ConfigurationError, match="group"):
            VariableSpec(type="random_effect", variance=0.5)

    def test_unknown_descriptor_field(self):
        with pytest.raises(ConfigurationError, match="Unknown variable descriptor fields"):
            VariableSpec.coerce({"type": "continuous", "sigma": 2})


class TestDescriptors:
    """Test ErrorSpec, CorrelationSpec, FitSpec and PowerTestSpec."""

    def test_error_defaults(self):
        error = ErrorSpec.coerce(None)
        assert error.variance == 1.0
        assert error.distribution == "normal"
        assert error.ar1 is None

    def test_error_ar1_bounds(self):
        with pytest.raises(ConfigurationError):
            ErrorSpec(ar1=1.0)

    def test_error_negative_variance(self):
        with pytest.raises(ConfigurationError):
            ErrorSpec(variance=-1)

    def test_correlation_matrix_read_only(self):
        corr = CorrelationSpec(variables=["a", "b"], matrix=[[1, 0.3], [0.3, 1]])
        with pytest.raises(ValueError):
            corr.matrix[0, 1] = 0.5

    def test_correlation_equality(self):
        a = CorrelationSpec(variables=["a", "b"], matrix=[[1, 0.3], [0.3, 1]])
        b = CorrelationSpec(variables=("a", "b"), matrix=np.array([[1, 0.3], [0.3, 1]]))
        assert a == b

    def test_correlation_from_pairs_only_involved(self):
        corr = CorrelationSpec.coerce({"x1:x3": 0.4}, ["x1", "x2", "x3"])
        assert corr.variables == ("x1", "x3")
        np.testing.assert_allclose(corr.matrix, [[1, 0.4], [0.4, 1]])

    def test_correlation_invalid_matrix(self):
        with pytest.raises(InvalidCorrelationMatrix):
            CorrelationSpec.coerce([[1, 0.5], [0.2, 1]], ["x1", "x2"])

    def test_correlation_wrong_shape(self):
        with pytest.raises(ConfigurationError, match="doesn't match"):
            CorrelationSpec.coerce(np.eye(3), ["x1", "x2"])

    def test_fit_unknown_estimator(self):
        with pytest.raises(ConfigurationError, match="Unknown estimator"):
            FitSpec(estimator="lasso")

    def test_fit_import_path(self):
        from simreg.stats.fitting import _fit_ols

        fit = FitSpec(estimator="simreg.stats.fitting:_fit_ols")
        assert fit.estimator is _fit_ols
        assert fit.to_dict()["estimator"] == "simreg.stats.fitting:_fit_ols"

    def test_fit_bad_import_path(self):
        with pytest.raises(ConfigurationError, match="Cannot import"):
            FitSpec(estimator="simreg.nowhere:fit")

    def test_fit_callable_serialised_by_path(self):
        fit = FitSpec(estimator=_custom_estimator)
        assert fit.to_dict()["estimator"].endswith(":_custom_estimator")

    def test_power_residual_df(self):
        assert PowerTestSpec(distribution="t").uses_residual_df
        assert not PowerTestSpec(distribution="t", params={"df": 30}).uses_residual_df
        assert not PowerTestSpec().uses_residual_df

    def test_power_bad_alternative(self):
        with pytest.raises(ConfigurationError, match="alternative"):
            PowerTestSpec(alternative="both")

    def test_power_bad_alpha(self):
        with pytest.raises(ConfigurationError):
            PowerTestSpec(alpha=1.5)


class TestSimulationSpec:
    """Test SimulationSpec validation and derived properties."""

    def test_design_columns_with_factor(self, factor_spec):
        assert factor_spec.design_columns == ("Intercept", "x1", "g[b]", "g[c]", "x1:g[b]", "x1:g[c]")

    def test_weights_mapping_aligned(self, factor_spec):
        assert factor_spec.reg_weights == (1.0, 0.5, 0.2, -0.2, 0.1, 0.0)
        assert factor_spec.weights["g[c]"] == -0.2

    def test_weights_from_string(self):
        spec = SimulationSpec(
            formula="y ~ x1 + x2",
            variables="x1=normal(0, 1), x2=normal(0, 1)",
            reg_weights="Intercept=1, x1=0.5, x2=0.25",
            sample_size=30,
        )
        assert spec.reg_weights == (1.0, 0.5, 0.25)

    def test_no_intercept_columns(self):
        spec = SimulationSpec(formula="y ~ x1 - 1", variables={"x1": "normal(0, 1)"}, reg_weights=[0.5], sample_size=30)
        assert spec.design_columns == ("x1",)

    def test_weight_count_mismatch(self):
        with pytest.raises(DimensionMismatch, match="design columns"):
            SimulationSpec(formula="y ~ x1 + x2", variables="x1=normal(0, 1), x2=normal(0, 1)", reg_weights=[0.5, 0.5], sample_size=30)

    def test_weight_unknown_name(self):
        with pytest.raises(DimensionMismatch, match="unknown design columns"):
            SimulationSpec(
                formula="y ~ x1",
                variables={"x1": "normal(0, 1)"},
                reg_weights={"Intercept": 0.0, "x1": 0.5, "x9": 0.1},
                sample_size=30,
            )

    def test_dimension_mismatch_is_configuration_error(self):
        assert issubclass(DimensionMismatch, ConfigurationError)

    def test_unused_variable(self):
        with pytest.raises(ConfigurationError, match="declared but not used"):
            SimulationSpec(formula="y ~ x1", variables="x1=normal(0, 1), x2=normal(0, 1)", reg_weights=[0, 1], sample_size=30)

    def test_missing_descriptor(self):
        with pytest.raises(ConfigurationError, match="no descriptor"):
            SimulationSpec(formula="y ~ x1 + x2", variables={"x1": "normal(0, 1)"}, reg_weights=[0, 1, 1], sample_size=30)

    def test_true_value_of_absent_term(self, factor_spec):
        assert factor_spec.true_value("x1") == 0.5
        assert factor_spec.true_value("x7") == 0.0

    def test_sample_size_too_small(self):
        with pytest.raises(ConfigurationError):
            SimulationSpec(formula="y ~ x1", variables={"x1": "normal(0, 1)"}, reg_weights=[0, 1], sample_size=1)

    def test_unknown_family(self):
        with pytest.raises(ConfigurationError, match="family"):
            SimulationSpec(formula="y ~ x1", variables={"x1": "normal(0, 1)"}, reg_weights=[0, 1], sample_size=30, family="ordinal")

    def test_invalid_link(self):
        with pytest.raises(ConfigurationError, match="not valid"):
            SimulationSpec(formula="y ~ x1", variables={"x1": "normal(0, 1)"}, reg_weights=[0, 1], sample_size=30, family="binary", link="log")

    def test_default_link(self):
        spec = SimulationSpec(formula="y ~ x1", variables={"x1": "normal(0, 1)"}, reg_weights=[0, 1], sample_size=30, family="count")
        assert spec.link == "log"

    def test_family_change_rederives_link(self):
        spec = SimulationSpec(formula="y ~ x1", variables={"x1": "normal(0, 1)"}, reg_weights=[0, 1], sample_size=30)
        assert spec.link == "identity"
        assert spec.replace(family="binary").link == "logit"
        assert spec.replace(family="count").link == "log"

    def test_explicit_link_kept_on_replace(self):
        spec = SimulationSpec(formula="y ~ x1", variables={"x1": "normal(0, 1)"}, reg_weights=[0, 1], sample_size=30, family="binary", link="probit")
        assert spec.replace(sample_size=60).link == "probit"

    def test_correlation_string(self):
        spec = SimulationSpec(
            formula="y ~ x1 + x2",
            variables="x1=normal(0, 1), x2=normal(0, 1)",
            reg_weights=[0, 1, 1],
            sample_size=30,
            correlation="corr(x1, x2)=0.5",
        )
        assert spec.correlation.variables == ("x1", "x2")
        assert spec.correlation.method == "rank"

    def test_correlation_method_in_mapping(self):
        spec = SimulationSpec(
            formula="y ~ x1 + x2",
            variables="x1=normal(0, 1), x2=normal(0, 1)",
            reg_weights=[0, 1, 1],
            sample_size=30,
            correlation={"method": "cholesky", "x1:x2": 0.5},
        )
        assert spec.correlation.method == "cholesky"

    def test_cholesky_rejects_ordinal(self):
        with pytest.raises(ConfigurationError, match="cholesky"):
            SimulationSpec(
                formula="y ~ x1 + x2",
                variables="x1=normal(0, 1), x2=binary(0.5)",
                reg_weights=[0, 1, 1],
                sample_size=30,
                correlation={"method": "cholesky", "x1:x2": 0.5},
            )

    def test_invalid_correlation_matrix(self):
        with pytest.raises(InvalidCorrelationMatrix):
            SimulationSpec(
                formula="y ~ x1 + x2",
                variables="x1=normal(0, 1), x2=normal(0, 1)",
                reg_weights=[0, 1, 1],
                sample_size=30,
                correlation=[[1, 0.5], [0.3, 1]],
            )


class TestMultilevelSpec:
    """Test two-level designs."""

    def test_properties(self, multilevel_spec):
        assert multilevel_spec.is_multilevel
        assert multilevel_spec.group_var == "school"
        assert multilevel_spec.dataset_columns == ["x1", "school", "y"]

    def test_level1_range(self):
        spec = SimulationSpec(
            formula="y ~ x1 + (1|school)",
            variables={"x1": "normal(0, 1)", "u0": {"type": "random_effect", "group": "school"}},
            reg_weights=[0, 1],
            sample_size={"level1": [5, 15], "level2": 10},
        )
        assert spec.sample_size == {"level1": (5, 15), "level2": 10}

    def test_level1_range_reversed(self):
        with pytest.raises(ConfigurationError, match="low <= high"):
            SimulationSpec(
                formula="y ~ x1 + (1|school)",
                variables={"x1": "normal(0, 1)", "u0": {"type": "random_effect", "group": "school"}},
                reg_weights=[0, 1],
                sample_size={"level1": [15, 5], "level2": 10},
            )

    def test_random_effects_need_two_levels(self):
        with pytest.raises(ConfigurationError, match="two-level sample_size"):
            SimulationSpec(
                formula="y ~ x1 + (1|school)",
                variables={"x1": "normal(0, 1)", "u0": {"type": "random_effect", "group": "school"}},
                reg_weights=[0, 1],
                sample_size=100,
            )

    def test_missing_random_effect_variable(self):
        with pytest.raises(ConfigurationError, match="exactly one random_effect"):
            SimulationSpec(
                formula="y ~ x1 + (1|school)",
                variables={"x1": "normal(0, 1)"},
                reg_weights=[0, 1],
                sample_size={"level1": 5, "level2": 10},
            )

    def test_random_effect_in_fixed_part(self):
        with pytest.raises(ConfigurationError, match="fixed part"):
            SimulationSpec(
                formula="y ~ x1 + u0 + (1|school)",
                variables={"x1": "normal(0, 1)", "u0": {"type": "random_effect", "group": "school"}},
                reg_weights=[0, 1, 1],
                sample_size={"level1": 5, "level2": 10},
            )

    def test_time_needs_two_levels(self):
        with pytest.raises(ConfigurationError, match="needs a two-level"):
            SimulationSpec(formula="y ~ t", variables={"t": {"type": "time"}}, reg_weights=[0, 1], sample_size=30)


class TestReplicationSpec:
    """Test fitting defaults, sweeps and serialisation."""

    def test_default_fit_is_ols(self):
        spec = _spec()
        assert spec.fit.estimator == "ols"
        assert spec.fit.formula == spec.formula

    def test_default_fit_by_family(self):
        assert _spec(family="binary").fit.estimator == "logit"
        assert _spec(family="count").fit.estimator == "poisson"

    def test_default_fit_multilevel(self):
        common = dict(
            formula="y ~ x1 + (1|school)",
            variables={"x1": "normal(0, 1)", "u0": {"type": "random_effect", "group": "school"}},
            reg_weights=[0, 1],
            sample_size={"level1": 5, "level2": 10},
        )
        assert _spec(**common).fit.estimator == "mixedlm"
        binary = _spec(family="binary", **common)
        assert binary.fit.estimator == "gee"
        assert binary.fit.options == {"family": "binomial"}

    def test_fit_formula_response_mismatch(self):
        with pytest.raises(ConfigurationError, match="differs"):
            _spec(fit={"formula": "z ~ x1"})

    def test_fit_formula_unknown_variable(self):
        with pytest.raises(ConfigurationError, match="not generated"):
            _spec(fit={"formula": "y ~ x1 + x9"})

    def test_fit_formula_may_omit_terms(self):
        spec = _spec(fit={"formula": "y ~ x1"})
        assert spec.fit.formula == "y ~ x1"

    def test_mixedlm_needs_groups(self):
        with pytest.raises(ConfigurationError, match="needs a"):
            _spec(fit={"estimator": "mixedlm"})

    def test_glm_unknown_family(self):
        with pytest.raises(ConfigurationError, match="Unknown GLM family"):
            _spec(fit={"estimator": "glm", "options": {"family": "bogus"}})

    def test_gee_unknown_cov_struct(self):
        with pytest.raises(ConfigurationError, match="Unknown GEE cov_struct"):
            _spec(
                formula="y ~ x1 + (1|school)",
                variables={"x1": "normal(0, 1)", "u0": {"type": "random_effect", "group": "school"}},
                reg_weights=[0, 1],
                sample_size={"level1": 5, "level2": 10},
                family="binary",
                fit={"estimator": "gee", "options": {"family": "binomial", "cov_struct": "bogus"}},
            )

    def test_family_sweep_defaults_per_combination(self):
        spec = _spec(vary_arguments={"family": ["continuous", "binary", "count"]})
        combos = [combo for _, combo in spec.combinations()]
        assert [c.fit.estimator for c in combos] == ["ols", "logit", "poisson"]
        assert [c.link for c in combos] == ["identity", "logit", "log"]

    def test_formula_sweep_fits_own_formula(self):
        spec = _spec(vary_arguments={"formula": ["y ~ x1 + x2", "y ~ x2 + x1"]})
        for _, combo in spec.combinations():
            assert combo.fit.formula == combo.formula

    def test_explicit_fit_kept_across_sweep(self):
        spec = _spec(fit={"estimator": "glm"}, vary_arguments={"family": ["continuous", "binary"]})
        assert [c.fit.estimator for _, c in spec.combinations()] == ["glm", "glm"]

    def test_defaulted_fit_serialised_as_given(self):
        spec = _spec(family="binary")
        out = spec.to_dict()
        assert out["fit"]["estimator"] is None
        assert out["link"] is None
        assert ReplicationSpec.from_dict(out) == spec

    def test_sweep_combinations(self):
        spec = _spec(vary_arguments={"sample_size": [50, 100], "error.variance": [1.0, 2.0]})
        combos = spec.combinations()
        assert len(combos) == 4
        key, combo = combos[3]
        assert key == {"sample_size": 100, "error.variance": 2.0}
        assert combo.sample_size == 100
        assert combo.error.variance == 2.0
        assert combo.vary_arguments == {}

    def test_no_sweep_single_combination(self):
        spec = _spec()
        assert spec.combinations() == [({}, spec)]

    def test_sweep_invalid_value_fails_fast(self):
        with pytest.raises(ConfigurationError):
            _spec(vary_arguments={"sample_size": [50, 1]})

    def test_sweep_unknown_field(self):
        with pytest.raises(ConfigurationError, match="not a field"):
            _spec(vary_arguments={"sample_sizes": [50, 100]})

    def test_sweep_seed_rejected(self):
        with pytest.raises(ConfigurationError, match="cannot be varied"):
            _spec(vary_arguments={"seed": [1, 2]})

    def test_sweep_empty_values(self):
        with pytest.raises(ConfigurationError, match="no candidate values"):
            _spec(vary_arguments={"sample_size": []})

    def test_type_1_error_terms_must_be_null(self):
        with pytest.raises(ConfigurationError, match="nonzero generating weights"):
            _spec(type_1_error_terms=["x1"])
        assert _spec(type_1_error_terms=["x2"]).type_1_error_terms == ("x2",)

    def test_type_1_error_terms_need_statistic(self):
        with pytest.raises(ConfigurationError, match="not among the requested statistics"):
            _spec(statistics=["power"], type_1_error_terms=["x2"])

    def test_unknown_statistic(self):
        with pytest.raises(ConfigurationError, match="Unknown statistics"):
            _spec(statistics=["power", "coverage"])

    def test_low_replications_warns(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            _spec(replications=10)
        assert any("Low replication count" in str(w.message) for w in caught)

    def test_zero_replications(self):
        with pytest.raises(ConfigurationError):
            _spec(replications=0)

    def test_json_round_trip(self):
        spec = _spec(
            correlation="corr(x1, x2)=0.3",
            vary_arguments={"sample_size": [50, 100]},
            power={"distribution": "t", "alpha": 0.01},
        )
        assert ReplicationSpec.from_json(spec.to_json()) == spec

    def test_multilevel_round_trip(self):
        spec = _spec(
            formula="y ~ x1 + (1|school)",
            variables={"x1": "normal(0, 1)", "u0": {"type": "random_effect", "group": "school", "variance": 0.3}},
            reg_weights=[0, 1],
            sample_size={"level1": [4, 8], "level2": 10},
        )
        assert ReplicationSpec.from_dict(spec.to_dict()) == spec

    def test_from_dict_unknown_field(self):
        with pytest.raises(ConfigurationError, match="Unknown ReplicationSpec fields"):
            ReplicationSpec.from_dict({**_spec().to_dict(), "n_sims": 10})

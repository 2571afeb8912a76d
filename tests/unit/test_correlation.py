"""
Tests for correlation induction and the AR(1) error filter.
"""

import numpy as np
import pytest

from simreg.errors import InvalidCorrelationMatrix
from simreg.stats.correlation import _cholesky_decomposition, ar1_filter, induce_correlation, validate_correlation_matrix


def _target(r):
    return np.array([[1.0, r], [r, 1.0]])


class TestInduceCorrelation:
    """Test rank and Cholesky correlation induction."""

    def test_rank_preserves_marginals(self, rng):
        columns = np.column_stack([rng.exponential(size=500), rng.integers(0, 5, size=500)])
        out = induce_correlation(columns, _target(0.6), rng, method="rank")
        for j in range(2):
            np.testing.assert_array_equal(np.sort(out[:, j]), np.sort(columns[:, j]))

    def test_rank_reaches_target(self, rng):
        columns = rng.normal(size=(2000, 2))
        out = induce_correlation(columns, _target(0.7), rng, method="rank")
        assert abs(np.corrcoef(out, rowvar=False)[0, 1] - 0.7) < 0.05

    def test_rank_negative_correlation(self, rng):
        columns = rng.normal(size=(2000, 2))
        out = induce_correlation(columns, _target(-0.5), rng, method="rank")
        assert abs(np.corrcoef(out, rowvar=False)[0, 1] + 0.5) < 0.05

    def test_cholesky_exact_and_keeps_moments(self, rng):
        columns = np.column_stack([rng.normal(3, 2, size=1000), rng.normal(-1, 0.5, size=1000)])
        out = induce_correlation(columns, _target(0.4), rng, method="cholesky")
        assert np.corrcoef(out, rowvar=False)[0, 1] == pytest.approx(0.4, abs=1e-8)
        np.testing.assert_allclose(out.mean(axis=0), columns.mean(axis=0))
        np.testing.assert_allclose(out.std(axis=0), columns.std(axis=0))

    def test_three_variables(self, rng):
        target = np.array([[1.0, 0.5, 0.2], [0.5, 1.0, 0.3], [0.2, 0.3, 1.0]])
        out = induce_correlation(rng.normal(size=(3000, 3)), target, rng, method="rank")
        np.testing.assert_allclose(np.corrcoef(out, rowvar=False), target, atol=0.05)

    def test_identity_target(self, rng):
        columns = rng.normal(size=(3000, 2))
        out = induce_correlation(columns, np.eye(2), rng)
        assert abs(np.corrcoef(out, rowvar=False)[0, 1]) < 0.05

    def test_invalid_target(self, rng):
        with pytest.raises(InvalidCorrelationMatrix):
            induce_correlation(rng.normal(size=(100, 2)), np.array([[1.0, 0.9], [0.1, 1.0]]), rng)

    def test_shape_mismatch(self, rng):
        with pytest.raises(ValueError, match="doesn't match"):
            induce_correlation(rng.normal(size=(100, 3)), _target(0.5), rng)

    def test_unknown_method(self, rng):
        with pytest.raises(ValueError, match="Unknown correlation method"):
            induce_correlation(rng.normal(size=(100, 2)), _target(0.5), rng, method="copula")

    def test_too_few_rows_returns_copy(self, rng):
        columns = rng.normal(size=(2, 2))
        out = induce_correlation(columns, _target(0.5), rng)
        np.testing.assert_array_equal(out, columns)
        assert out is not columns

    def test_cholesky_fallback_for_singular(self):
        factor = _cholesky_decomposition(_target(1.0))
        np.testing.assert_allclose(factor @ factor.T, _target(1.0), atol=1e-6)


class TestAR1Filter:
    """Test within-group AR(1) filtering."""

    def test_recursion(self):
        u = np.array([1.0, 0.0, 0.0, 2.0])
        rho = 0.5
        out = ar1_filter(u, np.zeros(4, dtype=int), rho)
        scale = np.sqrt(1 - rho**2)
        expected = [1.0, 0.5, 0.25, 0.125 + scale * 2.0]
        np.testing.assert_allclose(out, expected)

    def test_restarts_per_group(self):
        u = np.array([1.0, 0.0, 3.0, 0.0])
        out = ar1_filter(u, np.array([0, 0, 1, 1]), 0.5)
        np.testing.assert_allclose(out, [1.0, 0.5, 3.0, 1.5])

    def test_stationary_variance_and_lag_correlation(self, rng):
        u = rng.normal(size=20000)
        out = ar1_filter(u, None, 0.6)
        assert abs(out.var() - 1) < 0.06
        assert abs(np.corrcoef(out[:-1], out[1:])[0, 1] - 0.6) < 0.03

    def test_zero_rho_is_identity(self, rng):
        u = rng.normal(size=50)
        np.testing.assert_allclose(ar1_filter(u, None, 0.0), u)


class TestValidateCorrelationMatrix:
    """Test target matrix validation."""

    def test_valid_returns_float_array(self):
        out = validate_correlation_matrix([[1, 0], [0, 1]])
        assert out.dtype == float
        np.testing.assert_array_equal(out, np.eye(2))

    @pytest.mark.parametrize(
        "matrix",
        [
            [[1.0, 0.5, 0.0], [0.5, 1.0, 0.0]],
            [[1.0, 0.5], [0.4, 1.0]],
            [[0.9, 0.0], [0.0, 1.0]],
            [[1.0, 1.5], [1.5, 1.0]],
            [[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]],
        ],
        ids=["not_square", "asymmetric", "diagonal", "out_of_range", "not_psd"],
    )
    def test_invalid(self, matrix):
        with pytest.raises(InvalidCorrelationMatrix):
            validate_correlation_matrix(matrix)

    def test_is_configuration_error(self):
        from simreg.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            validate_correlation_matrix(np.full((2, 2), np.nan))

"""
SimReg - Simulation-based regression power analysis.

This module provides the ``SimReg`` class, a stateful convenience layer over
``ReplicationSpec`` and ``ReplicationRunner``.
"""

import dataclasses
from typing import Any, Callable, Mapping, Optional, Sequence, Union

import pandas as pd

from .core import CorrelationSpec, ReplicationResult, ReplicationRunner, ReplicationSpec, WorkerPool, simulate
from .progress import PrintReporter, ProgressReporter
from .utils.formatters import _format_results
from .utils.validators import _validate_n_jobs, _validate_numeric_parameter, _validate_seed, _validate_timeout


class SimReg:
    """Monte Carlo power analysis for regression models.

    Wraps an immutable ``ReplicationSpec``; every ``set_*`` method validates
    its input and builds a new spec, so a bad setting fails immediately.
    Most ``set_*`` methods return ``self`` for method chaining.

    Attributes:
        seed: Random seed for reproducibility (default: 2137).
        n_jobs: Number of workers (default: 1).
        backend: joblib backend (default: ``"loky"``).
        max_failure_rate: Failure rate above which a combination warns
            (default: 0.1).

    Example:
        >>> model = SimReg(
        ...     "y ~ x1 + x2",
        ...     variables="x1=normal(0, 1), x2=binary(0.5)",
        ...     reg_weights="Intercept=0, x1=0.3, x2=0.5",
        ...     sample_size=100,
        ... )
        >>> model.set_replications(500).vary(sample_size=[50, 100, 200])
        >>> result = model.find_power()
    """

    def __init__(self, formula: Union[str, ReplicationSpec, Mapping[str, Any]], **spec_args):
        if isinstance(formula, ReplicationSpec):
            spec = formula.replace(**spec_args) if spec_args else formula
        elif isinstance(formula, Mapping):
            spec = ReplicationSpec.from_dict({**formula, **spec_args})
        else:
            spec = ReplicationSpec(formula=formula, **spec_args)

        self.seed: Optional[int] = 2137 if spec.seed is None else spec.seed
        self.n_jobs = 1
        self.backend = "loky"
        self.max_failure_rate = 0.1
        self._spec = spec

    @property
    def spec(self) -> ReplicationSpec:
        """Current specification, with the facade seed applied."""
        return self._spec.replace(seed=self.seed)

    def _update(self, **changes):
        self._spec = self._spec.replace(**changes)
        return self

    # =========================================================================
    # Configuration methods
    # =========================================================================

    def set_seed(self, seed: Optional[int] = None):
        """Set random seed for reproducibility.

        Args:
            seed: Non-negative integer. Pass ``None`` to draw fresh entropy
                on every run (the seed used is recorded in the result).

        Returns:
            self: For method chaining.
        """
        _validate_seed(seed).raise_if_invalid()
        self.seed = seed
        if seed is not None:
            print(f"Seed set to: {seed}")
        else:
            print("Random seeding enabled")
        return self

    def set_parallel(self, enable: bool = True, n_cores: Optional[int] = None, backend: str = "loky"):
        """Enable or disable parallel replications.

        Args:
            enable: ``False`` runs replications inline.
            n_cores: Number of workers (``-1`` for all cores). Defaults to
                all cores when enabling.
            backend: joblib backend.

        Returns:
            self: For method chaining.
        """
        if not enable:
            self.n_jobs = 1
            return self
        n_jobs = -1 if n_cores is None else n_cores
        _validate_n_jobs(n_jobs).raise_if_invalid()
        self.n_jobs, self.backend = n_jobs, backend
        return self

    def set_timeout(self, seconds: Optional[float]):
        """Abandon fits that take longer than *seconds* (``None`` disables)."""
        _validate_timeout(seconds).raise_if_invalid()
        return self._update(timeout=seconds)

    def set_replications(self, replications: int):
        """Set the number of replications per sweep combination."""
        return self._update(replications=replications)

    def set_alpha(self, alpha: float):
        """Set the significance level of the power test."""
        return self._update(power=dataclasses.replace(self._spec.power, alpha=alpha))

    def set_power_test(self, distribution: str = "normal", params: Optional[Mapping[str, Any]] = None, alternative: str = "two-sided"):
        """Set the reference distribution and alternative of the power test."""
        power = dataclasses.replace(self._spec.power, distribution=distribution, params=params or {}, alternative=alternative)
        return self._update(power=power)

    def set_fit(self, formula: Optional[str] = None, estimator: Union[str, Callable, None] = None, **options):
        """Set the analysis model (formula, estimator id or callable, options)."""
        return self._update(fit={"formula": formula, "estimator": estimator, "options": options})

    def set_correlations(self, correlations: Any, method: str = "rank"):
        """Set target correlations among level-1 numeric predictors.

        Args:
            correlations: Matrix, ``{"x1:x2": r}`` mapping, or
                ``"corr(x1, x2)=r"`` string.
            method: ``"rank"`` or ``"cholesky"``.
        """
        correlation = CorrelationSpec.coerce(correlations, self._spec.correlatable_variables, method)
        return self._update(correlation=correlation)

    def set_statistics(self, statistics: Sequence[str], type_1_error_terms: Optional[Sequence[str]] = None):
        """Choose the summary statistics and optional explicit Type-I error terms."""
        return self._update(statistics=statistics, type_1_error_terms=type_1_error_terms)

    def set_max_failure_rate(self, rate: float):
        """Set the failure rate above which a combination warns."""
        _validate_numeric_parameter(rate, "max_failure_rate", min_val=0, max_val=1).raise_if_invalid()
        self.max_failure_rate = float(rate)
        return self

    def vary(self, **arguments):
        """Sweep arguments: ``vary(sample_size=[50, 100])``.

        Use ``__`` for dotted paths: ``vary(error__variance=[1, 2])`` varies
        ``error.variance``.
        """
        vary_arguments = {k.replace("__", "."): list(v) for k, v in arguments.items()}
        return self._update(vary_arguments=vary_arguments)

    # =========================================================================
    # Running
    # =========================================================================

    def simulate(self, replication: int = 0) -> pd.DataFrame:
        """Generate one dataset with the current settings."""
        return simulate(self._spec, self.seed, 0, replication)

    def find_power(
        self,
        print_results: bool = True,
        summary: str = "short",
        return_results: bool = True,
        progress_callback=None,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> Optional[ReplicationResult]:
        """Run all replications and summarise power, Type-I error and precision.

        Args:
            print_results: Whether to print the summary table.
            summary: Output detail level (``"short"`` or ``"long"``).
            return_results: Return the ``ReplicationResult``.
            progress_callback: Progress reporting control:
                - ``None`` (default): auto-use ``PrintReporter`` when
                  *print_results* is ``True``.
                - ``False``: explicitly disable progress.
                - callable receiving a ``ProgressUpdate``: custom callback.
            cancel_check: Optional callable returning ``True`` to stop early;
                partial results are returned.
        """
        spec = self.spec

        if progress_callback is None:
            effective_cb = PrintReporter() if print_results else None
        elif progress_callback is False:
            effective_cb = None
        else:
            effective_cb = progress_callback

        reporter = ProgressReporter.for_spec(spec, effective_cb) if effective_cb is not None else None

        runner = ReplicationRunner(
            spec,
            pool=WorkerPool(n_jobs=self.n_jobs, backend=self.backend),
            progress=reporter,
            cancel_check=cancel_check,
            max_failure_rate=self.max_failure_rate,
        )
        result = runner.run()

        if print_results:
            print(f"\n{'=' * 80}")
            print("MONTE CARLO POWER ANALYSIS RESULTS")
            print(f"{'=' * 80}")
            print(f"Fit: {spec.fit.formula} ({spec.fit.estimator if isinstance(spec.fit.estimator, str) else 'custom'}), seed {result.seed}")
            print(_format_results(result, summary))

        return result if return_results else None

    def __repr__(self):
        return f"SimReg({self._spec.formula!r}, replications={self._spec.replications}, seed={self.seed})"

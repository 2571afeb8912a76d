"""SimReg - Simulation-based power analysis for regression models.

Generates synthetic datasets from a declarative specification (formula,
predictor distributions, regression weights, error structure), fits a
regression model to each replication, and summarises power, Type-I error
and estimation precision across an argument sweep.

Example:
    >>> from simreg import ReplicationSpec, run_simulation
    >>>
    >>> spec = ReplicationSpec(
    ...     formula="y ~ x1 + x2",
    ...     variables="x1=normal(0, 1), x2=binary(0.5)",
    ...     reg_weights=[0.0, 0.3, 0.5],
    ...     sample_size=100,
    ...     replications=500,
    ...     vary_arguments={"sample_size": [50, 100, 200]},
    ...     seed=2137,
    ... )
    >>> result = run_simulation(spec, n_jobs=2)
    >>> result.summary
"""

from importlib.metadata import version as _get_version

from .core import (
    CorrelationSpec,
    ErrorSpec,
    FitSpec,
    PowerTestSpec,
    ReplicationResult,
    ReplicationRunner,
    ReplicationSpec,
    SimulationSpec,
    StatisticsAggregator,
    VariableSpec,
    WorkerPool,
    run_simulation,
    simulate,
)
from .errors import (
    ConfigurationError,
    DimensionMismatch,
    FitFailure,
    InvalidCorrelationMatrix,
    SimRegError,
    TimeoutFailure,
)
from .model import SimReg
from .progress import PrintReporter, ProgressReporter, ProgressUpdate, TqdmReporter
from .stats.fitting import register_estimator

__version__ = _get_version("SimReg")

__all__ = [
    "SimReg",
    "SimulationSpec",
    "ReplicationSpec",
    "VariableSpec",
    "ErrorSpec",
    "CorrelationSpec",
    "FitSpec",
    "PowerTestSpec",
    "WorkerPool",
    "ReplicationRunner",
    "StatisticsAggregator",
    "ReplicationResult",
    "run_simulation",
    "simulate",
    "register_estimator",
    "SimRegError",
    "ConfigurationError",
    "InvalidCorrelationMatrix",
    "DimensionMismatch",
    "FitFailure",
    "TimeoutFailure",
    "ProgressReporter",
    "ProgressUpdate",
    "PrintReporter",
    "TqdmReporter",
]

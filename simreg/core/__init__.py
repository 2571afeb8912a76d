"""Core components for the SimReg framework.

Re-exports the foundational building blocks:

- ``SimulationSpec``, ``ReplicationSpec`` and their descriptors
  (``VariableSpec``, ``ErrorSpec``, ``CorrelationSpec``, ``FitSpec``,
  ``PowerTestSpec``) - validated, immutable configuration.
- ``WorkerPool`` - joblib-backed task execution.
- ``ReplicationRunner``, ``run_simulation``, ``simulate`` - replication
  orchestration and single-dataset generation.
- ``StatisticsAggregator``, ``ReplicationResult`` - summary statistics and
  result tables.
"""

from .pool import WorkerPool
from .results import ReplicationResult, StatisticsAggregator
from .simulation import ReplicationRunner, replication_rng, run_replication, run_simulation, simulate
from .specs import (
    CorrelationSpec,
    ErrorSpec,
    FitSpec,
    PowerTestSpec,
    ReplicationSpec,
    SimulationSpec,
    VariableSpec,
)

__all__ = [
    # Specs
    "SimulationSpec",
    "ReplicationSpec",
    "VariableSpec",
    "ErrorSpec",
    "CorrelationSpec",
    "FitSpec",
    "PowerTestSpec",
    # Execution
    "WorkerPool",
    "ReplicationRunner",
    "run_replication",
    "run_simulation",
    "replication_rng",
    "simulate",
    # Results
    "StatisticsAggregator",
    "ReplicationResult",
]

"""
Replication orchestration for SimReg.

Expands the argument sweep, schedules every ``(combination, replication)``
pair on a ``WorkerPool``, fits each generated dataset, and collects the
coefficient records, failures and summary statistics.

Each replication draws from its own generator seeded by
``SeedSequence([seed, combination, replication])``, so results do not depend
on worker count or scheduling order.
"""

import threading
import warnings
from collections import Counter
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import ConfigurationError, FitFailure, TimeoutFailure
from ..stats.extraction import RECORD_COLUMNS, extract_coefficients
from ..stats.fitting import FittedModel, fit_model
from ..stats.response import simulate_dataset
from .pool import WorkerPool
from .results import ReplicationResult, StatisticsAggregator, _sweep_label
from .specs import ReplicationSpec, SimulationSpec

FAILURE_COLUMNS = ["combination", "replication", "kind", "reason"]


def replication_rng(seed: int, combination: int, replication: int) -> np.random.Generator:
    """Independent generator for one replication of one sweep combination."""
    return np.random.default_rng(np.random.SeedSequence([seed, combination, replication]))


def simulate(spec: SimulationSpec, seed: Optional[int] = None, combination: int = 0, replication: int = 0) -> pd.DataFrame:
    """Generate one dataset from *spec*.

    The dataset's ``attrs`` record the seed, combination and replication it
    was generated for.
    """
    if seed is None:
        seed = int(np.random.SeedSequence().entropy)
    data = simulate_dataset(spec, replication_rng(seed, combination, replication))
    data.attrs.update({"seed": seed, "combination": combination, "replication": replication})
    return data


def _fit_with_timeout(data: pd.DataFrame, spec: ReplicationSpec) -> Union[FittedModel, FitFailure]:
    """Fit on a daemon thread, giving up after ``spec.timeout`` seconds.

    An abandoned fit keeps running in the background until it returns; its
    result is discarded.
    """
    fit = spec.fit
    if spec.timeout is None:
        return fit_model(data, fit.formula, fit.estimator, fit.options)

    outcome: Dict[str, object] = {}

    def _target():
        try:
            outcome["result"] = fit_model(data, fit.formula, fit.estimator, fit.options)
        except Exception as e:
            outcome["error"] = e

    worker = threading.Thread(target=_target, name="simreg-fit", daemon=True)
    worker.start()
    worker.join(spec.timeout)
    if worker.is_alive():
        return TimeoutFailure(f"Fit exceeded the {spec.timeout}s timeout")
    if "error" in outcome:
        raise outcome["error"]  # type: ignore[misc]
    return outcome["result"]  # type: ignore[return-value]


@dataclass
class ReplicationOutcome:
    """Result of one replication: coefficient records or a failure marker."""

    combination: int
    replication: int
    records: Optional[pd.DataFrame] = None
    failure: Optional[FitFailure] = None


def run_replication(spec: ReplicationSpec, combination: int, replication: int, seed: int) -> ReplicationOutcome:
    """Generate, fit and extract one replication.

    Errors while generating data or fitting are recorded as failures;
    configuration errors and missing dependencies propagate.
    """
    try:
        data = simulate(spec, seed, combination, replication)
    except (ConfigurationError, ImportError):
        raise
    except Exception as e:
        failure = FitFailure(f"Data generation failed: {type(e).__name__}: {e}")
        return ReplicationOutcome(combination, replication, failure=failure)

    fitted = _fit_with_timeout(data, spec)
    if isinstance(fitted, FitFailure):
        return ReplicationOutcome(combination, replication, failure=fitted)

    records = extract_coefficients(fitted)
    records["true_value"] = [spec.true_value(term) for term in records["term"]]
    return ReplicationOutcome(combination, replication, records=records)


class ReplicationRunner:
    """Executes the replications of a ``ReplicationSpec``.

    Work is dispatched in batches; ``cancel_check`` is polled between batches
    and, when it returns ``True``, the run stops and returns the partial
    results with ``cancelled=True``.

    Args:
        spec: Replication specification.
        pool: Worker pool (inline single-worker pool by default).
        progress: Optional ``ProgressReporter``; each outcome is recorded
            against its combination, failed or not.
        cancel_check: Optional callable returning ``True`` to stop early.
        batch_size: Tasks per dispatch batch (default: 16 per worker).
        max_failure_rate: Failure rate above which a combination triggers a
            warning.
    """

    def __init__(
        self,
        spec: ReplicationSpec,
        pool: Optional[WorkerPool] = None,
        progress=None,
        cancel_check: Optional[Callable[[], bool]] = None,
        batch_size: Optional[int] = None,
        max_failure_rate: float = 0.1,
    ):
        self.spec = spec
        self.pool = pool if pool is not None else WorkerPool()
        self.progress = progress
        self.cancel_check = cancel_check
        self.batch_size = batch_size
        self.max_failure_rate = max_failure_rate

    def _tasks(self, seed: int) -> List[Tuple[ReplicationSpec, int, int, int]]:
        tasks = []
        for index, (_, spec) in enumerate(self.spec.combinations()):
            tasks.extend((spec, index, rep, seed) for rep in range(spec.replications))
        return tasks

    def run(self) -> ReplicationResult:
        """Run every replication and return the collected results."""
        seed = self.spec.seed if self.spec.seed is not None else int(np.random.SeedSequence().entropy)
        tasks = self._tasks(seed)
        outcomes: List[ReplicationOutcome] = []
        cancelled = False

        with nullcontext(self.pool) if self.pool.active else self.pool as pool:
            batch_size = self.batch_size or 16 * pool.n_workers
            if self.progress is not None:
                self.progress.start()
            for start in range(0, len(tasks), batch_size):
                if self.cancel_check is not None and self.cancel_check():
                    cancelled = True
                    break
                for outcome in pool.map(run_replication, tasks[start : start + batch_size]):
                    outcomes.append(outcome)
                    if self.progress is not None:
                        self.progress.record(outcome.combination, failed=outcome.failure is not None)

        if cancelled:
            warnings.warn(f"Run cancelled after {len(outcomes)}/{len(tasks)} replications; returning partial results", stacklevel=2)

        return self._collect(outcomes, seed, cancelled)

    def _collect(self, outcomes: List[ReplicationOutcome], seed: int, cancelled: bool) -> ReplicationResult:
        combos = self.spec.combinations()
        sweep_cols = list(self.spec.vary_arguments)
        record_frames: List[pd.DataFrame] = []
        failure_rows: List[Dict[str, object]] = []

        for outcome in outcomes:
            if outcome.failure is not None:
                failure_rows.append(
                    {
                        "combination": outcome.combination,
                        "replication": outcome.replication,
                        "kind": outcome.failure.kind,
                        "reason": outcome.failure.reason,
                    }
                )
            else:
                frame = outcome.records.copy()
                frame.insert(0, "replication", outcome.replication)
                frame.insert(0, "combination", outcome.combination)
                frame["position"] = np.arange(len(frame))
                record_frames.append(frame)

        records = pd.concat(record_frames, ignore_index=True) if record_frames else _empty_records()
        records, inconsistent = _split_inconsistent_terms(records)
        failure_rows.extend(inconsistent)

        records = records.sort_values(["combination", "replication", "position"], kind="stable")
        records = records.drop(columns="position").reset_index(drop=True)
        failures = pd.DataFrame(failure_rows, columns=FAILURE_COLUMNS)
        failures = failures.sort_values(["combination", "replication"], kind="stable").reset_index(drop=True)

        summaries = []
        for index, (key, spec) in enumerate(combos):
            combo_records = records[records["combination"] == index]
            n_failed = int((failures["combination"] == index).sum())
            self._check_failure_rate(key, n_failed, spec.replications)
            aggregator = StatisticsAggregator(spec.power, spec.statistics, spec.type_1_error_terms)
            expected = {term: spec.true_value(term) for term in spec.fit_terms}
            summary = aggregator.summarize(combo_records, spec.replications, n_failed, expected)
            summary.insert(0, "combination", index)
            summaries.append(summary)
        summary = pd.concat(summaries, ignore_index=True)

        for table in (summary, records, failures):
            for position, col in enumerate(sweep_cols):
                labels = [_sweep_label(combos[i][0][col]) for i in table["combination"]]
                table.insert(position, col, pd.Series(labels, index=table.index, dtype=object))

        return ReplicationResult(
            spec=self.spec,
            summary=summary,
            records=records,
            failures=failures,
            seed=seed,
            cancelled=cancelled,
        )

    def _check_failure_rate(self, key: Dict[str, object], n_failed: int, n_requested: int):
        if n_failed == 0:
            return
        failed_pct = n_failed / n_requested
        if failed_pct > self.max_failure_rate:
            where = f" for {key}" if key else ""
            warnings.warn(
                f"{n_failed}/{n_requested} replications failed{where} ({failed_pct:.1%}) - check data/model specification",
                stacklevel=3,
            )


def _empty_records() -> pd.DataFrame:
    return pd.DataFrame(columns=["combination", "replication"] + RECORD_COLUMNS + ["true_value", "position"])


def _split_inconsistent_terms(records: pd.DataFrame) -> Tuple[pd.DataFrame, List[Dict[str, object]]]:
    """Move replications whose term set differs from their combination's to failures.

    The reference term set of a combination is the most common one (ties go
    to the set seen first in replication order).
    """
    if records.empty:
        return records, []

    term_sets = records.groupby(["combination", "replication"], sort=True)["term"].agg(tuple)
    keep = pd.Series(True, index=term_sets.index)
    failures = []
    for combination, sets in term_sets.groupby(level="combination", sort=True):
        counts = Counter(sets.tolist())
        reference = max(counts, key=counts.get)
        for (_, replication), terms in sets.items():
            if terms == reference:
                continue
            keep[(combination, replication)] = False
            missing = [t for t in reference if t not in terms]
            extra = [t for t in terms if t not in reference]
            failures.append(
                {
                    "combination": combination,
                    "replication": replication,
                    "kind": "fit_failure",
                    "reason": f"Term set differs from other replications (missing: {missing}, extra: {extra})",
                }
            )

    if not failures:
        return records, []
    index = pd.MultiIndex.from_arrays([records["combination"], records["replication"]])
    mask = keep.reindex(index).to_numpy(dtype=bool)
    return records[mask], failures


def run_simulation(
    spec: ReplicationSpec,
    n_jobs: int = 1,
    progress=None,
    cancel_check: Optional[Callable[[], bool]] = None,
    max_failure_rate: float = 0.1,
) -> ReplicationResult:
    """Run every replication of *spec* and summarise the results.

    Args:
        spec: Replication specification.
        n_jobs: Number of workers (``-1`` for all cores).
        progress: Optional ``ProgressReporter``.
        cancel_check: Optional callable returning ``True`` to stop early.
        max_failure_rate: Failure rate above which a combination warns.

    Returns:
        ``ReplicationResult``.
    """
    runner = ReplicationRunner(
        spec,
        pool=WorkerPool(n_jobs=n_jobs),
        progress=progress,
        cancel_check=cancel_check,
        max_failure_rate=max_failure_rate,
    )
    return runner.run()

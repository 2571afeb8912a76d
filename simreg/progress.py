"""
Progress reporting for SimReg runs.

The runner records every finished replication against its sweep combination,
flagging the ones whose data generation or fit failed. Callbacks receive a
``ProgressUpdate`` carrying the overall count, the failures seen so far and
the combination being worked on, so a long sweep shows where fits break down
before the summary table is printed.
"""

import sys
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence


@dataclass(frozen=True)
class ProgressUpdate:
    """Snapshot passed to progress callbacks.

    Attributes:
        completed: Finished replications across all combinations.
        total: Replications the run will execute.
        failed: Finished replications that produced no estimates.
        combination: Index of the combination the last replication belonged to.
        n_combinations: Number of sweep combinations.
    """

    completed: int
    total: int
    failed: int
    combination: int
    n_combinations: int

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0

    @property
    def done(self) -> bool:
        return self.completed >= self.total


class ProgressReporter:
    """Counts finished replications per sweep combination.

    The callback fires at most once every *update_every* records, and
    always when a combination has run all of its replications.

    Args:
        replications: Replication count of each combination, in run order.
        callback: Called as ``callback(update)`` with a ``ProgressUpdate``.
        update_every: Defaults to ``max(1, total // 200)``.
    """

    def __init__(
        self,
        replications: Sequence[int],
        callback: Callable[[ProgressUpdate], None],
        update_every: Optional[int] = None,
    ):
        self.replications: List[int] = [int(n) for n in replications]
        self.total = sum(self.replications)
        self.update_every = update_every if update_every is not None else max(1, self.total // 200)
        self._callback = callback
        self.completed = [0] * len(self.replications)
        self.failed = [0] * len(self.replications)
        self._n_completed = 0
        self._n_failed = 0
        self.last: Optional[ProgressUpdate] = None

    @classmethod
    def for_spec(cls, spec, callback: Callable[[ProgressUpdate], None], update_every: Optional[int] = None):
        """Reporter sized to the combinations of a ``ReplicationSpec``."""
        return cls([s.replications for _, s in spec.combinations()], callback, update_every)

    def start(self):
        """Reset the counts and fire an initial empty update."""
        self.completed = [0] * len(self.replications)
        self.failed = [0] * len(self.replications)
        self._n_completed = 0
        self._n_failed = 0
        self._emit(0)

    def record(self, combination: int, failed: bool = False):
        """Count one finished replication of *combination*."""
        self.completed[combination] += 1
        self._n_completed += 1
        if failed:
            self.failed[combination] += 1
            self._n_failed += 1
        if self.completed[combination] == self.replications[combination] or self._n_completed % self.update_every == 0:
            self._emit(combination)

    def _emit(self, combination: int):
        self.last = ProgressUpdate(
            completed=self._n_completed,
            total=self.total,
            failed=self._n_failed,
            combination=combination,
            n_combinations=len(self.replications),
        )
        self._callback(self.last)


class PrintReporter:
    """Console reporter: ``Progress:  45.2% (723/1600 replications, combination 2/4, 12 failed)``."""

    def __init__(self):
        self._width = 0

    def __call__(self, update: ProgressUpdate):
        if update.total <= 0:
            return
        details = [f"{update.completed}/{update.total} replications"]
        if update.n_combinations > 1:
            details.append(f"combination {update.combination + 1}/{update.n_combinations}")
        if update.failed:
            details.append(f"{update.failed} failed")
        line = f"Progress: {100.0 * update.fraction:5.1f}% ({', '.join(details)})"
        # pad so a shorter line fully overwrites the previous one
        self._width = max(self._width, len(line))
        sys.stderr.write("\r" + line.ljust(self._width))
        if update.done:
            sys.stderr.write("\n")
            self._width = 0
        sys.stderr.flush()


class TqdmReporter:
    """Optional tqdm progress bar, with failures and the combination as postfix.

    Usage::

        from simreg.progress import TqdmReporter
        model.find_power(progress_callback=TqdmReporter())
    """

    def __init__(self, **tqdm_kwargs):
        self._tqdm_kwargs = tqdm_kwargs
        self._bar = None

    def __call__(self, update: ProgressUpdate):
        from tqdm import tqdm

        if self._bar is None:
            self._bar = tqdm(total=update.total, unit="rep", **self._tqdm_kwargs)

        postfix = {"failed": update.failed}
        if update.n_combinations > 1:
            postfix["combination"] = f"{update.combination + 1}/{update.n_combinations}"
        self._bar.set_postfix(postfix, refresh=False)

        delta = update.completed - self._bar.n
        if delta > 0:
            self._bar.update(delta)

        if update.done:
            self._bar.close()
            self._bar = None

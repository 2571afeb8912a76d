"""
Worker pool for replication tasks.

``WorkerPool`` wraps a reusable ``joblib.Parallel`` executor. It must be
acquired with a ``with`` block before use; ``n_jobs=1`` runs tasks inline
without starting any worker process.
"""

from typing import Any, Callable, Iterable, List, Sequence

from ..utils.validators import _validate_n_jobs


class WorkerPool:
    """Fixed-size pool executing replication tasks.

    Args:
        n_jobs: Number of workers (``-1`` for all cores, ``1`` for inline
            execution).
        backend: joblib backend (``"loky"`` by default).
        verbose: joblib verbosity.

    Example:
        >>> with WorkerPool(n_jobs=2) as pool:
        ...     results = pool.map(pow, [(2, 3), (3, 2)])
    """

    def __init__(self, n_jobs: int = 1, backend: str = "loky", verbose: int = 0):
        _validate_n_jobs(n_jobs).raise_if_invalid()
        self.n_jobs = n_jobs
        self.backend = backend
        self.verbose = verbose
        self._parallel = None
        self._active = False

    @property
    def n_workers(self) -> int:
        """Effective number of workers."""
        if self.n_jobs == 1:
            return 1
        from joblib import effective_n_jobs

        return effective_n_jobs(self.n_jobs)

    @property
    def active(self) -> bool:
        return self._active

    def __enter__(self):
        if self._active:
            raise RuntimeError("WorkerPool is already acquired")
        if self.n_jobs != 1:
            from joblib import Parallel

            self._parallel = Parallel(n_jobs=self.n_jobs, backend=self.backend, verbose=self.verbose)
            self._parallel.__enter__()
        self._active = True
        return self

    def __exit__(self, exc_type, exc, tb):
        parallel, self._parallel = self._parallel, None
        self._active = False
        if parallel is not None:
            parallel.__exit__(exc_type, exc, tb)
        return False

    def map(self, func: Callable, tasks: Iterable[Sequence[Any]]) -> List[Any]:
        """Run ``func(*task)`` for every task, returning results in task order.

        Raises:
            RuntimeError: If the pool has not been acquired.
        """
        if not self._active:
            raise RuntimeError("WorkerPool must be acquired with 'with pool:' before map()")
        if self._parallel is None:
            return [func(*task) for task in tasks]

        from joblib import delayed

        return list(self._parallel(delayed(func)(*task) for task in tasks))

    def __repr__(self):
        state = "active" if self._active else "idle"
        return f"WorkerPool(n_jobs={self.n_jobs}, backend={self.backend!r}, {state})"

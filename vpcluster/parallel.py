"""
Fork-join helper used by every parallel code path.

Work is split into contiguous index ranges, one per worker. Each task
writes to a disjoint slice of the caller's arrays or returns a local
accumulator; results come back in range order so that merging them is
independent of thread scheduling.
"""

from __future__ import annotations
import logging
import os
from concurrent.futures import BrokenExecutor, CancelledError, ThreadPoolExecutor, wait
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .base import ClusterFailureError

logger = logging.getLogger(__name__)


def effective_n_jobs(n_jobs: Optional[int] = None) -> int:
    """Resolve ``n_jobs`` the way scikit-learn does: ``None`` means 1,
    negative values count back from the number of CPUs (-1 is all)."""
    if n_jobs is None or n_jobs == 0:
        return 1
    if n_jobs < 0:
        return max(1, (os.cpu_count() or 1) + 1 + n_jobs)
    return int(n_jobs)


def chunk_ranges(n: int, n_chunks: int) -> List[Tuple[int, int]]:
    """Split ``range(n)`` into at most ``n_chunks`` contiguous, balanced
    ``(start, end)`` ranges. The first ``n % n_chunks`` ranges get one extra
    element."""
    n_chunks = max(1, min(n_chunks, n))
    base, extra = divmod(n, n_chunks)
    ranges = []
    start = 0
    for c in range(n_chunks):
        end = start + base + (1 if c < extra else 0)
        ranges.append((start, end))
        start = end
    return ranges


class ParallelRunner(object):
    """A thread pool that lives for the duration of one algorithm call.

    With a single worker no pool is created and tasks run inline, which is
    the reference execution path.

    Args:
        n_jobs (Optional[int]): Number of worker threads, see
            :func:`effective_n_jobs`.

    Example:

        .. code-block:: python

            with ParallelRunner(n_jobs=4) as runner:
                partial_sums = runner.map_ranges(len(X), lambda s, e: X[s:e].sum(0))
    """

    def __init__(self, n_jobs: Optional[int] = None) -> None:
        self.n_workers = effective_n_jobs(n_jobs)
        self._pool: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> ParallelRunner:
        if self.n_workers > 1:
            self._pool = ThreadPoolExecutor(max_workers=self.n_workers)
            logger.debug("Started thread pool with %d workers", self.n_workers)
        return self

    def __exit__(self, *exc_info) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    @property
    def parallel(self) -> bool:
        return self._pool is not None

    def map_ranges(self, n: int, func: Callable[[int, int], Any]) -> List[Any]:
        """Call ``func(start, end)`` over contiguous ranges covering
        ``range(n)`` and return the results in range order."""
        if n == 0:
            return []
        if not self.parallel:
            return [func(0, n)]
        ranges = chunk_ranges(n, self.n_workers)
        return self._run([(func, r) for r in ranges])

    def map_items(self, items: Sequence[Any], func: Callable[[Any], Any]) -> List[Any]:
        """Call ``func(item)`` for every item, results in item order."""
        if not self.parallel or len(items) <= 1:
            return [func(item) for item in items]
        return self._run([(func, (item,)) for item in items])

    def _run(self, tasks) -> List[Any]:
        try:
            futures = [self._pool.submit(func, *args) for func, args in tasks]
        except (BrokenExecutor, RuntimeError) as e:
            raise ClusterFailureError("Worker pool rejected a task") from e
        # No worker may still be writing into shared arrays once this returns
        # or raises.
        wait(futures)
        try:
            return [f.result() for f in futures]
        except (BrokenExecutor, CancelledError) as e:
            raise ClusterFailureError("Worker pool failed while running tasks") from e

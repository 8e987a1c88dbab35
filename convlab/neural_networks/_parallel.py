"""
Worker pool that runs per-slot work of a minibatch in parallel.
"""
import logging
import os
from concurrent.futures import ThreadPoolExecutor

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class MinibatchExecutor:
    """
    Runs one task per minibatch slot on a bounded thread pool.

    Every task must only touch its own slot of the layers' unit state, so
    no locking is needed. ``map_slots`` and ``sum_slots`` only return once
    every task has finished, which is the barrier between the
    forward/backward phase and the weight update. Exceptions raised by a
    task are re-raised in the caller.
    """

    def __init__(self, n_jobs=None):
        """
        Args:
            n_jobs (int, optional): Number of worker threads, defaults to the
                number of available CPUs. 1 runs every task inline.
        """
        if n_jobs is None:
            n_jobs = os.cpu_count() or 1
        if n_jobs < 1:
            raise ConfigurationError(f"n_jobs must be positive, got {n_jobs}")
        self.n_jobs = int(n_jobs)
        self._pool = None

    def _executor(self):
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=self.n_jobs,
                                            thread_name_prefix='convlab')
            logger.debug("Started worker pool with %d threads", self.n_jobs)
        return self._pool

    def map_slots(self, fn, n_slots):
        """
        Call fn(mb) for every mb in [0, n_slots) and wait for all of them.

        Returns:
            list: Results in slot order
        """
        if self.n_jobs == 1 or n_slots == 1:
            return [fn(mb) for mb in range(n_slots)]
        return list(self._executor().map(fn, range(n_slots)))

    def sum_slots(self, fn, n_slots):
        """Parallel reduction: sum of fn(mb) over the slots."""
        return sum(self.map_slots(fn, n_slots))

    def shutdown(self):
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()

"""Split an index range into chunks and process them on worker threads."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable

from slamkit.core_settings import MAPPING_THREADS, RunningStats

ChunkFunc = Callable[[int, int, RunningStats], None]


class IndexThreadReduce:
    """Run a per-range callback over ``[first, end)`` in parallel chunks.

    Each chunk gets its own :class:`RunningStats`, which is summed into
    :attr:`running_stats` when the chunk finishes.
    """

    def __init__(self, threads: int = MAPPING_THREADS, multi_threading: bool = True):
        if threads < 1:
            raise ValueError("threads must be at least 1")
        self.threads = threads
        self.multi_threading = multi_threading
        self.running_stats = RunningStats()
        self._lock = threading.Lock()
        self._closed = False
        self._executor = (
            ThreadPoolExecutor(max_workers=threads, thread_name_prefix="index-reduce")
            if multi_threading
            else None
        )

    def reduce(self, func: ChunkFunc, first: int, end: int, step_size: int = 0) -> None:
        """Call ``func(start, stop, stats)`` for chunks covering ``[first, end)``.

        A ``step_size`` of 0 splits the range evenly over the threads.
        Returns once every chunk is done; the first error raised by a chunk
        is raised again here.
        """
        if self._closed:
            raise RuntimeError("reduce called on a closed IndexThreadReduce")
        if not self.multi_threading:
            func(first, end, self.running_stats)
            return
        if step_size < 0:
            raise ValueError("step_size must not be negative")
        if first >= end:
            return
        if step_size == 0:
            step_size = (end - first + self.threads - 1) // self.threads

        futures = [
            self._executor.submit(self._run_chunk, func, start, min(start + step_size, end))
            for start in range(first, end, step_size)
        ]
        wait(futures)
        for future in futures:
            future.result()

    def _run_chunk(self, func: ChunkFunc, start: int, stop: int) -> None:
        stats = RunningStats()
        func(start, stop, stats)
        with self._lock:
            self.running_stats.add(stats)

    def close(self) -> None:
        """Stop the worker threads."""
        if self._closed:
            return
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> IndexThreadReduce:
        return self

    def __exit__(self, *args) -> None:
        self.close()
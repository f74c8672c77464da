# services/embedding_job.py
# Version 01.00.00.00 dated 20261017
"""
EmbeddingJob - handle for a background embedding sweep.

The sweep runs on a worker thread; the caller keeps the handle and can:
- cancel() it (takes effect between photos)
- poll progress or iterate progress_updates() as a stream
- wait for result(), which re-raises any error the sweep raised
"""

import itertools
import queue
import threading
from concurrent.futures import Future
from typing import Callable, Iterator, Optional, Tuple

from logging_config import get_logger

logger = get_logger(__name__)

_job_ids = itertools.count(1)
_END = object()


class EmbeddingJob:
    """Progress, cancellation and completion for one background sweep."""

    def __init__(self, progress_callback: Optional[Callable[[int, int], None]] = None):
        self.job_id = next(_job_ids)
        self.cancel_event = threading.Event()
        self._progress_callback = progress_callback
        self._progress: Tuple[int, int] = (0, 0)
        self._lock = threading.Lock()
        self._updates: "queue.Queue" = queue.Queue()
        self._future: Optional[Future] = None

    def _attach(self, future: Future) -> None:
        self._future = future

    def _report_progress(self, processed: int, total: int) -> None:
        with self._lock:
            self._progress = (processed, total)
        self._updates.put((processed, total))
        if self._progress_callback is not None:
            self._progress_callback(processed, total)

    def _finish(self) -> None:
        self._updates.put(_END)

    def cancel(self) -> None:
        logger.info(f"[EmbeddingJob] Cancellation requested for job {self.job_id}")
        self.cancel_event.set()

    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    @property
    def progress(self) -> Tuple[int, int]:
        """Latest (processed, total)."""
        with self._lock:
            return self._progress

    def progress_updates(self, timeout: Optional[float] = None) -> Iterator[Tuple[int, int]]:
        """
        Yield (processed, total) as the sweep advances, ending when it finishes.

        Meant for a single consumer. Raises queue.Empty if no update arrives
        within timeout seconds.
        """
        while True:
            item = self._updates.get(timeout=timeout)
            if item is _END:
                return
            yield item

    def result(self, timeout: Optional[float] = None):
        """Wait for the BatchResult; re-raises the sweep's exception."""
        if self._future is None:
            raise RuntimeError("Job has not been started")
        return self._future.result(timeout=timeout)

    def add_done_callback(self, fn: Callable[['EmbeddingJob'], None]) -> None:
        if self._future is None:
            raise RuntimeError("Job has not been started")
        self._future.add_done_callback(lambda _f: fn(self))

    def __repr__(self) -> str:
        processed, total = self.progress
        return f"EmbeddingJob(id={self.job_id}, progress={processed}/{total}, cancelled={self.is_cancelled()})"

"""
Detached job dispatch.

Each import job's processing runs as one task on a thread pool. The caller
gets control back as soon as the task is queued; the job row is the only
channel for the outcome.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Optional

logger = logging.getLogger(__name__)


class JobDispatcher:
    """Thread pool for fire-and-forget job processing."""

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="import-job")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future = self._executor.submit(fn, *args)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._finished)
        return future

    def _finished(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        error = future.exception() if not future.cancelled() else None
        if error is not None:
            # Tasks record their own failures; anything reaching here escaped that
            logger.error("Import task crashed", exc_info=error)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued tasks. Returns False if some are still running."""
        with self._lock:
            futures = set(self._pending)
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_tasks)


class InlineDispatcher(JobDispatcher):
    """Runs tasks synchronously in the caller's thread (CLI and tests)."""

    def __init__(self) -> None:
        self._pending = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)
            logger.error("Import task crashed", exc_info=e)
        return future

    def join(self, timeout: Optional[float] = None) -> bool:
        return True

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        return None

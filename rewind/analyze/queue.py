"""
Handoff from the sync write path to summarization.

The orchestrator submits newly added item ids and moves on; outcomes and
failures land on this queue's own error channel, never on the sync
result.
"""

import concurrent.futures
import queue
import threading
from collections.abc import Callable, Iterable
from typing import NamedTuple

from rewind.errors import OperationResult
from rewind.logging_config import get_logger

logger = get_logger("queue")

Handler = Callable[[str], OperationResult]


class QueueFailure(NamedTuple):
    item_id: str
    code: str
    message: str


class QueueReport(NamedTuple):
    """Everything that finished since the last drain."""

    completed: list[str]
    failures: list[QueueFailure]


class SummarizationQueue:
    """Thread pool that runs a summarization handler per submitted item."""

    def __init__(self, handler: Handler, max_workers: int = 3):
        self.handler = handler
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="summarize"
        )
        self._pending: set[concurrent.futures.Future] = set()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._completed: queue.SimpleQueue[str] = queue.SimpleQueue()
        self.errors: queue.SimpleQueue[QueueFailure] = queue.SimpleQueue()

    def submit(self, item_ids: Iterable[str]) -> int:
        """Enqueue items; returns how many were accepted."""
        count = 0
        for item_id in item_ids:
            future = self._executor.submit(self.handler, item_id)
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(lambda fut, item_id=item_id: self._on_done(item_id, fut))
            count += 1
        if count:
            logger.debug(f"Queued {count} item(s) for summarization")
        return count

    def _on_done(self, item_id: str, future: concurrent.futures.Future) -> None:
        try:
            self._record(item_id, future)
        finally:
            with self._idle:
                self._pending.discard(future)
                self._idle.notify_all()

    def _record(self, item_id: str, future: concurrent.futures.Future) -> None:
        if future.cancelled():
            self.errors.put(QueueFailure(item_id, "cancelled", "Queue shut down before the item ran"))
            return

        exc = future.exception()
        if exc is not None:
            logger.error(f"Summarization of {item_id} raised: {exc}")
            self.errors.put(QueueFailure(item_id, "internal_error", str(exc)))
            return

        result: OperationResult = future.result()
        if result.success:
            self._completed.put(item_id)
        else:
            self.errors.put(QueueFailure(item_id, result.code, result.message))

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def drain(self, timeout: float | None = None) -> QueueReport:
        """Wait for in-flight work, then collect outcomes and errors."""
        with self._idle:
            self._idle.wait_for(lambda: not self._pending, timeout=timeout)

        completed: list[str] = []
        while not self._completed.empty():
            completed.append(self._completed.get_nowait())
        failures: list[QueueFailure] = []
        while not self.errors.empty():
            failures.append(self.errors.get_nowait())
        return QueueReport(completed=completed, failures=failures)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def __enter__(self) -> "SummarizationQueue":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)

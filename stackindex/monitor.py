"""Completion monitor: detect when every enqueued document has been settled.

State machine::

    WAITING --(pending reaches 0)--> DONE
    WAITING --(cancellation)-------> CANCELLED
    WAITING --(optional timeout)---> TIMED_OUT

The monitor waits on the pipeline's drain signal in ``poll_interval`` slices so it
can notice cancellation; it signals exactly once. DONE means no delivery attempt is
still outstanding, not that every document was delivered: check pipeline.stats for
dropped documents.

Start it only after the producer has enqueued the whole input. Started earlier it
can observe zero pending between two enqueues and finish too soon.
"""
from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable, Optional, Protocol

from stackindex.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class Drainable(Protocol):
    def pending_count(self) -> int: ...

    def wait_drained(self, timeout: Optional[float] = None) -> bool: ...


class MonitorState(str, enum.Enum):
    WAITING = "waiting"
    DONE = "done"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class CompletionMonitor:
    """Wait for a pipeline to drain and signal completion once.

    Args:
        pipeline: Object exposing pending_count() and wait_drained(timeout).
        poll_interval: Seconds between cancellation checks while waiting.
        cancel_token: Optional token that ends the wait with CANCELLED.
        on_done: Optional callback invoked once with the final state.
    """

    def __init__(
        self,
        pipeline: Drainable,
        poll_interval: float = 2.0,
        cancel_token: Optional[CancellationToken] = None,
        on_done: Optional[Callable[[MonitorState], None]] = None,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        self.pipeline = pipeline
        self.poll_interval = poll_interval
        self.cancel_token = cancel_token or CancellationToken()
        self.on_done = on_done
        self.done = threading.Event()
        self._state = MonitorState.WAITING
        self._lock = threading.Lock()

    @property
    def state(self) -> MonitorState:
        return self._state

    def _finish(self, state: MonitorState) -> MonitorState:
        with self._lock:
            if self._state is not MonitorState.WAITING:
                return self._state
            self._state = state
        logger.info("Completion monitor finished: %s", state.value)
        self.done.set()
        if self.on_done is not None:
            self.on_done(state)
        return state

    def wait(self, timeout: Optional[float] = None) -> MonitorState:
        """Block until the pipeline drains, the token is cancelled, or ``timeout`` passes.

        ``timeout`` defaults to None: without an explicit deadline a wedged worker
        keeps the monitor waiting.
        """
        if self._state is not MonitorState.WAITING:
            return self._state
        end = None if timeout is None else time.monotonic() + timeout
        while True:
            if self.done.is_set():
                return self._state
            if self.cancel_token.is_cancelled():
                return self._finish(MonitorState.CANCELLED)
            slice_ = self.poll_interval
            if end is not None:
                remaining = end - time.monotonic()
                if remaining <= 0:
                    return self._finish(MonitorState.TIMED_OUT)
                slice_ = min(slice_, remaining)
            if self.pipeline.wait_drained(slice_):
                return self._finish(MonitorState.DONE)
            logger.debug("Waiting for %d pending documents", self.pipeline.pending_count())

    def start(self, timeout: Optional[float] = None) -> threading.Thread:
        """Run wait() on a background thread; observe ``done`` for the signal."""
        t = threading.Thread(target=self.wait, args=(timeout,), name="stackindex-monitor", daemon=True)
        t.start()
        return t

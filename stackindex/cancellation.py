"""Cooperative cancellation shared by the producer, delivery workers and monitor.

Nothing is interrupted forcibly: every blocking point (enqueue on a full buffer,
idle dequeue, backoff between delivery attempts, the monitor's wait) checks the
token and returns early with a Cancelled outcome.
"""

from __future__ import annotations

import threading
from typing import Optional


class CancellationToken:
    """Thread-safe, one-way cancellation flag.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def event(self) -> threading.Event:
        """Underlying event, for APIs that take one (e.g. tenacity's stop_when_event_set)."""
        return self._event

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancellation.

        Returns:
            True if the token was cancelled.
        """
        return self._event.wait(timeout)

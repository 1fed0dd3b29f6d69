"""Shared fixtures and fake backends for the stackindex test suite."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

import pytest

from stackindex.config import PipelineConfig
from stackindex.schemas import BulkAction, BulkItemResult, ExecutionRecord, Frame, IndexableDocument

SAMPLE_DUMP = """\
2024/01/01 12:00:00 starting server on :8080
panic: something bad happened

goroutine 1 [running]:
main.main()
\t/home/dev/app/main.go:12 +0x1d

goroutine 18 [chan receive, 5 minutes]:
main.worker(0xc000010000, 0x3)
\t/home/dev/app/worker.go:42 +0x8f
created by main.main in goroutine 1
\t/home/dev/app/main.go:30 +0x5c

goroutine 7 [select, 12 minutes, locked to thread]:
net/http.(*conn).serve(0xc0000a4000, {0x6f1234, 0xc0000b2000})
\t/usr/local/go/src/net/http/server.go:2009 +0x612
...additional frames elided...
created by net/http.(*Server).Serve
\t/usr/local/go/src/net/http/server.go:3086 +0x5cb
exit status 2
"""


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` passes."""
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class RecordingBackend:
    """In-memory bulk backend.

    ``respond`` may be given to script outcomes: it receives the actions and the
    1-based call number and returns results or raises a delivery error.
    """

    def __init__(self, respond: Optional[Callable[[Sequence[BulkAction], int], List[BulkItemResult]]] = None):
        self.respond = respond
        self.calls: List[List[BulkAction]] = []
        self.delivered: List[BulkAction] = []
        self._lock = threading.Lock()

    def bulk(self, actions: Sequence[BulkAction]) -> List[BulkItemResult]:
        with self._lock:
            self.calls.append(list(actions))
            call_no = len(self.calls)
        if self.respond is not None:
            results = self.respond(actions, call_no)
        else:
            results = [BulkItemResult(doc_id=a.doc_id, status=201) for a in actions]
        with self._lock:
            self.delivered.extend(a for a, r in zip(actions, results) if r.ok)
        return results

    @property
    def delivered_ids(self) -> List[str]:
        with self._lock:
            return [a.doc_id for a in self.delivered]


class BlockingBackend(RecordingBackend):
    """Backend whose bulk() blocks until ``gate`` is set; ``entered`` fires on first call."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()
        self.entered = threading.Event()

    def bulk(self, actions: Sequence[BulkAction]) -> List[BulkItemResult]:
        self.entered.set()
        self.gate.wait(10)
        return super().bulk(actions)


@pytest.fixture
def capture() -> datetime:
    return datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fast_config() -> PipelineConfig:
    return PipelineConfig(
        workers=2,
        buffer_size=4,
        batch_size=2,
        max_attempts=3,
        backoff_initial_seconds=0,
        backoff_max_seconds=0,
        dequeue_poll_seconds=0.01,
    )


def make_record(gid: int, idle_minutes: Optional[float] = 0, frames: int = 1) -> ExecutionRecord:
    return ExecutionRecord(
        id=gid,
        idle_minutes=idle_minutes,
        state="chan receive",
        frames=tuple(
            Frame(func=f"main.f{i}", args="0x1", file="/src/main.go", line=10 + i, offset="+0x10")
            for i in range(frames)
        ),
    )


def make_document(ordinal: int, capture: Optional[datetime] = None) -> IndexableDocument:
    return IndexableDocument(
        ordinal=ordinal,
        id=ordinal + 100,
        event_time=capture or datetime(2024, 1, 1, tzinfo=timezone.utc),
        frames=(Frame(func="main.main", file="/src/main.go", line=1),),
    )

"""End-to-end tests for the import job with an in-memory backend."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta

import pytest

from stackindex.cancellation import CancellationToken
from stackindex.config import Settings
from stackindex.errors import InputError, ParseError
from stackindex.ingestion.import_dump import import_dump, read_dump
from stackindex.monitor import MonitorState

from tests.conftest import SAMPLE_DUMP, BlockingBackend, RecordingBackend

BAD_RECORD = """
goroutine 40 [IO wait, ??? minutes]:
internal/poll.runtime_pollWait(0x7f, 0x72)
\t/usr/local/go/src/runtime/netpoll.go:343 +0x85
"""


@pytest.fixture
def run_settings() -> Settings:
    return Settings(
        BULK_CONNECTIONS=2,
        BULK_BATCH_SIZE=2,
        BULK_BUFFER_SIZE=4,
        BACKOFF_INITIAL_SECONDS=0,
        BACKOFF_MAX_SECONDS=0,
        MONITOR_POLL_SECONDS=0.05,
        SHUTDOWN_TIMEOUT_SECONDS=0.2,
    )


def test_import_delivers_every_valid_record(tmp_path, run_settings):
    dump = tmp_path / "dump.txt"
    dump.write_text(SAMPLE_DUMP + BAD_RECORD)
    backend = RecordingBackend()

    summary = import_dump(dump, settings=run_settings, backend=backend)

    assert summary.outcome is MonitorState.DONE
    assert (summary.parsed, summary.rejected, summary.delivered, summary.dropped) == (4, 1, 3, 0)
    assert summary.skipped_lines == 3
    assert sorted(backend.delivered_ids) == ["0", "1", "2"]
    assert {a.index for a in backend.delivered} == {"stacktrace"}


def test_event_times_share_one_capture_instant(tmp_path, run_settings):
    dump = tmp_path / "dump.txt"
    dump.write_text(SAMPLE_DUMP)
    backend = RecordingBackend()

    import_dump(dump, settings=run_settings, backend=backend)

    by_goroutine = {a.body["goroutine_id"]: datetime.fromisoformat(a.body["@timestamp"]) for a in backend.delivered}
    assert by_goroutine[1] - by_goroutine[18] == timedelta(minutes=5)
    assert by_goroutine[1] - by_goroutine[7] == timedelta(minutes=12)


def test_missing_file_is_input_error(tmp_path, run_settings):
    backend = RecordingBackend()
    with pytest.raises(InputError):
        import_dump(tmp_path / "absent.txt", settings=run_settings, backend=backend)
    assert backend.calls == []


@pytest.mark.parametrize("path", [None, ""])
def test_no_path_is_input_error(path):
    with pytest.raises(InputError, match="--input"):
        read_dump(path)


def test_no_records_is_parse_error(tmp_path, run_settings):
    dump = tmp_path / "noise.log"
    dump.write_text("server started\nnothing to see here\n")
    backend = RecordingBackend()

    with pytest.raises(ParseError):
        import_dump(dump, settings=run_settings, backend=backend)
    assert backend.calls == []


def test_empty_file_is_parse_error(tmp_path, run_settings):
    dump = tmp_path / "empty.txt"
    dump.write_bytes(b"")
    with pytest.raises(ParseError):
        import_dump(dump, settings=run_settings, backend=RecordingBackend())


class TestUnfinishedImport:
    @pytest.fixture
    def dump(self, tmp_path):
        path = tmp_path / "dump.txt"
        path.write_text(SAMPLE_DUMP)
        return path

    def test_timeout_returns_promptly_with_stuck_backend(self, dump, run_settings):
        backend = BlockingBackend()
        started = time.monotonic()
        try:
            summary = import_dump(dump, settings=run_settings, backend=backend, timeout=0.2)
        finally:
            backend.gate.set()

        assert time.monotonic() - started < 3
        assert summary.outcome is MonitorState.TIMED_OUT
        assert (summary.enqueued, summary.delivered, summary.dropped, summary.cancelled) == (3, 0, 0, 3)

    def test_cancel_token_ends_import(self, dump, run_settings):
        backend = BlockingBackend()
        token = CancellationToken()
        threading.Thread(target=lambda: backend.entered.wait(5) and token.cancel(), daemon=True).start()
        started = time.monotonic()
        try:
            summary = import_dump(dump, settings=run_settings, backend=backend, cancel_token=token)
        finally:
            backend.gate.set()

        assert time.monotonic() - started < 3
        assert summary.outcome is MonitorState.CANCELLED
        assert summary.delivered == 0
        assert summary.cancelled == summary.enqueued > 0

"""Goroutine dump importer.

Reads a file containing a Go stack dump (surrounding log noise is fine), parses it
into goroutine records, anchors every record to one capture instant, and bulk
indexes one document per goroutine into Elasticsearch. Returns once the completion
monitor reports the pipeline drained (or cancelled / timed out).

Steps:
- read_dump: load the input file (InputError if missing/unreadable)
- parse_dump: records + skipped lines (ParseError if no records)
- build_documents: validate, timestamp and build; bad records skipped with a warning
- BulkDeliveryPipeline + CompletionMonitor: deliver and wait for drain

Usage:
  python -m stackindex.ingestion.import_dump --input dump.txt --host localhost --port 9200

Configuration:
- Endpoint: stackindex.config.settings.ES_HOST, ES_PORT (overridable per call)
- Index/type, workers, buffer, batch, retries: stackindex.config.Settings
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel

from stackindex.backend import ElasticsearchBackend
from stackindex.cancellation import CancellationToken
from stackindex.config import Settings, settings as default_settings
from stackindex.documents import build_documents
from stackindex.errors import Cancelled, InputError, RecordValidationError
from stackindex.monitor import CompletionMonitor, MonitorState
from stackindex.obs import span
from stackindex.parser import parse_dump
from stackindex.pipeline import Backend, BulkDeliveryPipeline
from stackindex.timestamps import capture_instant

logger = logging.getLogger(__name__)


class ImportSummary(BaseModel):
    """Outcome of one import run."""
    input_path: str
    parsed: int
    rejected: int
    enqueued: int
    delivered: int
    dropped: int
    cancelled: int
    skipped_lines: int
    outcome: MonitorState


def read_dump(path: Union[str, Path, None]) -> bytes:
    """Read the raw dump bytes from ``path``."""
    if not path:
        raise InputError("Must specify a filename for --input")
    p = Path(path)
    if not p.is_file():
        raise InputError(f"Could not read input file: {p} does not exist or is not a file")
    try:
        return p.read_bytes()
    except OSError as exc:
        raise InputError(f"Could not read input file: {exc}") from exc


def import_dump(
    path: Union[str, Path, None],
    settings: Optional[Settings] = None,
    backend: Optional[Backend] = None,
    cancel_token: Optional[CancellationToken] = None,
    timeout: Optional[float] = None,
) -> ImportSummary:
    """Top-level function: read, parse, build, deliver, and wait for completion.

    Args:
        path: Input dump file.
        settings: Settings to use; defaults to the environment-loaded settings.
        backend: Bulk backend; an ElasticsearchBackend for settings.ES_URL by default.
        cancel_token: Token that aborts enqueueing, retries and the wait.
        timeout: Optional deadline in seconds for the completion wait.

    Raises:
        InputError: input file missing or unreadable.
        ParseError: no goroutine records in the input.
    """
    settings = settings or default_settings
    cancel = cancel_token or CancellationToken()

    data = read_dump(path)
    parsed = parse_dump(data)
    logger.info("Parsed %d goroutines (%d non-stack lines skipped)", len(parsed.records), len(parsed.skipped_lines))

    owns_backend = backend is None
    if backend is None:
        backend = ElasticsearchBackend(settings.ES_URL, timeout=settings.REQUEST_TIMEOUT_SECONDS, auth=settings.ES_AUTH)

    pipeline = BulkDeliveryPipeline(backend, settings.pipeline_config(), cancel)
    rejected: List[Tuple[int, RecordValidationError]] = []
    outcome = MonitorState.WAITING

    with span("stackindex.import", {"import.input": str(path), "import.records": len(parsed.records)}):
        pipeline.start()
        try:
            # Base time from which idle offsets are calculated
            capture = capture_instant()
            logger.info("Loading routine data into %s ..%d", settings.ES_URL, len(parsed.records))
            try:
                for doc in build_documents(parsed.records, capture, rejected):
                    pipeline.enqueue(doc)
            except Cancelled:
                logger.warning("Import cancelled while enqueueing documents")

            # Only after the last enqueue, so zero pending really means drained
            monitor = CompletionMonitor(pipeline, poll_interval=settings.MONITOR_POLL_SECONDS, cancel_token=cancel)
            outcome = monitor.wait(timeout)
        except KeyboardInterrupt:
            cancel.cancel()
            raise
        finally:
            if outcome is MonitorState.DONE:
                pipeline.stop()
            else:
                # Timed out, cancelled or failed: stop retrying and bound the shutdown
                cancel.cancel()
                pipeline.stop(timeout=settings.SHUTDOWN_TIMEOUT_SECONDS)
            if owns_backend:
                backend.close()

    stats = pipeline.stats
    summary = ImportSummary(
        input_path=str(path),
        parsed=len(parsed.records),
        rejected=len(rejected),
        enqueued=stats.enqueued,
        delivered=stats.delivered,
        dropped=stats.dropped,
        cancelled=stats.cancelled,
        skipped_lines=len(parsed.skipped_lines),
        outcome=outcome,
    )
    if summary.dropped or summary.rejected:
        logger.warning(
            "Import finished with losses: rejected=%d dropped=%d cancelled=%d",
            summary.rejected, summary.dropped, summary.cancelled,
        )
    logger.info("Goroutine data import %s: %s", outcome.value, summary)
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    from stackindex.cli import main as cli_main

    return cli_main(["import", *(sys.argv[1:] if argv is None else argv)])


if __name__ == "__main__":
    sys.exit(main())

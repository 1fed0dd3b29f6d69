"""Document builder: parsed goroutine records to indexable documents.

Provides:
- validate_record: enforce the record invariant (finite, non-negative idle minutes)
- build_document: map one record plus its ordinal and event time to a document
- build_documents: validate, timestamp and build a whole record sequence, skipping
  (and logging) invalid records without interrupting the rest
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Iterable, Iterator, Optional

from stackindex.errors import RecordValidationError
from stackindex.schemas import ExecutionRecord, IndexableDocument
from stackindex.timestamps import infer_event_time

logger = logging.getLogger(__name__)


def validate_record(record: ExecutionRecord) -> None:
    """Raise RecordValidationError unless ``record.idle_minutes`` is a finite value >= 0."""
    idle = record.idle_minutes
    if idle is None:
        raise RecordValidationError(f"goroutine {record.id}: missing idle minutes", record_id=record.id)
    if math.isnan(idle) or math.isinf(idle):
        raise RecordValidationError(f"goroutine {record.id}: idle minutes not finite ({idle})", record_id=record.id)
    if idle < 0:
        raise RecordValidationError(f"goroutine {record.id}: negative idle minutes ({idle})", record_id=record.id)


def build_document(record: ExecutionRecord, ordinal: int, event_time: datetime) -> IndexableDocument:
    """Build the document for one record. Frames are passed through untouched."""
    validate_record(record)
    return IndexableDocument(
        ordinal=ordinal,
        id=record.id,
        event_time=event_time,
        frames=record.frames,
        state=record.state,
        idle_minutes=record.idle_minutes,
        locked_to_thread=record.locked_to_thread,
        elided=record.elided,
        created_by=record.created_by,
        created_in=record.created_in,
    )


def build_documents(
    records: Iterable[ExecutionRecord],
    capture: datetime,
    rejected: Optional[list] = None,
) -> Iterator[IndexableDocument]:
    """Yield one document per valid record, in input order.

    Ordinals count accepted documents only, so they stay a contiguous 0-based
    sequence. Invalid records are logged and, when ``rejected`` is given, appended
    to it as (input position, error) pairs.
    """
    ordinal = 0
    for position, record in enumerate(records):
        try:
            validate_record(record)
        except RecordValidationError as exc:
            logger.warning("Skipping record at position %d: %s", position, exc)
            if rejected is not None:
                rejected.append((position, exc))
            continue
        logger.debug("[%03d] routine #%d", ordinal, record.id)
        event_time = infer_event_time(capture, record.idle_minutes)
        yield build_document(record, ordinal, event_time)
        ordinal += 1

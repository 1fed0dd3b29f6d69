"""Exception hierarchy for dump ingestion and bulk delivery.

Fatal errors (InputError, ParseError) abort an import before any pipeline work
starts. RecordValidationError is recovered per record and delivery errors per
attempt, so one bad record or one failed bulk request never aborts a run.
"""
from __future__ import annotations

from typing import Optional, Sequence

__all__ = [
    "StackIndexError",
    "InputError",
    "ParseError",
    "RecordValidationError",
    "DeliveryError",
    "DeliveryTransientError",
    "DeliveryPermanentError",
    "PipelineStateError",
    "Cancelled",
]


class StackIndexError(RuntimeError):
    """Base exception for all stackindex failures."""


class InputError(StackIndexError):
    """Raised when the input dump file is missing or unreadable."""


class ParseError(StackIndexError):
    """Raised when a dump contains no recognisable goroutine records."""


class RecordValidationError(StackIndexError):
    """Raised when a single record violates a record invariant."""

    def __init__(self, message: str, *, record_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.record_id = record_id


class DeliveryError(StackIndexError):
    """Base class for failed delivery attempts.

    ``documents`` holds whatever the failed attempt did not deliver, so a retry
    only resends those.
    """

    def __init__(self, message: str, *, documents: Sequence = (), status: Optional[int] = None) -> None:
        super().__init__(message)
        self.documents = tuple(documents)
        self.status = status


class DeliveryTransientError(DeliveryError):
    """A delivery attempt failed but may succeed on retry."""


class DeliveryPermanentError(DeliveryError):
    """A delivery attempt failed in a way retrying will not fix."""


class PipelineStateError(StackIndexError):
    """Raised when a pipeline operation is called in the wrong lifecycle state."""


class Cancelled(StackIndexError):
    """Raised when a blocking operation returns early because of cancellation."""

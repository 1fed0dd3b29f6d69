"""Pydantic models shared by the parser, document builder and delivery pipeline.

Defines the data contracts flowing through an import:
- Frame: one call frame of a goroutine stack (opaque to the pipeline).
- ExecutionRecord: one parsed goroutine (id, idle-minutes hint, frames).
- IndexableDocument: a record anchored to an absolute event time, ready to index.
- BulkAction / BulkItemResult: one document on the wire and its per-item outcome.

All models are frozen: a document is built once and never mutated afterwards.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Frame(BaseModel):
    """A single call frame.

    Attributes:
        func: Fully-qualified function name, e.g. "main.(*Server).loop".
        args: Raw argument text between the parentheses, kept verbatim.
        file: Source file path of the frame.
        line: Source line number.
        offset: Program-counter offset (e.g. "+0x1d"), when the dump reports it.
    """
    model_config = ConfigDict(frozen=True)

    func: str
    args: str = ""
    file: str = ""
    line: int = 0
    offset: Optional[str] = None

    @property
    def package(self) -> str:
        """Import path of the package that defines the function."""
        slash = self.func.rfind("/")
        dot = self.func.find(".", slash + 1)
        return self.func[:dot] if dot > 0 else self.func

    def to_dict(self) -> Dict[str, Any]:
        return {
            "func": self.func,
            "package": self.package,
            "args": self.args,
            "file": self.file,
            "line": self.line,
            "offset": self.offset,
        }


class ExecutionRecord(BaseModel):
    """One goroutine as reported by the dump.

    ``idle_minutes`` is deliberately unconstrained here; records with a negative or
    missing value are rejected by the document builder so that one bad record is
    skipped instead of failing the whole parse.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    idle_minutes: Optional[float] = None
    frames: Tuple[Frame, ...] = ()
    state: str = ""
    locked_to_thread: bool = False
    elided: bool = False
    created_by: Optional[Frame] = None
    created_in: Optional[int] = None


class IndexableDocument(BaseModel):
    """A record anchored to an absolute time, ready for the bulk pipeline.

    Attributes:
        ordinal: Position among accepted documents of this run; used as document id.
        id: Goroutine id copied from the record.
        event_time: Capture instant minus the record's idle minutes.
        frames: Frames copied from the record, unchanged.
    """
    model_config = ConfigDict(frozen=True)

    ordinal: int = Field(..., ge=0)
    id: int
    event_time: datetime
    frames: Tuple[Frame, ...] = ()
    state: str = ""
    idle_minutes: float = 0.0
    locked_to_thread: bool = False
    elided: bool = False
    created_by: Optional[Frame] = None
    created_in: Optional[int] = None

    @property
    def doc_id(self) -> str:
        return str(self.ordinal)

    def to_source(self, doc_type: str = "") -> Dict[str, Any]:
        """Render the JSON body stored in the index for this document."""
        frames: List[Dict[str, Any]] = [f.to_dict() for f in self.frames]
        body: Dict[str, Any] = {
            "@timestamp": self.event_time.isoformat(),
            "ordinal": self.ordinal,
            "goroutine_id": self.id,
            "state": self.state,
            "idle_minutes": self.idle_minutes,
            "locked_to_thread": self.locked_to_thread,
            "elided": self.elided,
            "depth": len(frames),
            "top_function": frames[0]["func"] if frames else None,
            "frames": frames,
            "created_by": self.created_by.to_dict() if self.created_by else None,
            "created_in": self.created_in,
        }
        if doc_type:
            body["doc_type"] = doc_type
        return body


class BulkAction(BaseModel):
    """One document as handed to the backend.

    Mirrors the backend delivery tuple (index, type, id, timestamp, body).
    """
    model_config = ConfigDict(frozen=True)

    index: str
    doc_type: str = ""
    doc_id: str
    timestamp: datetime
    body: Dict[str, Any]


class BulkItemResult(BaseModel):
    """Per-document outcome reported by a bulk request."""
    doc_id: str
    status: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

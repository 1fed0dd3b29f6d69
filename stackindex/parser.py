"""Go goroutine stack-dump parser.

Turns the text the Go runtime prints on panic, SIGQUIT or debug.Stack/pprof
(debug=2) into ExecutionRecord values. Anything that is not part of a goroutine
block (log lines, panic banners, "exit status 2") is returned as skipped lines, so
a whole log file can be fed in without cleaning it up first.

Recognised block shape::

    goroutine 18 [chan receive, 5 minutes, locked to thread]:
    main.worker(0xc000010000, 0x3)
    	/home/u/main.go:42 +0x8f
    ...additional frames elided...
    created by main.main in goroutine 1
    	/home/u/main.go:30 +0x5c

A goroutine without a "N minutes" hint has been idle for less than a minute and
gets idle_minutes=0. A hint that cannot be read is kept as None so the document
builder rejects that single record.
"""
from __future__ import annotations

import io
import logging
import re
from typing import IO, Any, Dict, Iterable, List, NamedTuple, Optional, Union

from stackindex.errors import ParseError
from stackindex.schemas import ExecutionRecord, Frame

logger = logging.getLogger(__name__)

HEADER_RE = re.compile(r"^goroutine (?P<id>\d+)(?: [^\[]*)? \[(?P<status>.*)\]:\s*$")
FUNC_RE = re.compile(r"^(?P<func>[^\s(]\S*)\((?P<args>[^()]*)\)$")
LOCATION_RE = re.compile(r"^\t(?P<file>.+?):(?P<line>\d+)(?: (?P<offset>\+0x[0-9a-fA-F]+))?(?: .*)?$")
CREATED_BY_RE = re.compile(r"^created by (?P<func>\S+?)(?: in goroutine (?P<parent>\d+))?\s*$")
MINUTES_RE = re.compile(r"^(?P<n>\S+) minutes?$")
ELIDED_LINE = "...additional frames elided..."


class ParsedDump(NamedTuple):
    records: List[ExecutionRecord]
    skipped_lines: List[str]


def _parse_status(status: str) -> Dict[str, Any]:
    """Split "chan receive, 5 minutes, locked to thread" into record fields."""
    parts = [p.strip() for p in status.split(",")]
    out: Dict[str, Any] = {"state": parts[0], "idle_minutes": 0.0, "locked_to_thread": False}
    for part in parts[1:]:
        if part == "locked to thread":
            out["locked_to_thread"] = True
            continue
        m = MINUTES_RE.match(part)
        if m:
            try:
                out["idle_minutes"] = float(int(m.group("n")))
            except ValueError:
                out["idle_minutes"] = None
            continue
        # Unknown annotations are kept as part of the state text
        out["state"] = f"{out['state']}, {part}"
    return out


class _Block:
    """Mutable accumulator for the goroutine currently being read."""

    def __init__(self, gid: int, status: Dict[str, Any]):
        self.gid = gid
        self.status = status
        self.frames: List[Frame] = []
        self.elided = False
        self.created_by: Optional[Frame] = None
        self.created_in: Optional[int] = None
        # (func, args, is_created_by) waiting for its location line
        self.pending: Optional[tuple] = None

    def add_location(self, file: str, line: int, offset: Optional[str]) -> bool:
        if self.pending is None:
            return False
        func, args, is_creator = self.pending
        frame = Frame(func=func, args=args, file=file, line=line, offset=offset)
        if is_creator:
            self.created_by = frame
        else:
            self.frames.append(frame)
        self.pending = None
        return True

    def flush_pending(self) -> None:
        if self.pending is not None:
            self.add_location("", 0, None)

    def to_record(self) -> ExecutionRecord:
        self.flush_pending()
        return ExecutionRecord(
            id=self.gid,
            idle_minutes=self.status["idle_minutes"],
            state=self.status["state"],
            locked_to_thread=self.status["locked_to_thread"],
            frames=tuple(self.frames),
            elided=self.elided,
            created_by=self.created_by,
            created_in=self.created_in,
        )


def _iter_lines(source: Union[str, bytes, IO]) -> Iterable[str]:
    if isinstance(source, bytes):
        source = source.decode("utf-8", errors="replace")
    if isinstance(source, str):
        source = io.StringIO(source)
    for raw in source:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        yield raw.rstrip("\r\n")


def parse_dump(source: Union[str, bytes, IO]) -> ParsedDump:
    """Parse a goroutine dump into records plus the lines that were not part of one.

    Args:
        source: Dump text, raw bytes, or a text/binary stream.

    Returns:
        ParsedDump: records in input order and the skipped non-record lines.

    Raises:
        ParseError: if the input contains no goroutine records at all.
    """
    records: List[ExecutionRecord] = []
    skipped: List[str] = []
    block: Optional[_Block] = None

    def finish() -> None:
        nonlocal block
        if block is not None:
            records.append(block.to_record())
            block = None

    for line in _iter_lines(source):
        header = HEADER_RE.match(line)
        if header:
            finish()
            block = _Block(int(header.group("id")), _parse_status(header.group("status")))
            continue
        if block is None:
            if line.strip():
                skipped.append(line)
            continue
        if not line.strip():
            finish()
            continue
        if line.strip() == ELIDED_LINE:
            block.flush_pending()
            block.elided = True
            continue
        loc = LOCATION_RE.match(line)
        if loc:
            if not block.add_location(loc.group("file"), int(loc.group("line")), loc.group("offset")):
                skipped.append(line)
            continue
        created = CREATED_BY_RE.match(line)
        if created:
            block.flush_pending()
            block.pending = (created.group("func"), "", True)
            if created.group("parent"):
                block.created_in = int(created.group("parent"))
            continue
        func = FUNC_RE.match(line)
        if func:
            block.flush_pending()
            block.pending = (func.group("func"), func.group("args"), False)
            continue
        # Foreign output interleaved with the dump ends the current block
        finish()
        skipped.append(line)

    finish()

    if not records:
        raise ParseError("no goroutine records found in input")
    logger.debug("Parsed %d records, skipped %d lines", len(records), len(skipped))
    return ParsedDump(records, skipped)

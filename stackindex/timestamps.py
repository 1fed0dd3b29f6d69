"""Absolute event times from relative idle-duration hints.

A goroutine reported as idle for N minutes last did something N minutes before the
dump was captured. All records of one run share a single capture instant so that
equal hints resolve to equal times.
"""
from datetime import datetime, timedelta, timezone


def capture_instant() -> datetime:
    """Return the capture instant for a run: the current time in UTC."""
    return datetime.now(timezone.utc)


def infer_event_time(capture: datetime, idle_minutes: float) -> datetime:
    """Return ``capture`` shifted back by ``idle_minutes`` minutes.

    No upper bound is applied; very old timestamps are valid output.
    """
    return capture - timedelta(minutes=idle_minutes)

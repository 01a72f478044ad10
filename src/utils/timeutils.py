"""
Timestamp helpers for the timeline pipeline.

Every timestamp that flows through the synthesizer, classifier and playback
controller is a timezone-aware UTC datetime. Storage uses a fixed-width ISO
string so lexicographic order matches chronological order.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pandas as pd

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def to_utc(value) -> datetime:
    """
    Coerce an ISO string, datetime or pandas Timestamp to an aware UTC datetime.

    Naive values are interpreted as UTC.

    Raises:
        ValueError: if the value is empty or cannot be parsed
        TypeError: if the value is not a string or datetime
    """
    if isinstance(value, str):
        if not value.strip():
            raise ValueError("Empty timestamp")
        ts = pd.Timestamp(value)
    elif isinstance(value, datetime):
        ts = pd.Timestamp(value)
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")

    if ts is pd.NaT:
        raise ValueError(f"Unparseable timestamp: {value!r}")

    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    else:
        ts = ts.tz_convert("UTC")
    return ts.to_pydatetime().astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Fixed-width ISO-8601 UTC string with microseconds and a trailing Z."""
    return to_utc(dt).strftime(ISO_FORMAT)


def to_epoch_us(dt: datetime) -> int:
    """Microseconds since the Unix epoch (exact, no float rounding)."""
    return (to_utc(dt) - EPOCH) // timedelta(microseconds=1)


def from_epoch_us(us: int) -> datetime:
    return EPOCH + timedelta(microseconds=int(us))

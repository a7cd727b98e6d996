"""Conversions between ``mm:ss`` transcript timestamps and second offsets."""

from __future__ import annotations

import math


def format_time(seconds: float) -> str:
    """Format a non-negative second offset as ``mm:ss``.

    Minutes are not wrapped into hours, so an offset past the hour renders as
    ``61:05``. Fractional seconds are truncated.
    """
    total = max(0, math.floor(seconds))
    minutes, remaining = divmod(total, 60)
    return f"{minutes:02d}:{remaining:02d}"


def parse_time_to_seconds(timestamp: str) -> int:
    """Convert a ``mm:ss`` (or ``hh:mm:ss``) timestamp to whole seconds.

    Raises:
        ValueError: If the timestamp is not colon-separated numbers.
    """
    parts = timestamp.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid timestamp: {timestamp!r}")
    try:
        values = [float(part) for part in parts]
    except ValueError as exc:
        raise ValueError(f"Invalid timestamp: {timestamp!r}") from exc
    if any(value < 0 for value in values):
        raise ValueError(f"Invalid timestamp: {timestamp!r}")

    if len(values) == 3:
        hours, minutes, secs = values
    else:
        hours = 0.0
        minutes, secs = values
    return int(hours * 3600 + minutes * 60 + secs)

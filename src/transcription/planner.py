"""Segment planner: partition a media duration into overlapping windows."""

from __future__ import annotations

from collections.abc import Iterator

from src.transcription.models import Window


def plan_windows(
    total_duration: float,
    window_seconds: int,
    overlap_seconds: int,
    resume_from: float = 0,
) -> Iterator[Window]:
    """Yield the ordered windows covering ``[resume_from, total_duration)``.

    Nominal window starts advance by exactly ``window_seconds``. Every window
    except the one at offset 0 is pulled back by ``overlap_seconds`` so it
    re-covers the tail of its predecessor; durations are clamped so no window
    runs past ``total_duration``.

    The returned generator is consumed once per run. A continuation run
    re-plans from its resume offset instead of resuming this iterator.

    Args:
        total_duration: Length of the source media in seconds.
        window_seconds: Stride between nominal window starts.
        overlap_seconds: Seconds of the previous window each window re-covers.
        resume_from: Nominal start of the first window.

    Raises:
        ValueError: On a non-positive window length, a negative overlap or
            resume offset, or an overlap not shorter than the window.
    """
    if window_seconds <= 0:
        raise ValueError("window_seconds must be > 0")
    if overlap_seconds < 0:
        raise ValueError("overlap_seconds must be >= 0")
    if overlap_seconds >= window_seconds:
        raise ValueError("overlap_seconds must be < window_seconds")
    if resume_from < 0:
        raise ValueError("resume_from must be >= 0")

    t = resume_from
    while t < total_duration:
        start = max(0, t - overlap_seconds)
        duration = min(window_seconds + overlap_seconds, total_duration - start)
        yield Window(start=start, duration=duration)
        t += window_seconds

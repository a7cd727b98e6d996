"""Merge per-window transcripts into one time-sorted, speaker-normalised transcript."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from src.transcription.models import SYSTEM_SPEAKER, TranscriptEntry
from src.transcription.timeutils import format_time, parse_time_to_seconds

DEDUP_TOLERANCE_SECONDS = 5


class SpeakerMap:
    """Stable mapping from raw speaker labels to ``Speaker 1``, ``Speaker 2``, ...

    Labels are numbered in first-seen order and matched by literal string
    equality only, so the same person labelled differently by two windows
    gets two canonical labels.

    ``System`` is the one exception to numbering every distinct raw label:
    failure placeholders keep that label and never consume a speaker number,
    so a skipped window does not shift ``Speaker N`` for real speakers.
    """

    def __init__(self) -> None:
        self._labels: dict[str, str] = {}

    def canonical(self, raw: str) -> str:
        if raw == SYSTEM_SPEAKER:
            return raw
        if raw not in self._labels:
            self._labels[raw] = f"Speaker {len(self._labels) + 1}"
        return self._labels[raw]

    def observe(self, chunks: Iterable[Iterable[TranscriptEntry]]) -> None:
        for chunk in chunks:
            for entry in chunk:
                self.canonical(entry.speaker)

    def as_dict(self) -> dict[str, str]:
        return dict(self._labels)


def is_near_duplicate(
    seconds: int,
    entry: TranscriptEntry,
    other_seconds: int,
    other: TranscriptEntry,
    tolerance_seconds: int = DEDUP_TOLERANCE_SECONDS,
) -> bool:
    """Same speaker and text, less than ``tolerance_seconds`` apart."""
    return (
        abs(seconds - other_seconds) < tolerance_seconds
        and entry.speaker == other.speaker
        and entry.text == other.text
    )


def merge_transcripts(
    chunks: Sequence[Sequence[TranscriptEntry]],
    chunk_start_times: Sequence[float],
    *,
    speakers: SpeakerMap | None = None,
    tolerance_seconds: int = DEDUP_TOLERANCE_SECONDS,
) -> list[TranscriptEntry]:
    """Merge window transcripts into a single transcript sorted by time.

    Each entry's timestamp is read as relative to its window and shifted by
    the matching ``chunk_start_times`` value. Entries that already carry
    absolute timestamps (segment processor output) must be merged with start
    times of ``0``.

    An entry is dropped when an already-merged entry has the same canonical
    speaker and identical text less than ``tolerance_seconds`` away; this
    absorbs lines re-emitted by overlapping windows and makes re-merging the
    same input a no-op. Ties on timestamp keep insertion order.

    Args:
        chunks: Per-window entry lists, in window order.
        chunk_start_times: Window start offsets in seconds, parallel to ``chunks``.
        speakers: Mapping to populate; a fresh one is used when omitted.
        tolerance_seconds: Duplicate window in seconds.

    Returns:
        Merged entries with canonical speakers and absolute ``mm:ss`` timestamps.

    Raises:
        ValueError: ``chunks`` and ``chunk_start_times`` differ in length, or a
            timestamp cannot be parsed.
    """
    if len(chunks) != len(chunk_start_times):
        raise ValueError("chunks and chunk_start_times must have the same length")

    speakers = speakers if speakers is not None else SpeakerMap()
    # Number speakers across all windows before any entry is merged
    speakers.observe(chunks)

    merged: list[tuple[int, TranscriptEntry]] = []
    for chunk, start_time in zip(chunks, chunk_start_times, strict=True):
        for entry in chunk:
            adjusted = int(parse_time_to_seconds(entry.timestamp) + start_time)
            candidate = entry.model_copy(
                update={
                    "timestamp": format_time(adjusted),
                    "speaker": speakers.canonical(entry.speaker),
                }
            )
            if any(
                is_near_duplicate(adjusted, candidate, seconds, existing, tolerance_seconds)
                for seconds, existing in merged
            ):
                continue
            merged.append((adjusted, candidate))

    merged.sort(key=lambda pair: pair[0])
    return [entry for _, entry in merged]

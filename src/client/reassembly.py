"""Client-side reassembly of the progress stream, with gap detection and resume."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

import httpx

from src.client.api_client import stream_transcription
from src.config import settings
from src.transcription.merger import DEDUP_TOLERANCE_SECONDS, is_near_duplicate
from src.transcription.models import ChunkSpan, ErrorRecord, SuccessRecord, TranscriptEntry
from src.transcription.timeutils import format_time, parse_time_to_seconds

logger = logging.getLogger(__name__)

GAP_TOLERANCE_SECONDS = 5


@dataclass(frozen=True)
class ResumeDirective:
    """Ask the server for a continuation run from ``start_time`` after ``delay_seconds``."""

    start_time: float
    delay_seconds: float


@dataclass(frozen=True)
class ApplyResult:
    new_entries: list[TranscriptEntry]
    resume: ResumeDirective | None = None


class RetryLimitExceeded(RuntimeError):
    """Raised when a run keeps failing after the configured number of resumes."""

    def __init__(self, assembler: TranscriptAssembler, attempts: int) -> None:
        super().__init__(
            f"Gave up after {attempts} resume attempts at {format_time(assembler.resume_from or 0)}"
        )
        self.assembler = assembler
        self.attempts = attempts


def find_gap(spans: Iterable[ChunkSpan], tolerance_seconds: float = GAP_TOLERANCE_SECONDS) -> float | None:
    """Return the resume point for the first coverage gap, or ``None``.

    Spans are sorted by start. A gap exists where a span starts more than
    ``tolerance_seconds`` after everything before it ended; the resume point
    is the end of that contiguous run, so a resume re-covers the hole.
    """
    ordered = sorted(spans, key=lambda span: span.start)
    if not ordered:
        return None

    covered_end = ordered[0].end
    for span in ordered[1:]:
        if span.start - covered_end > tolerance_seconds:
            return covered_end
        covered_end = max(covered_end, span.end)
    return None


class TranscriptAssembler:
    """Live transcript rebuilt from progress records.

    Records are applied in arrival order. Success records extend the covered
    spans and contribute only entries not already present (same speaker and
    text within the dedup tolerance). Error records and coverage gaps mark the
    run interrupted and yield a :class:`ResumeDirective`.
    """

    def __init__(
        self,
        dedup_tolerance_seconds: int = DEDUP_TOLERANCE_SECONDS,
        gap_tolerance_seconds: float = GAP_TOLERANCE_SECONDS,
    ) -> None:
        self.dedup_tolerance_seconds = dedup_tolerance_seconds
        self.gap_tolerance_seconds = gap_tolerance_seconds
        self.total_duration: float | None = None
        self.spans: list[ChunkSpan] = []
        self.entries: list[TranscriptEntry] = []
        self.high_water_mark: int | None = None
        self.interrupted = False
        self.resume_from: float | None = None
        self._entry_seconds: list[int] = []

    @property
    def high_water_timestamp(self) -> str | None:
        return format_time(self.high_water_mark) if self.high_water_mark is not None else None

    @property
    def covered_until(self) -> float:
        """End of the contiguous coverage that starts at the earliest span."""
        gap = find_gap(self.spans, self.gap_tolerance_seconds)
        if gap is not None:
            return gap
        return max((span.end for span in self.spans), default=0.0)

    @property
    def is_complete(self) -> bool:
        if self.total_duration is None:
            return False
        return self.total_duration - self.covered_until <= self.gap_tolerance_seconds

    def apply(self, record: SuccessRecord | ErrorRecord) -> ApplyResult:
        if self.total_duration is None:
            self.total_duration = record.total_duration

        if isinstance(record, ErrorRecord):
            self.interrupt(record.start_time)
            logger.warning(
                "Window at %s failed: %s",
                format_time(record.start_time),
                record.entries[0].text,
            )
            return ApplyResult(
                new_entries=[],
                resume=ResumeDirective(record.start_time, record.retry_after / 1000),
            )

        self.spans.append(ChunkSpan(start=record.start_time, end=record.end_time))
        new_entries = self._append_new(record.entries)

        gap = find_gap(self.spans, self.gap_tolerance_seconds)
        if gap is not None:
            self.interrupt(gap)
            logger.warning("Coverage gap after %s", format_time(gap))
            return ApplyResult(new_entries=new_entries, resume=ResumeDirective(gap, 0.0))
        return ApplyResult(new_entries=new_entries)

    def mark_resumed(self) -> None:
        self.interrupted = False

    def interrupt(self, resume_from: float) -> None:
        self.interrupted = True
        self.resume_from = resume_from

    def _append_new(self, entries: list[TranscriptEntry]) -> list[TranscriptEntry]:
        added: list[TranscriptEntry] = []
        for entry in entries:
            seconds = parse_time_to_seconds(entry.timestamp)
            if any(
                is_near_duplicate(seconds, entry, other_seconds, other, self.dedup_tolerance_seconds)
                for other_seconds, other in zip(self._entry_seconds, self.entries, strict=True)
            ):
                continue
            self.entries.append(entry)
            self._entry_seconds.append(seconds)
            added.append(entry)
            if self.high_water_mark is None or seconds > self.high_water_mark:
                self.high_water_mark = seconds
        return added


def transcribe_with_resume(
    file_path: Path,
    *,
    start_time: float = 0,
    api_url: str | None = None,
    max_retries: int | None = None,
    assembler: TranscriptAssembler | None = None,
    client: httpx.Client | None = None,
    on_entries: Callable[[list[TranscriptEntry]], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> TranscriptAssembler:
    """Stream a transcription and resume it until the whole file is covered.

    Each interruption (error record, coverage gap, dropped connection, or a
    stream that closes short of the end) triggers a continuation request from
    the assembler's resume point. ``max_retries`` bounds consecutive resumes
    without forward progress in between.

    Raises:
        RetryLimitExceeded: More than ``max_retries`` consecutive resumes.
        httpx.HTTPStatusError: The server rejected the request (4xx/5xx).
    """
    assembler = assembler or TranscriptAssembler(
        dedup_tolerance_seconds=settings.dedup_tolerance_seconds,
        gap_tolerance_seconds=settings.gap_tolerance_seconds,
    )
    max_retries = settings.client_max_retries if max_retries is None else max_retries
    resume_at = start_time
    attempts = 0
    furthest_end = 0.0

    while True:
        directive: ResumeDirective | None = None
        try:
            for record in stream_transcription(
                file_path,
                start_time=int(resume_at),
                retry_count=attempts,
                api_url=api_url,
                client=client,
            ):
                result = assembler.apply(record)
                if result.new_entries and on_entries is not None:
                    on_entries(result.new_entries)
                if result.resume is not None:
                    directive = result.resume
                    break
                # Only forward progress resets the budget
                if record.end_time > furthest_end:
                    furthest_end = record.end_time
                    attempts = 0
        except httpx.TransportError as exc:
            logger.warning("Stream dropped: %s", exc)
            assembler.interrupt(assembler.covered_until)
            directive = ResumeDirective(assembler.covered_until, settings.error_delay_seconds)

        if directive is None:
            if assembler.total_duration is None or assembler.is_complete:
                return assembler
            assembler.interrupt(assembler.covered_until)
            directive = ResumeDirective(assembler.covered_until, settings.error_delay_seconds)

        attempts += 1
        if attempts > max_retries:
            raise RetryLimitExceeded(assembler, attempts - 1)

        logger.info(
            "Resuming from %s in %.1fs (attempt %d/%d)",
            format_time(directive.start_time),
            directive.delay_seconds,
            attempts,
            max_retries,
        )
        sleep(directive.delay_seconds)
        assembler.mark_resumed()
        resume_at = directive.start_time

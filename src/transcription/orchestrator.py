"""Pipeline orchestrator: drive planned windows through the processor, one record each."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from src.pipeline_config import PipelineConfig
from src.transcription.errors import is_rate_limit_failure
from src.transcription.gemini_backend import TranscriptionBackend
from src.transcription.media import extract_segment
from src.transcription.merger import merge_transcripts
from src.transcription.models import (
    ErrorRecord,
    SuccessRecord,
    TranscriptEntry,
    Window,
    utc_now_iso,
)
from src.transcription.planner import plan_windows
from src.transcription.processor import Extractor, Sleep, process_segment, system_entry
from src.transcription.timeutils import format_time, parse_time_to_seconds

logger = logging.getLogger(__name__)

HARD_RATE_LIMIT_MESSAGE = "Rate limit reached. Waiting before continuing."
HARD_ERROR_MESSAGE = "Error processing segment. Will retry shortly."

CancelCheck = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class RunState:
    """Everything one run carries from window to window.

    ``processed_duration`` is the high-water mark of confirmed coverage and
    ``last_processed_timestamp`` the latest entry timestamp seen; both only
    move forward. ``segments`` and ``window_starts`` accumulate the entries of
    every window that returned a result, for the final merge.
    """

    total_duration: float
    resume_from: float = 0
    processed_duration: float = 0
    last_processed_timestamp: str | None = None
    segments: tuple[tuple[TranscriptEntry, ...], ...] = ()
    window_starts: tuple[float, ...] = ()

    @classmethod
    def fresh(cls, total_duration: float, resume_from: float = 0) -> RunState:
        """State for a new run; a continuation run starts covered up to ``resume_from``."""
        return cls(
            total_duration=total_duration,
            resume_from=resume_from,
            processed_duration=resume_from,
        )

    def with_window(self, window: Window, entries: list[TranscriptEntry], succeeded: bool) -> RunState:
        segments = (*self.segments, tuple(entries))
        window_starts = (*self.window_starts, window.start)
        if not succeeded:
            return dataclasses.replace(self, segments=segments, window_starts=window_starts)

        return dataclasses.replace(
            self,
            segments=segments,
            window_starts=window_starts,
            processed_duration=max(self.processed_duration, window.end),
            last_processed_timestamp=self._later_timestamp(entries),
        )

    def _later_timestamp(self, entries: list[TranscriptEntry]) -> str | None:
        if not entries:
            return self.last_processed_timestamp
        latest = max(entries, key=lambda entry: parse_time_to_seconds(entry.timestamp))
        if self.last_processed_timestamp is None:
            return latest.timestamp
        if parse_time_to_seconds(latest.timestamp) > parse_time_to_seconds(self.last_processed_timestamp):
            return latest.timestamp
        return self.last_processed_timestamp

    def merged_transcript(self) -> list[TranscriptEntry]:
        # Processor output is already absolute, so no per-window offset is added
        return merge_transcripts(self.segments, [0] * len(self.segments))


@dataclass(frozen=True)
class WindowStep:
    """Result of one orchestration step."""

    state: RunState
    record: SuccessRecord | ErrorRecord
    delay_seconds: float


def _is_placeholder(entries: list[TranscriptEntry]) -> bool:
    return len(entries) == 1 and entries[0].is_system


async def run_window(
    state: RunState,
    window: Window,
    *,
    source_path: Path,
    mime_type: str,
    backend: TranscriptionBackend,
    config: PipelineConfig,
    retry_count: int = 0,
    extractor: Extractor = extract_segment,
    sleep: Sleep = asyncio.sleep,
) -> WindowStep:
    """Process one window and return the new state, its record, and the next delay.

    Hard failures from the processor are turned into an error record here; the
    window is not retried.
    """
    base = {
        "start_time": window.start,
        "end_time": window.end,
        "total_duration": state.total_duration,
        "retry_count": retry_count,
    }

    try:
        entries = await process_segment(
            source_path,
            window,
            mime_type,
            backend,
            config,
            extractor=extractor,
            sleep=sleep,
        )
    except Exception as exc:
        rate_limited = is_rate_limit_failure(exc)
        delay = config.rate_limit_delay_seconds if rate_limited else config.error_delay_seconds
        logger.exception("Error processing window at %s", format_time(window.start))
        record = ErrorRecord(
            **base,
            processed_timestamp=utc_now_iso(),
            retry_after=int(delay * 1000),
            entries=[system_entry(window, HARD_RATE_LIMIT_MESSAGE if rate_limited else HARD_ERROR_MESSAGE)],
        )
        return WindowStep(state=state, record=record, delay_seconds=delay)

    if _is_placeholder(entries):
        delay = config.soft_error_delay_seconds
        record: SuccessRecord | ErrorRecord = ErrorRecord(
            **base,
            processed_timestamp=utc_now_iso(),
            retry_after=int(delay * 1000),
            entries=entries,
        )
    else:
        delay = config.success_delay_seconds
        record = SuccessRecord(**base, processed_timestamp=utc_now_iso(), entries=entries)

    new_state = state.with_window(window, entries, succeeded=record.status == "success")
    return WindowStep(state=new_state, record=record, delay_seconds=delay)


class PipelineRun:
    """One sequential pass over the planned windows of a media file.

    Iterate :meth:`records` to drive the run; ``state`` reflects every window
    emitted so far. Windows are never processed concurrently, and the next
    window starts only after the previous record was yielded and its delay
    elapsed.
    """

    def __init__(
        self,
        source_path: Path,
        mime_type: str,
        backend: TranscriptionBackend,
        config: PipelineConfig,
        state: RunState,
        *,
        retry_count: int = 0,
        is_cancelled: CancelCheck | None = None,
        extractor: Extractor = extract_segment,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.source_path = Path(source_path)
        self.mime_type = mime_type
        self.backend = backend
        self.config = config
        self.state = state
        self.retry_count = retry_count
        self.completed = False
        self.cancelled = False
        self._is_cancelled = is_cancelled
        self._extractor = extractor
        self._sleep = sleep

    async def records(self) -> AsyncIterator[SuccessRecord | ErrorRecord]:
        windows = plan_windows(
            self.state.total_duration,
            self.config.window_seconds,
            self.config.overlap_seconds,
            resume_from=self.state.resume_from,
        )
        pending_delay = 0.0
        for window in windows:
            if pending_delay:
                await self._sleep(pending_delay)
            if self._is_cancelled is not None and await self._is_cancelled():
                logger.info("Consumer went away; stopping before %s", format_time(window.start))
                self.cancelled = True
                return

            step = await run_window(
                self.state,
                window,
                source_path=self.source_path,
                mime_type=self.mime_type,
                backend=self.backend,
                config=self.config,
                retry_count=self.retry_count,
                extractor=self._extractor,
                sleep=self._sleep,
            )
            self.state = step.state
            pending_delay = step.delay_seconds
            logger.info(
                "Emitted %s record for %s to %s",
                step.record.status,
                format_time(window.start),
                format_time(window.end),
            )
            yield step.record

        self.completed = True
        logger.info(
            "Run complete: covered up to %s of %s",
            format_time(self.state.processed_duration),
            format_time(self.state.total_duration),
        )

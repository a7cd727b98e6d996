"""Tests for the pipeline orchestrator: record emission, pacing, state, cancellation."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

from src.pipeline_config import PipelineConfig
from src.transcription.errors import RateLimited
from src.transcription.models import ErrorRecord, SuccessRecord, TranscriptEntry, Window
from src.transcription.orchestrator import (
    HARD_ERROR_MESSAGE,
    HARD_RATE_LIMIT_MESSAGE,
    PipelineRun,
    RunState,
    run_window,
)
from src.transcription.processor import RATE_LIMIT_MESSAGE
from tests.fakes import FakeBackend, FakeExtractor, RecordingSleep


def _entry(ts: str, speaker: str, text: str) -> TranscriptEntry:
    return TranscriptEntry(timestamp=ts, speaker=speaker, text=text)


def _collect(run: PipelineRun) -> list[SuccessRecord | ErrorRecord]:
    async def drain() -> list[SuccessRecord | ErrorRecord]:
        return [record async for record in run.records()]

    return asyncio.run(drain())


def _make_run(
    source: Path,
    backend: FakeBackend,
    sleep: RecordingSleep,
    total: float = 300,
    resume_from: float = 0,
    config: PipelineConfig | None = None,
    **kwargs,
) -> PipelineRun:
    return PipelineRun(
        source,
        "audio/mpeg",
        backend,
        config or PipelineConfig(),
        RunState.fresh(total, resume_from=resume_from),
        extractor=FakeExtractor(),
        sleep=sleep,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# PipelineRun
# ---------------------------------------------------------------------------


class TestPipelineRun:
    def test_one_record_per_window_in_order(self, source_file: Path) -> None:
        backend = FakeBackend(
            outputs=[
                [{"timestamp": "00:05", "speaker": "Alice", "text": "Hello"}],
                [{"timestamp": "00:30", "speaker": "Bob", "text": "Hi"}],
                [{"timestamp": "00:10", "speaker": "Alice", "text": "Bye"}],
            ]
        )
        sleep = RecordingSleep()
        run = _make_run(source_file, backend, sleep, retry_count=2)
        records = _collect(run)

        assert [(r.start_time, r.end_time) for r in records] == [(0, 180), (60, 240), (180, 300)]
        assert all(r.status == "success" for r in records)
        assert all(r.total_duration == 300 for r in records)
        assert all(r.retry_count == 2 for r in records)
        assert [r.entries[0].timestamp for r in records] == ["00:05", "01:30", "03:10"]
        assert run.completed is True
        assert run.cancelled is False

    def test_sleeps_between_windows_but_not_after_the_last(self, source_file: Path) -> None:
        backend = FakeBackend(outputs=[[], [], []])
        sleep = RecordingSleep()
        _collect(_make_run(source_file, backend, sleep))

        assert sleep.calls == [3, 3]

    def test_soft_failure_emits_error_record_and_continues(self, source_file: Path) -> None:
        backend = FakeBackend(
            outputs=[
                [{"timestamp": "00:05", "speaker": "Alice", "text": "Hello"}],
                RateLimited("429 Too Many Requests"),
                [{"timestamp": "00:10", "speaker": "Bob", "text": "Later"}],
            ]
        )
        sleep = RecordingSleep()
        records = _collect(_make_run(source_file, backend, sleep))

        assert [r.status for r in records] == ["success", "error", "success"]
        error = records[1]
        assert isinstance(error, ErrorRecord)
        assert error.retry_after == 10000
        assert error.entries == [_entry("01:00", "System", RATE_LIMIT_MESSAGE)]
        assert sleep.calls == [3, 10]

    def test_hard_failure_emits_error_record_and_continues(self, source_file: Path) -> None:
        backend = FakeBackend(outputs=[[], RuntimeError("connection reset"), []])
        sleep = RecordingSleep()
        records = _collect(_make_run(source_file, backend, sleep))

        assert [r.status for r in records] == ["success", "error", "success"]
        assert records[1].retry_after == 5000
        assert records[1].entries[0].text == HARD_ERROR_MESSAGE
        assert sleep.calls == [3, 5]

    def test_state_tracks_successful_coverage(self, source_file: Path) -> None:
        backend = FakeBackend(
            outputs=[
                [{"timestamp": "00:05", "speaker": "Alice", "text": "Hello"}],
                [{"timestamp": "01:00", "speaker": "Alice", "text": "More"}],
                RateLimited("quota"),
            ]
        )
        run = _make_run(source_file, backend, RecordingSleep())
        _collect(run)

        assert run.state.processed_duration == 240
        assert run.state.last_processed_timestamp == "02:00"
        assert run.state.window_starts == (0, 60, 180)

    def test_resume_starts_from_offset(self, source_file: Path) -> None:
        backend = FakeBackend(outputs=[[]])
        run = _make_run(source_file, backend, RecordingSleep(), resume_from=180)
        records = _collect(run)

        assert [(r.start_time, r.end_time) for r in records] == [(120, 300)]
        assert run.state.processed_duration == 300

    def test_stops_when_consumer_disconnects(self, source_file: Path) -> None:
        backend = FakeBackend(outputs=[[], [], []])
        checks = iter([False, True])

        async def is_cancelled() -> bool:
            return next(checks)

        run = _make_run(source_file, backend, RecordingSleep(), is_cancelled=is_cancelled)
        records = _collect(run)

        assert len(records) == 1
        assert run.cancelled is True
        assert run.completed is False
        # The second window was never uploaded
        assert len(backend.uploads) == 1

    def test_closing_the_stream_stops_processing(self, source_file: Path) -> None:
        backend = FakeBackend(outputs=[[], [], []])
        run = _make_run(source_file, backend, RecordingSleep())

        async def first_only() -> None:
            stream = run.records()
            await stream.__anext__()
            await stream.aclose()

        asyncio.run(first_only())
        assert len(backend.uploads) == 1
        assert run.completed is False


# ---------------------------------------------------------------------------
# run_window
# ---------------------------------------------------------------------------


class TestRunWindow:
    def _step(self, source: Path, error: Exception):
        state = RunState.fresh(300)
        with patch(
            "src.transcription.orchestrator.process_segment",
            new=AsyncMock(side_effect=error),
        ):
            return state, asyncio.run(
                run_window(
                    state,
                    Window(start=60, duration=180),
                    source_path=source,
                    mime_type="audio/mpeg",
                    backend=FakeBackend(),
                    config=PipelineConfig(),
                    sleep=RecordingSleep(),
                )
            )

    def test_hard_rate_limit_uses_long_delay(self, source_file: Path) -> None:
        state, step = self._step(source_file, RuntimeError("429 Too Many Requests"))

        assert step.record.retry_after == 15000
        assert step.delay_seconds == 15
        assert step.record.entries == [_entry("01:00", "System", HARD_RATE_LIMIT_MESSAGE)]
        assert step.state is state

    def test_other_hard_failure_uses_short_delay(self, source_file: Path) -> None:
        state, step = self._step(source_file, OSError("disk full"))

        assert step.record.retry_after == 5000
        assert step.delay_seconds == 5
        assert step.record.start_time == 60
        assert step.record.end_time == 240
        assert step.state is state


# ---------------------------------------------------------------------------
# RunState
# ---------------------------------------------------------------------------


class TestRunState:
    def test_fresh_counts_resume_offset_as_covered(self) -> None:
        state = RunState.fresh(600, resume_from=120)
        assert state.processed_duration == 120
        assert state.last_processed_timestamp is None

    def test_failed_window_does_not_advance(self) -> None:
        state = RunState.fresh(300)
        window = Window(start=0, duration=180)
        placeholder = [_entry("00:00", "System", "skipped")]
        after = state.with_window(window, placeholder, succeeded=False)

        assert after.processed_duration == 0
        assert after.last_processed_timestamp is None
        assert after.segments == (tuple(placeholder),)

    def test_high_water_marks_never_regress(self) -> None:
        state = RunState.fresh(300)
        state = state.with_window(Window(0, 180), [_entry("02:50", "A", "x")], succeeded=True)
        state = state.with_window(Window(60, 100), [], succeeded=True)

        assert state.processed_duration == 180
        assert state.last_processed_timestamp == "02:50"

    def test_overlapping_window_with_earlier_last_line_keeps_mark(self) -> None:
        state = RunState.fresh(300)
        state = state.with_window(Window(0, 180), [_entry("02:55", "A", "x")], succeeded=True)
        state = state.with_window(
            Window(60, 180),
            [_entry("01:10", "B", "y"), _entry("02:30", "A", "z")],
            succeeded=True,
        )

        assert state.processed_duration == 240
        assert state.last_processed_timestamp == "02:55"

    def test_latest_entry_wins_regardless_of_order(self) -> None:
        state = RunState.fresh(300).with_window(
            Window(0, 180),
            [_entry("02:40", "A", "x"), _entry("00:30", "B", "y")],
            succeeded=True,
        )
        assert state.last_processed_timestamp == "02:40"

    def test_merged_transcript_absorbs_overlap(self) -> None:
        state = RunState.fresh(300)
        state = state.with_window(
            Window(0, 180),
            [_entry("00:05", "Alice", "Hello"), _entry("01:00", "Bob", "Overlap line")],
            succeeded=True,
        )
        state = state.with_window(
            Window(60, 180),
            [_entry("01:02", "Bob", "Overlap line"), _entry("02:00", "Alice", "New")],
            succeeded=True,
        )

        merged = state.merged_transcript()
        assert [(e.timestamp, e.text) for e in merged] == [
            ("00:05", "Hello"),
            ("01:00", "Overlap line"),
            ("02:00", "New"),
        ]
        assert [e.speaker for e in merged] == ["Speaker 1", "Speaker 2", "Speaker 1"]

"""Pipeline configuration: status enums and the PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.config import Settings


class RecordStatus(str, Enum):
    """Outcome of one window as reported on the progress stream."""

    SUCCESS = "success"
    ERROR = "error"


class FailureKind(str, Enum):
    """Classification of a failed window attempt."""

    CONTENT_POLICY_BLOCKED = "content_policy_blocked"
    RATE_LIMITED = "rate_limited"
    SEGMENT_PROCESSING_FAILED = "segment_processing_failed"
    SEGMENT_READY_TIMEOUT = "segment_ready_timeout"
    EXTRACTION_FAILED = "extraction_failed"
    MALFORMED_TRANSCRIPT_OUTPUT = "malformed_transcript_output"
    SETUP_FAILURE = "setup_failure"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable run-time policy for the chunked transcription pipeline.

    Defaults mirror the service's production behaviour: two-minute windows
    with one minute of overlap, five-second readiness polling, and the
    3 s / 10 s / 15 s / 5 s inter-window delay ladder.
    """

    window_seconds: int = 120
    overlap_seconds: int = 60
    poll_interval_seconds: float = 5.0
    max_poll_attempts: int = 60
    success_delay_seconds: float = 3.0
    soft_error_delay_seconds: float = 10.0
    rate_limit_delay_seconds: float = 15.0
    error_delay_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if not 0 <= self.overlap_seconds < self.window_seconds:
            raise ValueError("overlap_seconds must be >= 0 and < window_seconds")
        if self.max_poll_attempts <= 0:
            raise ValueError("max_poll_attempts must be > 0")

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            window_seconds=settings.window_seconds,
            overlap_seconds=settings.overlap_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            max_poll_attempts=settings.max_poll_attempts,
            success_delay_seconds=settings.success_delay_seconds,
            soft_error_delay_seconds=settings.soft_error_delay_seconds,
            rate_limit_delay_seconds=settings.rate_limit_delay_seconds,
            error_delay_seconds=settings.error_delay_seconds,
        )

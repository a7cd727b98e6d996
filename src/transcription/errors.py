"""Failure taxonomy for the chunked transcription pipeline."""

from __future__ import annotations

from src.pipeline_config import FailureKind

_SAFETY_MARKER = "SAFETY"
_RATE_LIMIT_MARKERS = ("429", "Too Many Requests")


class TranscriptionError(Exception):
    """Base exception for pipeline failures."""

    kind: FailureKind = FailureKind.UNKNOWN


class ContentPolicyBlocked(TranscriptionError):
    """Raised when the backend refuses a segment due to safety filtering."""

    kind = FailureKind.CONTENT_POLICY_BLOCKED


class RateLimited(TranscriptionError):
    """Raised when the backend answers with a too-many-requests condition."""

    kind = FailureKind.RATE_LIMITED


class SegmentProcessingFailed(TranscriptionError):
    """Raised when the backend reports a terminal failure state for an upload."""

    kind = FailureKind.SEGMENT_PROCESSING_FAILED


class SegmentReadyTimeout(TranscriptionError):
    """Raised when an uploaded segment is still processing after the poll ceiling."""

    kind = FailureKind.SEGMENT_READY_TIMEOUT


class MediaExtractionFailed(TranscriptionError):
    """Raised when the extraction tool cannot cut a segment from the source."""

    kind = FailureKind.EXTRACTION_FAILED


class MalformedTranscriptOutput(TranscriptionError):
    """Raised when the capability output is not a JSON array of transcript entries."""

    kind = FailureKind.MALFORMED_TRANSCRIPT_OUTPUT


class SetupFailure(TranscriptionError):
    """Raised when run-level resources (temp storage, media duration) are unavailable."""

    kind = FailureKind.SETUP_FAILURE


def is_content_policy_failure(exc: BaseException) -> bool:
    """Match typed safety blocks, or untyped errors whose message mentions SAFETY."""
    if isinstance(exc, TranscriptionError):
        return isinstance(exc, ContentPolicyBlocked)
    return _SAFETY_MARKER in str(exc)


def is_rate_limit_failure(exc: BaseException) -> bool:
    """Match typed rate limits, or untyped errors whose message mentions HTTP 429."""
    if isinstance(exc, TranscriptionError):
        return isinstance(exc, RateLimited)
    message = str(exc)
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def classify_failure(exc: BaseException) -> FailureKind:
    if isinstance(exc, TranscriptionError):
        return exc.kind
    if is_content_policy_failure(exc):
        return FailureKind.CONTENT_POLICY_BLOCKED
    if is_rate_limit_failure(exc):
        return FailureKind.RATE_LIMITED
    return FailureKind.UNKNOWN

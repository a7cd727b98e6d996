"""Segment processor: extract -> upload -> poll -> transcribe -> time-shift one window."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from src.pipeline_config import PipelineConfig
from src.transcription.errors import (
    MalformedTranscriptOutput,
    SegmentProcessingFailed,
    SegmentReadyTimeout,
    is_content_policy_failure,
    is_rate_limit_failure,
)
from src.transcription.gemini_backend import (
    STATE_FAILED,
    STATE_PROCESSING,
    TranscriptionBackend,
    UploadedMedia,
)
from src.transcription.media import extract_segment, temporary_media_file
from src.transcription.models import SYSTEM_SPEAKER, TranscriptEntry, Window
from src.transcription.timeutils import format_time, parse_time_to_seconds

logger = logging.getLogger(__name__)

TRANSCRIPTION_PROMPT = """\
Generate a transcript for this audio segment. Always use the format mm:ss for the time. \
Group similar text together rather than time-stamping every line. \
Maintain consistent speaker labels. \
Respond with the transcript in the form of this JSON schema:
[{"timestamp": "00:00", "speaker": "Speaker 1", "text": "Today I will be talking about the importance of AI in the modern world."},\
{"timestamp": "01:00", "speaker": "Speaker 1", "text": "Has AI has revolutionized the way we live and work?"}]"""

SAFETY_SKIP_MESSAGE = (
    "This segment was skipped due to content safety filters. "
    "The transcription will continue with the next segment."
)
RATE_LIMIT_MESSAGE = "Rate limit reached. Waiting before retrying."

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)
_entries_adapter: TypeAdapter[list[TranscriptEntry]] = TypeAdapter(list[TranscriptEntry])

Extractor = Callable[[Path, Path, float, float], None]
Sleep = Callable[[float], Awaitable[None]]


def parse_transcript_output(text: str) -> list[TranscriptEntry]:
    """Parse the accumulated capability output as a JSON array of entries.

    A surrounding markdown code fence is tolerated.

    Raises:
        MalformedTranscriptOutput: The text is not a JSON array of
            ``{timestamp, speaker, text}`` objects.
    """
    stripped = text.strip()
    fenced = _CODE_FENCE_RE.match(stripped)
    if fenced:
        stripped = fenced.group(1)
    if not stripped:
        raise MalformedTranscriptOutput("Transcription returned an empty response")
    try:
        return _entries_adapter.validate_json(stripped)
    except ValidationError as exc:
        raise MalformedTranscriptOutput(f"Transcription output is not a transcript array: {exc}") from exc


def to_absolute(entry: TranscriptEntry, window: Window) -> TranscriptEntry:
    """Shift a window-relative entry onto the media timeline, clamped to the window end."""
    try:
        relative = parse_time_to_seconds(entry.timestamp)
    except ValueError as exc:
        raise MalformedTranscriptOutput(str(exc)) from exc
    absolute = min(relative + window.start, window.end)
    return entry.model_copy(update={"timestamp": format_time(absolute)})


def system_entry(window: Window, message: str) -> TranscriptEntry:
    return TranscriptEntry(timestamp=format_time(window.start), speaker=SYSTEM_SPEAKER, text=message)


async def process_segment(
    source_path: Path,
    window: Window,
    mime_type: str,
    backend: TranscriptionBackend,
    config: PipelineConfig,
    *,
    extractor: Extractor = extract_segment,
    sleep: Sleep = asyncio.sleep,
) -> list[TranscriptEntry]:
    """Transcribe one window of ``source_path`` into absolute-time entries.

    Content-safety blocks and rate limits are contained: the result is a single
    System entry at the window start. Every other failure propagates. The
    extracted segment file and the uploaded backend copy are released on every
    exit path.
    """
    label = f"{format_time(window.start)}-{format_time(window.end)}"
    logger.info("Processing window %s", label)

    try:
        with temporary_media_file(Path(source_path).suffix) as segment_path:
            await asyncio.to_thread(extractor, source_path, segment_path, window.start, window.duration)
            logger.debug("Extracted window %s to %s", label, segment_path)

            media = await asyncio.to_thread(backend.upload, segment_path, mime_type)
            logger.debug("Uploaded window %s as %s", label, media.name)
            try:
                await _wait_until_ready(backend, media, config, sleep)
                text = await asyncio.to_thread(_collect_output, backend, media)
            finally:
                await _delete_upload(backend, media)

        entries = [to_absolute(entry, window) for entry in parse_transcript_output(text)]
    except Exception as exc:
        if is_content_policy_failure(exc):
            logger.warning("Window %s blocked by safety filters: %s", label, exc)
            return [system_entry(window, SAFETY_SKIP_MESSAGE)]
        if is_rate_limit_failure(exc):
            logger.warning("Window %s rate limited: %s", label, exc)
            return [system_entry(window, RATE_LIMIT_MESSAGE)]
        logger.error("Window %s failed: %s", label, exc)
        raise

    logger.info("Window %s produced %d entries", label, len(entries))
    return entries


async def _wait_until_ready(
    backend: TranscriptionBackend,
    media: UploadedMedia,
    config: PipelineConfig,
    sleep: Sleep,
) -> None:
    state = await asyncio.to_thread(backend.get_state, media.name)
    attempts = 1
    while state == STATE_PROCESSING:
        if attempts >= config.max_poll_attempts:
            raise SegmentReadyTimeout(
                f"Segment {media.name} still processing after {attempts} status checks"
            )
        logger.debug("Segment %s is processing (check %d)", media.name, attempts)
        await sleep(config.poll_interval_seconds)
        state = await asyncio.to_thread(backend.get_state, media.name)
        attempts += 1

    if state == STATE_FAILED:
        raise SegmentProcessingFailed(f"Chunk processing failed for {media.name}")


def _collect_output(backend: TranscriptionBackend, media: UploadedMedia) -> str:
    return "".join(backend.generate(media, TRANSCRIPTION_PROMPT))


async def _delete_upload(backend: TranscriptionBackend, media: UploadedMedia) -> None:
    try:
        await asyncio.to_thread(backend.delete, media.name)
    except Exception:
        logger.warning("Could not delete uploaded segment %s", media.name, exc_info=True)

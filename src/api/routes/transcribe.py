"""Transcribe endpoint: stream NDJSON progress records for an uploaded media file."""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import AsyncIterator
from contextlib import ExitStack
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from src.config import settings
from src.pipeline_config import PipelineConfig
from src.transcription.gemini_backend import GeminiBackend, TranscriptionBackend
from src.transcription.media import (
    extract_segment,
    get_media_duration,
    media_suffix,
    temporary_media_file,
)
from src.transcription.models import to_ndjson
from src.transcription.orchestrator import PipelineRun, RunState
from src.transcription.timeutils import format_time

logger = logging.getLogger(__name__)

router = APIRouter()


def build_backend() -> TranscriptionBackend:
    """Create the Gemini backend from settings."""
    return GeminiBackend(settings.gemini_api_key, settings.gemini_model)


def get_pipeline_config() -> PipelineConfig:
    return PipelineConfig.from_settings(settings)


def _save_upload(file: UploadFile, destination: Path) -> None:
    file.file.seek(0)
    with destination.open("wb") as fh:
        shutil.copyfileobj(file.file, fh)


async def _stream_records(run: PipelineRun, resources: ExitStack) -> AsyncIterator[str]:
    """Yield NDJSON lines and release the input media when the stream ends.

    The stack is closed on completion, on a stream-level error, and when the
    server cancels the generator after the client disconnects.
    """
    with resources:
        try:
            async for record in run.records():
                yield to_ndjson(record)
        except Exception:
            logger.exception("Transcription stream aborted")
            raise


@router.post("/api/transcribe")
async def transcribe(
    request: Request,
    file: Annotated[UploadFile | None, File()] = None,
    start_time: Annotated[int, Form(alias="startTime")] = 0,
    retry_count: Annotated[int, Form(alias="retryCount")] = 0,
) -> Response:
    """Transcribe an audio/video upload window by window.

    The response is a chunked stream of newline-delimited JSON progress
    records, one per window, in window order. ``startTime`` resumes a previous
    run from that offset (seconds); ``retryCount`` is echoed on every record.

    - 400: no file, or a negative ``startTime``.
    - 413: upload larger than ``max_upload_bytes``.
    - 501: no Gemini API key configured.
    - 500 (plain text): temporary storage or media duration unavailable.
    """
    if file is None:
        return PlainTextResponse("No file provided", status_code=400)
    if start_time < 0:
        return PlainTextResponse("startTime must be >= 0", status_code=400)
    if file.size is not None and file.size > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.max_upload_bytes // (1024 * 1024)} MB.",
        )
    if not settings.gemini_api_key:
        raise HTTPException(
            status_code=501,
            detail="Transcription is not configured: GEMINI_API_KEY is not set.",
        )

    mime_type = file.content_type or "application/octet-stream"

    with ExitStack() as stack:
        try:
            source_path = stack.enter_context(temporary_media_file(media_suffix(file.filename)))
            await asyncio.to_thread(_save_upload, file, source_path)
            duration = await asyncio.to_thread(get_media_duration, source_path)
            backend = build_backend()
        except Exception:
            logger.exception("Error preparing %s for transcription", file.filename)
            return PlainTextResponse("Error processing file", status_code=500)

        logger.info(
            "Transcribing %s (%s) from %s, retry %d",
            file.filename,
            format_time(duration),
            format_time(start_time),
            retry_count,
        )
        run = PipelineRun(
            source_path,
            mime_type,
            backend,
            get_pipeline_config(),
            RunState.fresh(duration, resume_from=start_time),
            retry_count=retry_count,
            is_cancelled=request.is_disconnected,
            extractor=extract_segment,
        )
        # The stream now owns the input media file
        resources = stack.pop_all()

    # Also released here if the body iterator never starts
    return StreamingResponse(
        _stream_records(run, resources),
        media_type="application/json",
        background=BackgroundTask(resources.close),
    )

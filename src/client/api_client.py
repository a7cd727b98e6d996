"""HTTP client wrapper for the transcription FastAPI backend."""

from __future__ import annotations

import mimetypes
from collections.abc import Iterator
from contextlib import ExitStack
from pathlib import Path

import httpx

from src.config import settings
from src.transcription.models import ErrorRecord, SuccessRecord, parse_progress_record

# Windows arrive minutes apart, so reads must never time out
STREAM_TIMEOUT = httpx.Timeout(30.0, read=None)


def check_health(api_url: str | None = None, client: httpx.Client | None = None) -> bool:
    """Return True if the API server responds to /health."""
    url = f"{api_url or settings.api_url}/health"
    try:
        r = client.get(url, timeout=5.0) if client is not None else httpx.get(url, timeout=5.0)
        return r.status_code == 200
    except httpx.ConnectError:
        return False


def stream_transcription(
    file_path: Path,
    *,
    start_time: int = 0,
    retry_count: int = 0,
    api_url: str | None = None,
    client: httpx.Client | None = None,
    mime_type: str | None = None,
) -> Iterator[SuccessRecord | ErrorRecord]:
    """Upload a media file and yield progress records as the server emits them.

    Closing the generator early closes the HTTP stream, which stops the run on
    the server at its next window boundary.

    Raises:
        httpx.HTTPStatusError: The server rejected the upload.
        httpx.TransportError: The connection failed or dropped mid-stream.
    """
    file_path = Path(file_path)
    content_type = mime_type or mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
    url = f"{api_url or settings.api_url}/api/transcribe"

    with ExitStack() as stack:
        if client is None:
            client = stack.enter_context(httpx.Client(timeout=STREAM_TIMEOUT))
        fh = stack.enter_context(file_path.open("rb"))
        response = stack.enter_context(
            client.stream(
                "POST",
                url,
                files={"file": (file_path.name, fh, content_type)},
                data={"startTime": str(start_time), "retryCount": str(retry_count)},
                timeout=STREAM_TIMEOUT,
            )
        )
        if response.is_error:
            response.read()
        response.raise_for_status()

        for line in response.iter_lines():
            if line.strip():
                yield parse_progress_record(line)

"""ffmpeg/ffprobe helpers: media duration, segment extraction, temp files."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from src.transcription.errors import MediaExtractionFailed, SetupFailure

logger = logging.getLogger(__name__)

# ffprobe on a multi-gigabyte container can be slow, extraction slower still
FFPROBE_TIMEOUT_SECONDS = 60
FFMPEG_TIMEOUT_SECONDS = 600


def media_suffix(filename: str | None) -> str:
    """Return the ``.ext`` suffix of an upload filename, or ``""`` if it has none."""
    name = filename or ""
    return f".{name.rsplit('.', 1)[-1].lower()}" if "." in name else ""


def build_ffprobe_duration_cmd(input_path: str | os.PathLike[str]) -> list[str]:
    return [
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(input_path),
    ]


def build_ffmpeg_extract_cmd(
    input_path: str | os.PathLike[str],
    output_path: str | os.PathLike[str],
    start_seconds: float,
    duration_seconds: float,
) -> list[str]:
    """Build the ffmpeg command cutting ``[start, start + duration)`` from the input.

    The output container follows ``output_path``'s extension, which callers
    keep equal to the source's so the upload MIME type stays valid.
    """
    if start_seconds < 0:
        raise ValueError("start_seconds must be >= 0")
    if duration_seconds <= 0:
        raise ValueError("duration_seconds must be > 0")
    return [
        "ffmpeg",
        "-y",
        "-ss",
        f"{start_seconds:g}",
        "-i",
        str(input_path),
        "-t",
        f"{duration_seconds:g}",
        str(output_path),
    ]


def get_media_duration(input_path: str | os.PathLike[str]) -> float:
    """Return the media duration in seconds using ffprobe.

    Raises:
        SetupFailure: ffprobe is missing, fails, or reports no usable duration.
    """
    cmd = build_ffprobe_duration_cmd(input_path)
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=FFPROBE_TIMEOUT_SECONDS, check=False
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise SetupFailure(f"Could not run ffprobe: {exc}") from exc

    if result.returncode != 0:
        message = result.stderr.strip() or "ffprobe failed"
        raise SetupFailure(f"Could not read media duration: {message}")

    try:
        duration = float(result.stdout.strip())
    except ValueError as exc:
        raise SetupFailure(f"ffprobe returned no duration for {input_path}") from exc
    if duration <= 0:
        raise SetupFailure(f"Media has no playable duration: {input_path}")
    return duration


def extract_segment(
    input_path: str | os.PathLike[str],
    output_path: str | os.PathLike[str],
    start_seconds: float,
    duration_seconds: float,
) -> None:
    """Cut one window of the source into ``output_path`` with ffmpeg.

    Raises:
        MediaExtractionFailed: ffmpeg is missing, times out, or exits non-zero.
    """
    cmd = build_ffmpeg_extract_cmd(input_path, output_path, start_seconds, duration_seconds)
    logger.debug("Running %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=FFMPEG_TIMEOUT_SECONDS, check=False
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise MediaExtractionFailed(f"Could not run ffmpeg: {exc}") from exc

    if result.returncode != 0:
        tail = result.stderr.strip().splitlines()[-1:] or ["ffmpeg failed"]
        raise MediaExtractionFailed(f"Segment extraction failed: {tail[0]}")


@contextmanager
def temporary_media_file(suffix: str = "") -> Iterator[Path]:
    """Yield a fresh temp file path that is removed on every exit path.

    Raises:
        SetupFailure: The temporary file cannot be created.
    """
    try:
        fd, name = tempfile.mkstemp(suffix=suffix)
    except OSError as exc:
        raise SetupFailure(f"Failed to create temporary file: {exc}") from exc
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)

"""End-to-end integration tests against the live Gemini API.

# MANUAL RUN REQUIRED: These tests need GEMINI_API_KEY and ffmpeg/ffprobe on PATH.
# Run manually with: pytest -m expensive tests/test_pipeline_integration.py -v
#
# These tests are NOT run in CI (marked @pytest.mark.expensive).
#
# WHAT IS TESTED:
#   1. Generate a short synthetic audio file with ffmpeg
#   2. Probe its duration and cut a window from it
#   3. Stream it through /api/transcribe with the real backend
#   4. Assert one well-formed progress record per planned window
"""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from src.config import settings
from src.transcription.media import extract_segment, get_media_duration
from src.transcription.planner import plan_windows

requires_tools = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)
requires_key = pytest.mark.skipif(not settings.gemini_api_key, reason="GEMINI_API_KEY not set")


@pytest.fixture
def tone_file(tmp_path: Path) -> Path:
    """Six seconds of a 440 Hz tone."""
    path = tmp_path / "tone.mp3"
    subprocess.run(
        ["ffmpeg", "-y", "-f", "lavfi", "-i", "sine=frequency=440:duration=6", str(path)],
        check=True,
        capture_output=True,
    )
    return path


@pytest.mark.expensive
@requires_tools
def test_probe_and_extract(tone_file: Path, tmp_path: Path) -> None:
    duration = get_media_duration(tone_file)
    assert duration == pytest.approx(6, abs=0.5)

    segment = tmp_path / "segment.mp3"
    extract_segment(tone_file, segment, 2, 3)
    assert get_media_duration(segment) == pytest.approx(3, abs=0.5)


@pytest.mark.expensive
@requires_tools
@requires_key
def test_transcribe_stream_live(tone_file: Path) -> None:
    """Golden path: upload -> window -> Gemini -> NDJSON record."""
    from src.api.main import app

    client = TestClient(app)
    with tone_file.open("rb") as fh:
        response = client.post(
            "/api/transcribe",
            files={"file": ("tone.mp3", fh, "audio/mpeg")},
            data={"startTime": "0"},
        )

    assert response.status_code == 200, response.text
    records = [json.loads(line) for line in response.text.splitlines() if line.strip()]
    expected_windows = list(
        plan_windows(get_media_duration(tone_file), settings.window_seconds, settings.overlap_seconds)
    )
    assert len(records) == len(expected_windows)
    for record in records:
        assert record["status"] in ("success", "error")
        assert isinstance(record["entries"], list)

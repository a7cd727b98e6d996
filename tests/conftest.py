"""Shared fixtures for pipeline tests (no ffmpeg or Gemini access required)."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.pipeline_config import PipelineConfig
from tests.fakes import FakeExtractor, RecordingSleep


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig()


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    path = tmp_path / "meeting.mp3"
    path.write_bytes(b"\xff\xfb\x90\x00" + b"\x00" * 64)
    return path

"""Pydantic request/response schemas for the transcription API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.transcription.models import TranscriptEntry


class MergeRequest(BaseModel):
    """Request body for the /api/transcripts/merge endpoint.

    ``segments`` holds each window's entries with window-relative timestamps;
    ``window_starts`` is parallel to it. Send zeros for entries that are
    already absolute.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    segments: list[list[TranscriptEntry]]
    window_starts: list[float]


class MergeResponse(BaseModel):
    """Response body for the /api/transcripts/merge endpoint."""

    entries: list[TranscriptEntry]
    speakers: dict[str, str]

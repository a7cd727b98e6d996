"""Transcript export endpoint: authoritative offline merge of window results."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from src.api.models import MergeRequest, MergeResponse
from src.config import settings
from src.transcription.merger import SpeakerMap, merge_transcripts

router = APIRouter()


@router.post("/api/transcripts/merge", response_model=MergeResponse)
async def merge(request: MergeRequest) -> MergeResponse:
    """Merge per-window transcripts into one time-sorted transcript.

    Speakers are renumbered ``Speaker 1..N`` in first-seen order and entries
    repeated by overlapping windows are dropped.
    """
    if len(request.segments) != len(request.window_starts):
        raise HTTPException(
            status_code=422,
            detail="segments and windowStarts must have the same length",
        )

    speakers = SpeakerMap()
    try:
        entries = merge_transcripts(
            request.segments,
            request.window_starts,
            speakers=speakers,
            tolerance_seconds=settings.dedup_tolerance_seconds,
        )
    except ValueError as exc:
        # Unparseable entry timestamp
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return MergeResponse(entries=entries, speakers=speakers.as_dict())

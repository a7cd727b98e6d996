"""Data models for transcript entries, windows, and the progress stream."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

SYSTEM_SPEAKER = "System"


class TranscriptEntry(BaseModel):
    """One speaker-attributed line of transcript.

    ``timestamp`` is ``mm:ss``. Entries coming out of the segment processor
    carry timestamps that are absolute to the whole media.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: str
    speaker: str
    text: str

    @property
    def is_system(self) -> bool:
        return self.speaker == SYSTEM_SPEAKER


@dataclass(frozen=True)
class Window:
    """A time-bounded span of the source media processed as one backend request."""

    start: float
    duration: float

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError("window start must be >= 0")
        if self.duration <= 0:
            raise ValueError("window duration must be > 0")

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class ChunkSpan:
    """A time range the client has seen a record for (gap detection only)."""

    start: float
    end: float


# ---------------------------------------------------------------------------
# Progress stream records
# ---------------------------------------------------------------------------


class _RecordBase(BaseModel):
    """Fields shared by both progress record variants (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    start_time: float
    end_time: float
    total_duration: float
    processed_timestamp: str
    retry_count: int = 0
    entries: list[TranscriptEntry]


class SuccessRecord(_RecordBase):
    """A window whose transcript entries were produced normally."""

    status: Literal["success"] = "success"


class ErrorRecord(_RecordBase):
    """A window that failed; carries one System entry and a retry delay in ms."""

    status: Literal["error"] = "error"
    retry_after: int

    @field_validator("entries")
    @classmethod
    def _single_system_entry(cls, entries: list[TranscriptEntry]) -> list[TranscriptEntry]:
        if len(entries) != 1 or not entries[0].is_system:
            raise ValueError("error records carry exactly one System entry")
        return entries


ProgressRecord = Annotated[SuccessRecord | ErrorRecord, Field(discriminator="status")]

_progress_record_adapter: TypeAdapter[SuccessRecord | ErrorRecord] = TypeAdapter(ProgressRecord)


def parse_progress_record(line: str | bytes) -> SuccessRecord | ErrorRecord:
    """Parse one NDJSON line of the progress stream."""
    return _progress_record_adapter.validate_json(line)


def to_ndjson(record: SuccessRecord | ErrorRecord) -> str:
    return record.model_dump_json(by_alias=True) + "\n"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()

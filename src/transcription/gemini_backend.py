"""Gemini file upload + streamed generation, behind a small backend protocol."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from src.transcription.errors import ContentPolicyBlocked, RateLimited

logger = logging.getLogger(__name__)

STATE_PROCESSING = "PROCESSING"
STATE_ACTIVE = "ACTIVE"
STATE_FAILED = "FAILED"


@dataclass(frozen=True)
class UploadedMedia:
    """Handle to a segment stored on the backend."""

    name: str
    uri: str
    mime_type: str


class TranscriptionBackend(Protocol):
    """Boundary to the remote transcription service."""

    def upload(self, path: Path, mime_type: str) -> UploadedMedia: ...

    def get_state(self, name: str) -> str: ...

    def generate(self, media: UploadedMedia, prompt: str) -> Iterator[str]: ...

    def delete(self, name: str) -> None: ...


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Map Gemini SDK exceptions onto the pipeline's failure taxonomy."""
    from google.api_core import exceptions as google_exceptions
    from google.generativeai.types import BlockedPromptException, StopCandidateException

    try:
        yield
    except google_exceptions.ResourceExhausted as exc:
        raise RateLimited(f"429 Too Many Requests: {exc}") from exc
    except BlockedPromptException as exc:
        raise ContentPolicyBlocked(f"SAFETY: {exc}") from exc
    except StopCandidateException as exc:
        # Also raised for RECITATION and OTHER, which stay hard failures
        if _finish_reason(exc) == "SAFETY":
            raise ContentPolicyBlocked(f"SAFETY: {exc}") from exc
        raise
    except ValueError as exc:
        # response.text raises ValueError when the candidate was blocked
        if "SAFETY" in str(exc) or "block" in str(exc).lower():
            raise ContentPolicyBlocked(f"SAFETY: {exc}") from exc
        raise


def _finish_reason(exc: Exception) -> str | None:
    """Finish reason name of the candidate carried by a StopCandidateException."""
    candidate = exc.args[0] if exc.args else None
    reason = getattr(candidate, "finish_reason", None)
    return _state_name(reason) if reason is not None else None


class GeminiBackend:
    """Gemini implementation of :class:`TranscriptionBackend`.

    Safety thresholds are set to ``BLOCK_NONE`` for the four harm categories
    and responses are requested as JSON. Blocks that still happen surface as
    :class:`ContentPolicyBlocked`.
    """

    def __init__(self, api_key: str, model_name: str) -> None:
        import google.generativeai as genai
        from google.generativeai.types import HarmBlockThreshold, HarmCategory

        if not api_key:
            raise ValueError("api_key is required")

        genai.configure(api_key=api_key)  # type: ignore[attr-defined]
        self._genai = genai
        self._model = genai.GenerativeModel(  # type: ignore[attr-defined]
            model_name,
            safety_settings={
                HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
                HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
                HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
                HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
            },
            generation_config={"response_mime_type": "application/json"},
        )

    def upload(self, path: Path, mime_type: str) -> UploadedMedia:
        with _translate_errors():
            uploaded = self._genai.upload_file(str(path), mime_type=mime_type)
        return UploadedMedia(name=uploaded.name, uri=uploaded.uri, mime_type=mime_type)

    def get_state(self, name: str) -> str:
        with _translate_errors():
            remote = self._genai.get_file(name)
        return _state_name(remote.state)

    def generate(self, media: UploadedMedia, prompt: str) -> Iterator[str]:
        parts: list[Any] = [
            {"file_data": {"mime_type": media.mime_type, "file_uri": media.uri}},
            prompt,
        ]
        with _translate_errors():
            response = self._model.generate_content(parts, stream=True)
            for chunk in response:
                yield chunk.text

    def delete(self, name: str) -> None:
        with _translate_errors():
            self._genai.delete_file(name)


def _state_name(state: Any) -> str:
    """Normalise an SDK file state (proto enum, int-like enum, or str) to its name."""
    name = getattr(state, "name", None)
    return str(name if name is not None else state).upper()

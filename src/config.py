from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    gemini_api_key: str = ""  # Optional at import time; /api/transcribe answers 501 if absent

    # Backend model
    gemini_model: str = "gemini-2.0-flash-exp"

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_url: str = "http://localhost:8000"
    log_level: str = "INFO"
    max_upload_bytes: int = 1024 * 1024 * 1024

    # Windowing (seconds)
    window_seconds: int = 120
    overlap_seconds: int = 60

    # Backend readiness polling
    poll_interval_seconds: float = 5.0
    max_poll_attempts: int = 60

    # Inter-window delay policy (seconds)
    success_delay_seconds: float = 3.0
    soft_error_delay_seconds: float = 10.0
    rate_limit_delay_seconds: float = 15.0
    error_delay_seconds: float = 5.0

    # Client reassembly
    client_max_retries: int = 5
    dedup_tolerance_seconds: int = 5
    gap_tolerance_seconds: int = 5

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide Settings.

    A .env file that cannot be loaded (unreadable, or carrying keys this
    service does not know) is ignored in favour of the environment.
    """
    try:
        return Settings()
    except Exception:
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from .defaults import (
    ANALYSIS_TIMEOUT_SECONDS,
    APP_VERSION,
    CAPTURE_HEIGHT,
    CAPTURE_WIDTH,
    DEFAULT_ANALYSIS_INTERVAL_MS,
    DEFAULT_BIND,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_PORT,
    GEMINI_BASE_URL,
    GEMINI_MODEL,
    MAX_ANALYSIS_INTERVAL_MS,
    MAX_HISTORY_LIMIT,
    MIN_ANALYSIS_INTERVAL_MS,
    MIN_HISTORY_LIMIT,
)


def clamp_interval_ms(value: int) -> int:
    return min(MAX_ANALYSIS_INTERVAL_MS, max(MIN_ANALYSIS_INTERVAL_MS, int(value)))


def clamp_history_limit(value: int) -> int:
    return min(MAX_HISTORY_LIMIT, max(MIN_HISTORY_LIMIT, int(value)))


class AppSettings(BaseModel):
    version: int = APP_VERSION
    data_dir: str
    bind: str = DEFAULT_BIND
    port: int = DEFAULT_PORT
    ai_detection_enabled: bool = True
    analysis_interval_ms: int = DEFAULT_ANALYSIS_INTERVAL_MS
    analysis_timeout_seconds: float = ANALYSIS_TIMEOUT_SECONDS
    history_limit: int = DEFAULT_HISTORY_LIMIT
    capture_width: int = CAPTURE_WIDTH
    capture_height: int = CAPTURE_HEIGHT
    gemini_model: str = GEMINI_MODEL
    gemini_base_url: str = GEMINI_BASE_URL

    @field_validator("data_dir")
    @classmethod
    def data_dir_not_empty(cls, value: str) -> str:
        if not value.strip():
            msg = "data_dir cannot be empty"
            raise ValueError(msg)
        return value

    @field_validator("analysis_interval_ms")
    @classmethod
    def clamp_analysis_interval(cls, value: int) -> int:
        return clamp_interval_ms(value)

    @field_validator("history_limit")
    @classmethod
    def clamp_history(cls, value: int) -> int:
        return clamp_history_limit(value)

    @field_validator("analysis_timeout_seconds")
    @classmethod
    def positive_timeout(cls, value: float) -> float:
        return max(1.0, value)


class CameraSettings(BaseModel):
    """Persisted shape of a camera slot; runtime state is never stored."""

    id: str
    name: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    created_at: str | None = None
    total_detections: int = 0

"""Configuration models and helpers for the categorization pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional


AI_ENABLED = "ai_enabled"
CATEGORIZATION_ENABLED = "categorization_enabled"
AI_PROVIDER = "ai_provider"
OLLAMA_BASE_URL = "ollama_base_url"
OLLAMA_MODEL = "ollama_model"
LMSTUDIO_BASE_URL = "lmstudio_base_url"
LMSTUDIO_MODEL = "lmstudio_model"

DEFAULT_SETTINGS: dict[str, str] = {
    AI_ENABLED: "true",
    CATEGORIZATION_ENABLED: "true",
    AI_PROVIDER: "ollama",
    OLLAMA_BASE_URL: "http://localhost:11434",
    OLLAMA_MODEL: "llama3.2:1b",
    LMSTUDIO_BASE_URL: "http://localhost:1234/v1",
    LMSTUDIO_MODEL: "",
}

BOOLEAN_SETTINGS = frozenset({AI_ENABLED, CATEGORIZATION_ENABLED})


@dataclass(slots=True)
class PipelineSettings:
    """Process-wide knobs for the categorization pipeline."""

    max_concurrent: int = 2
    delay_between_requests: timedelta = timedelta(milliseconds=500)
    cache_ttl: timedelta = timedelta(minutes=5)
    availability_ttl: timedelta = timedelta(seconds=30)
    request_timeout: timedelta = timedelta(seconds=60)
    probe_timeout: timedelta = timedelta(seconds=5)

    @classmethod
    def from_options(
        cls,
        max_concurrent: int = 2,
        delay_ms: float = 500.0,
        cache_ttl_minutes: float = 5.0,
        request_timeout_seconds: float | None = None,
    ) -> "PipelineSettings":
        timeout = request_timeout_seconds if request_timeout_seconds is not None else 60.0
        return cls(
            max_concurrent=max(1, max_concurrent),
            delay_between_requests=timedelta(milliseconds=max(delay_ms, 0.0)),
            cache_ttl=timedelta(minutes=cache_ttl_minutes),
            request_timeout=timedelta(seconds=timeout),
        )


@dataclass(slots=True)
class AppSettings:
    """User-editable settings read from the ``app_settings`` table."""

    ai_enabled: bool = True
    categorization_enabled: bool = True
    ai_provider: str = "ollama"
    ollama_base_url: str = DEFAULT_SETTINGS[OLLAMA_BASE_URL]
    ollama_model: Optional[str] = DEFAULT_SETTINGS[OLLAMA_MODEL]
    lmstudio_base_url: str = DEFAULT_SETTINGS[LMSTUDIO_BASE_URL]
    lmstudio_model: Optional[str] = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Optional[str]]) -> "AppSettings":
        def text(key: str) -> str:
            value = values.get(key)
            if value is None or not str(value).strip():
                return DEFAULT_SETTINGS[key]
            return str(value).strip()

        return cls(
            ai_enabled=parse_bool(values.get(AI_ENABLED), default=True),
            categorization_enabled=parse_bool(
                values.get(CATEGORIZATION_ENABLED), default=True
            ),
            ai_provider=text(AI_PROVIDER).lower(),
            ollama_base_url=text(OLLAMA_BASE_URL),
            ollama_model=text(OLLAMA_MODEL) or None,
            lmstudio_base_url=text(LMSTUDIO_BASE_URL),
            lmstudio_model=text(LMSTUDIO_MODEL) or None,
        )


def parse_bool(value: Optional[str], *, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return str(value).strip().lower() == "true"


def serialize_setting(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

"""Shared pytest fixtures."""
from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import pytest
import requests

from focuslog import db
from focuslog.config import PipelineSettings
from focuslog.pipeline import WindowEventPipeline
from focuslog.providers import ChatOptions, ProviderRegistry, ProviderType


class FakeProvider:
    """In-memory provider that replays a canned completion."""

    provider_type = ProviderType.OLLAMA

    def __init__(
        self,
        reply: Optional[str] = None,
        *,
        available: bool = True,
        base_url: str = "http://fake-ollama",
    ) -> None:
        self.reply = reply
        self.available = available
        self.base_url = base_url
        self.requests: list[list[dict[str, str]]] = []
        self.probes = 0

    async def is_available(self) -> bool:
        self.probes += 1
        return self.available

    async def list_models(self) -> list[str]:
        return ["fake-model"] if self.available else []

    async def generate_chat_completion(self, messages, options=ChatOptions()):
        self.requests.append(list(messages))
        return self.reply

    async def pull_model(self, model_name: str) -> bool:
        return self.available


class FakeRegistry(ProviderRegistry):
    """Registry that always hands out the same fake provider."""

    def __init__(self, provider: FakeProvider, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.provider = provider

    def get(self, settings, provider_type=None, *, base_url=None):
        return self.provider


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Stands in for ``requests.Session``; routes by URL suffix."""

    def __init__(self, routes: Optional[dict[str, Any]] = None) -> None:
        self.routes = routes or {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.closed = False

    def _respond(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        for suffix, result in self.routes.items():
            if url.endswith(suffix):
                if isinstance(result, Exception):
                    raise result
                return result
        raise requests.ConnectionError(f"no route for {url}")

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("POST", url, **kwargs)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "activity.sqlite3"


@pytest.fixture
def conn(db_path: Path):
    with db.database_connection(db_path) as connection:
        yield connection


@pytest.fixture
def database(db_path: Path):
    database = db.Database(db_path)
    yield database
    database.close()


@pytest.fixture
def fast_settings() -> PipelineSettings:
    return PipelineSettings(delay_between_requests=timedelta(0))


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(available=False)


@pytest.fixture
def pipeline(database, fast_settings, provider) -> WindowEventPipeline:
    return WindowEventPipeline.create(
        database, fast_settings, providers=FakeRegistry(provider)
    )

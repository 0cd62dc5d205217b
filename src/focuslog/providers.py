"""Interchangeable local model backends behind one chat-completion contract."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Optional, Protocol, TypedDict

import requests

from .config import AppSettings

logger = logging.getLogger(__name__)


class ChatMessage(TypedDict):
    role: str
    content: str


@dataclass(frozen=True, slots=True)
class ChatOptions:
    temperature: float = 0.7
    max_tokens: int = 500
    response_format: Optional[str] = None


class ProviderType(str, Enum):
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"

    @property
    def label(self) -> str:
        return "Ollama" if self is ProviderType.OLLAMA else "LM Studio"


class AIProvider(Protocol):
    """Capabilities every backend offers. None of these methods raise."""

    provider_type: ProviderType
    base_url: str

    async def is_available(self) -> bool: ...

    async def list_models(self) -> list[str]: ...

    async def generate_chat_completion(
        self, messages: list[ChatMessage], options: ChatOptions = ChatOptions()
    ) -> Optional[str]: ...

    async def pull_model(self, model_name: str) -> bool: ...


class OllamaProvider:
    """Ollama's native REST API (``/api/tags``, ``/api/chat``, ``/api/pull``)."""

    provider_type = ProviderType.OLLAMA

    def __init__(
        self,
        base_url: str,
        model: Optional[str] = None,
        *,
        timeout: timedelta = timedelta(seconds=60),
        probe_timeout: timedelta = timedelta(seconds=5),
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model or None
        self._timeout = timeout.total_seconds()
        self._probe_timeout = probe_timeout.total_seconds()
        self._session = session or requests.Session()

    async def is_available(self) -> bool:
        return await asyncio.to_thread(self._probe)

    async def list_models(self) -> list[str]:
        return await asyncio.to_thread(self._list_models)

    async def generate_chat_completion(
        self, messages: list[ChatMessage], options: ChatOptions = ChatOptions()
    ) -> Optional[str]:
        return await asyncio.to_thread(self._chat, messages, options)

    async def pull_model(self, model_name: str) -> bool:
        return await asyncio.to_thread(self._pull, model_name)

    def _probe(self) -> bool:
        try:
            response = self._session.get(
                f"{self.base_url}/api/tags", timeout=self._probe_timeout
            )
            response.raise_for_status()
            return True
        except requests.RequestException as exc:
            logger.warning("Ollama not available at %s: %s", self.base_url, exc)
            return False

    def _list_models(self) -> list[str]:
        try:
            response = self._session.get(
                f"{self.base_url}/api/tags", timeout=self._probe_timeout
            )
            response.raise_for_status()
            payload = response.json()
            return [m["name"] for m in payload.get("models", []) if m.get("name")]
        except (requests.RequestException, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("Error listing Ollama models: %s", exc)
            return []

    def _chat(self, messages: list[ChatMessage], options: ChatOptions) -> Optional[str]:
        model = self.model or _first(self._list_models())
        if not model:
            logger.error("No Ollama model configured or installed")
            return None
        body: dict[str, Any] = {
            "model": model,
            "messages": list(messages),
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "num_predict": options.max_tokens,
            },
        }
        if options.response_format:
            body["format"] = options.response_format
        try:
            response = self._session.post(
                f"{self.base_url}/api/chat", json=body, timeout=self._timeout
            )
            response.raise_for_status()
            return response.json()["message"]["content"] or None
        except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
            logger.error("Error generating Ollama completion: %s", exc)
            return None

    def _pull(self, model_name: str) -> bool:
        try:
            response = self._session.post(
                f"{self.base_url}/api/pull",
                json={"model": model_name, "stream": False},
                timeout=None,
            )
            response.raise_for_status()
            return response.json().get("status") == "success"
        except (requests.RequestException, ValueError, AttributeError) as exc:
            logger.error("Error pulling Ollama model %s: %s", model_name, exc)
            return False


class OpenAICompatibleProvider:
    """OpenAI-style ``/models`` and ``/chat/completions`` endpoints (LM Studio)."""

    provider_type = ProviderType.LMSTUDIO

    def __init__(
        self,
        base_url: str,
        model: Optional[str] = None,
        *,
        api_key: str = "lm-studio",
        timeout: timedelta = timedelta(seconds=60),
        probe_timeout: timedelta = timedelta(seconds=5),
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model or None
        self._timeout = timeout.total_seconds()
        self._probe_timeout = probe_timeout.total_seconds()
        self._session = session or requests.Session()
        self._headers = {"Authorization": f"Bearer {api_key}"}

    async def is_available(self) -> bool:
        return await asyncio.to_thread(self._probe)

    async def list_models(self) -> list[str]:
        return await asyncio.to_thread(self._list_models)

    async def generate_chat_completion(
        self, messages: list[ChatMessage], options: ChatOptions = ChatOptions()
    ) -> Optional[str]:
        return await asyncio.to_thread(self._chat, messages, options)

    async def pull_model(self, model_name: str) -> bool:
        logger.warning(
            "LM Studio cannot pull %s via its API; download models manually.", model_name
        )
        return False

    def _probe(self) -> bool:
        try:
            response = self._session.get(
                f"{self.base_url}/models",
                headers=self._headers,
                timeout=self._probe_timeout,
            )
            response.raise_for_status()
            return True
        except requests.RequestException as exc:
            logger.warning("LM Studio not available at %s: %s", self.base_url, exc)
            return False

    def _list_models(self) -> list[str]:
        try:
            response = self._session.get(
                f"{self.base_url}/models",
                headers=self._headers,
                timeout=self._probe_timeout,
            )
            response.raise_for_status()
            return [m["id"] for m in response.json().get("data", []) if m.get("id")]
        except (requests.RequestException, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("Error listing LM Studio models: %s", exc)
            return []

    def _chat(self, messages: list[ChatMessage], options: ChatOptions) -> Optional[str]:
        model = self.model or _first(self._list_models())
        if not model:
            logger.error("No LM Studio model configured or loaded")
            return None
        # LM Studio rejects response_format={"type": "json_object"}; JSON output
        # is requested through the prompt instead.
        body = {
            "model": model,
            "messages": list(messages),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        try:
            response = self._session.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers=self._headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
            choices = response.json().get("choices") or []
            if not choices:
                return None
            return choices[0]["message"]["content"] or None
        except (requests.RequestException, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("Error generating LM Studio completion: %s", exc)
            return None


def _first(items: list[str]) -> Optional[str]:
    return items[0] if items else None


@dataclass(frozen=True, slots=True)
class ConnectionResult:
    success: bool
    message: str
    models: Optional[list[str]] = None


class ProviderRegistry:
    """Builds providers from settings and caches their reachability."""

    def __init__(
        self,
        *,
        availability_ttl: timedelta = timedelta(seconds=30),
        request_timeout: timedelta = timedelta(seconds=60),
        probe_timeout: timedelta = timedelta(seconds=5),
        session_factory: Callable[[], requests.Session] = requests.Session,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.availability_ttl = availability_ttl
        self.request_timeout = request_timeout
        self.probe_timeout = probe_timeout
        self._session_factory = session_factory
        self._clock = clock
        self._availability: dict[tuple[ProviderType, str], tuple[bool, float]] = {}
        self._sessions: dict[tuple[ProviderType, str], requests.Session] = {}

    @staticmethod
    def resolve_type(value: Optional[str]) -> ProviderType:
        try:
            return ProviderType((value or "").strip().lower())
        except ValueError:
            return ProviderType.OLLAMA

    def get(
        self,
        settings: AppSettings,
        provider_type: Optional[ProviderType | str] = None,
        *,
        base_url: Optional[str] = None,
    ) -> AIProvider:
        kind = self.resolve_type(provider_type or settings.ai_provider)
        if kind is ProviderType.LMSTUDIO:
            url = base_url or settings.lmstudio_base_url
        else:
            url = base_url or settings.ollama_base_url
        session = self._session_for(kind, url)
        if kind is ProviderType.LMSTUDIO:
            return OpenAICompatibleProvider(
                url,
                settings.lmstudio_model,
                timeout=self.request_timeout,
                probe_timeout=self.probe_timeout,
                session=session,
            )
        return OllamaProvider(
            url,
            settings.ollama_model,
            timeout=self.request_timeout,
            probe_timeout=self.probe_timeout,
            session=session,
        )

    def _session_for(self, kind: ProviderType, url: str) -> requests.Session:
        key = (kind, url.rstrip("/"))
        session = self._sessions.get(key)
        if session is None:
            session = self._sessions[key] = self._session_factory()
        return session

    def close(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()

    async def is_available(self, provider: AIProvider) -> bool:
        key = (provider.provider_type, provider.base_url)
        now = self._clock()
        cached = self._availability.get(key)
        if cached and now - cached[1] < self.availability_ttl.total_seconds():
            return cached[0]
        try:
            available = await provider.is_available()
        except Exception:
            logger.exception("Availability probe failed for %s", provider.base_url)
            available = False
        self._availability[key] = (available, now)
        return available

    async def get_available(self, settings: AppSettings) -> Optional[AIProvider]:
        """Return the active provider if it answered its most recent probe."""
        provider = self.get(settings)
        if await self.is_available(provider):
            return provider
        return None

    def clear_availability_cache(self) -> None:
        self._availability.clear()

    async def test_connection(
        self,
        settings: AppSettings,
        provider_type: ProviderType | str,
        base_url: Optional[str] = None,
    ) -> ConnectionResult:
        provider = self.get(settings, provider_type, base_url=base_url)
        label = provider.provider_type.label
        if not await provider.is_available():
            return ConnectionResult(
                success=False,
                message=f"Cannot connect to {label}. Make sure it's running.",
            )
        models = await provider.list_models()
        plural = "" if len(models) == 1 else "s"
        return ConnectionResult(
            success=True,
            message=f"Connected successfully! Found {len(models)} model{plural}.",
            models=models,
        )

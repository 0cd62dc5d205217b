from __future__ import annotations

import asyncio
from datetime import timedelta

import requests
from conftest import FakeProvider, FakeResponse, FakeSession

from focuslog.config import AppSettings
from focuslog.providers import (
    ChatOptions,
    OllamaProvider,
    OpenAICompatibleProvider,
    ProviderRegistry,
    ProviderType,
)

MESSAGES = [{"role": "user", "content": "hi"}]


def test_ollama_chat_uses_first_installed_model_when_unset() -> None:
    session = FakeSession(
        {
            "/api/tags": FakeResponse({"models": [{"name": "llama3.2:1b"}, {"name": "qwen"}]}),
            "/api/chat": FakeResponse({"message": {"content": '{"chosenCategoryName": "Work"}'}}),
        }
    )
    provider = OllamaProvider("http://localhost:11434/", session=session)

    reply = asyncio.run(
        provider.generate_chat_completion(MESSAGES, ChatOptions(temperature=0.2, response_format="json"))
    )

    assert reply == '{"chosenCategoryName": "Work"}'
    method, url, kwargs = session.calls[-1]
    assert (method, url) == ("POST", "http://localhost:11434/api/chat")
    assert kwargs["json"]["model"] == "llama3.2:1b"
    assert kwargs["json"]["format"] == "json"
    assert kwargs["json"]["stream"] is False
    assert kwargs["json"]["options"] == {"temperature": 0.2, "num_predict": 500}
    assert kwargs["timeout"] == 60.0


def test_ollama_errors_become_none() -> None:
    down = OllamaProvider("http://localhost:11434", "llama3.2:1b", session=FakeSession())
    bad_json = OllamaProvider(
        "http://localhost:11434",
        "llama3.2:1b",
        session=FakeSession({"/api/chat": FakeResponse(ValueError("not json"))}),
    )
    timeout = OllamaProvider(
        "http://localhost:11434",
        "llama3.2:1b",
        session=FakeSession({"/api/chat": requests.Timeout("slow")}),
    )

    assert asyncio.run(down.is_available()) is False
    assert asyncio.run(down.list_models()) == []
    assert asyncio.run(down.generate_chat_completion(MESSAGES)) is None
    assert asyncio.run(bad_json.generate_chat_completion(MESSAGES)) is None
    assert asyncio.run(timeout.generate_chat_completion(MESSAGES)) is None


def test_ollama_pull_reports_success_status() -> None:
    session = FakeSession({"/api/pull": FakeResponse({"status": "success"})})
    provider = OllamaProvider("http://localhost:11434", session=session)

    assert asyncio.run(provider.pull_model("llama3.2:1b")) is True
    assert session.calls[0][2]["json"] == {"model": "llama3.2:1b", "stream": False}


def test_lmstudio_chat_and_models() -> None:
    session = FakeSession(
        {
            "/models": FakeResponse({"data": [{"id": "mistral-7b"}]}),
            "/chat/completions": FakeResponse({"choices": [{"message": {"content": "ok"}}]}),
        }
    )
    provider = OpenAICompatibleProvider("http://localhost:1234/v1", session=session)

    assert asyncio.run(provider.list_models()) == ["mistral-7b"]
    assert asyncio.run(provider.generate_chat_completion(MESSAGES, ChatOptions(response_format="json"))) == "ok"
    _, url, kwargs = session.calls[-1]
    assert url == "http://localhost:1234/v1/chat/completions"
    assert kwargs["json"]["model"] == "mistral-7b"
    assert "response_format" not in kwargs["json"]
    assert kwargs["headers"]["Authorization"] == "Bearer lm-studio"


def test_lmstudio_empty_choices_and_pull() -> None:
    session = FakeSession({"/chat/completions": FakeResponse({"choices": []})})
    provider = OpenAICompatibleProvider("http://localhost:1234/v1", "m", session=session)

    assert asyncio.run(provider.generate_chat_completion(MESSAGES)) is None
    assert asyncio.run(provider.pull_model("m")) is False


def test_registry_builds_provider_from_settings() -> None:
    registry = ProviderRegistry(session_factory=FakeSession)

    ollama = registry.get(AppSettings())
    lmstudio = registry.get(AppSettings(ai_provider="lmstudio", lmstudio_model="m"))
    unknown = registry.get(AppSettings(ai_provider="something-else"))

    assert isinstance(ollama, OllamaProvider)
    assert ollama.model == "llama3.2:1b"
    assert isinstance(lmstudio, OpenAICompatibleProvider)
    assert lmstudio.base_url == "http://localhost:1234/v1"
    assert isinstance(unknown, OllamaProvider)
    override = registry.get(AppSettings(), ProviderType.LMSTUDIO, base_url="http://box:1234/v1/")
    assert override.base_url == "http://box:1234/v1"


def test_availability_is_cached_until_ttl_expires() -> None:
    now = [0.0]
    registry = ProviderRegistry(availability_ttl=timedelta(seconds=30), clock=lambda: now[0])
    provider = FakeProvider()

    async def probe() -> bool:
        return await registry.is_available(provider)

    assert asyncio.run(probe()) is True
    now[0] = 10.0
    provider.available = False
    assert asyncio.run(probe()) is True
    assert provider.probes == 1

    now[0] = 31.0
    assert asyncio.run(probe()) is False
    assert provider.probes == 2

    registry.clear_availability_cache()
    provider.available = True
    assert asyncio.run(probe()) is True


def test_connection_result_messages() -> None:
    ok = ProviderRegistry(
        session_factory=lambda: FakeSession({"/api/tags": FakeResponse({"models": [{"name": "a"}]})})
    )
    down = ProviderRegistry(session_factory=FakeSession)

    result = asyncio.run(ok.test_connection(AppSettings(), "ollama"))
    assert result.success
    assert result.models == ["a"]
    assert result.message == "Connected successfully! Found 1 model."

    failed = asyncio.run(down.test_connection(AppSettings(), ProviderType.LMSTUDIO))
    assert not failed.success
    assert "LM Studio" in failed.message


def test_registry_reuses_one_session_per_provider_url() -> None:
    built: list[FakeSession] = []

    def factory() -> FakeSession:
        built.append(FakeSession())
        return built[-1]

    registry = ProviderRegistry(session_factory=factory)
    first = registry.get(AppSettings())
    second = registry.get(AppSettings(), base_url="http://localhost:11434/")
    other = registry.get(AppSettings(), base_url="http://box:11434")
    lmstudio = registry.get(AppSettings(ai_provider="lmstudio"))

    assert len(built) == 3
    assert first._session is second._session
    assert other._session is not first._session
    assert lmstudio._session is not first._session

    registry.close()
    assert all(session.closed for session in built)
    registry.get(AppSettings())
    assert len(built) == 4

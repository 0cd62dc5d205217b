from __future__ import annotations

import asyncio

from conftest import FakeProvider, FakeRegistry

from focuslog.ai import AICategorizer
from focuslog.cache import ActivityHashCache
from focuslog.config import AppSettings
from focuslog.models import ActivityDetails, Category

CATEGORIES = [
    Category(id="w", user_id="u", name="Work"),
    Category(id="e", user_id="u", name="Entertainment"),
]
GITHUB = ActivityDetails(owner_name="Google Chrome", url="https://github.com/org/repo")
REPLY = '```json\n{"chosenCategoryName": "Work", "summary": "Code review", "reasoning": "GitHub"}\n```'


def _categorizer(provider: FakeProvider) -> AICategorizer:
    return AICategorizer(FakeRegistry(provider), ActivityHashCache())


def test_second_identical_request_is_served_from_cache() -> None:
    provider = FakeProvider(REPLY)
    ai = _categorizer(provider)

    async def scenario():
        first = await ai.choose_category(AppSettings(), "", CATEGORIES, GITHUB)
        second = await ai.choose_category(AppSettings(), "", CATEGORIES, GITHUB)
        return first, second

    first, second = asyncio.run(scenario())
    assert first is not None and first.chosen_category_name == "Work"
    assert second == first
    assert len(provider.requests) == 1


def test_disabled_ai_never_calls_provider() -> None:
    provider = FakeProvider(REPLY)
    ai = _categorizer(provider)

    result = asyncio.run(
        ai.choose_category(AppSettings(ai_enabled=False), "", CATEGORIES, GITHUB)
    )

    assert result is None
    assert provider.requests == []
    assert provider.probes == 0


def test_no_categories_short_circuits() -> None:
    provider = FakeProvider(REPLY)
    ai = _categorizer(provider)

    assert asyncio.run(ai.choose_category(AppSettings(), "", [], GITHUB)) is None
    assert provider.requests == []


def test_unavailable_provider_returns_none() -> None:
    provider = FakeProvider(REPLY, available=False)
    ai = _categorizer(provider)

    assert asyncio.run(ai.choose_category(AppSettings(), "", CATEGORIES, GITHUB)) is None
    assert provider.requests == []


def test_garbage_response_is_not_cached() -> None:
    provider = FakeProvider("I would say this is probably work.")
    ai = _categorizer(provider)

    assert asyncio.run(ai.choose_category(AppSettings(), "", CATEGORIES, GITHUB)) is None
    assert len(ai.cache) == 0


def test_helper_prompts() -> None:
    settings = AppSettings()

    assert asyncio.run(_categorizer(FakeProvider("Yes.")).is_title_informative(settings, "Inbox")) is True
    assert asyncio.run(_categorizer(FakeProvider("no")).is_title_informative(settings, "New Tab")) is False
    assert asyncio.run(_categorizer(FakeProvider(None)).is_title_informative(settings, "x")) is None
    assert (
        asyncio.run(_categorizer(FakeProvider(' "Reviewing a pull request" ')).generate_activity_title(settings, GITHUB))
        == "Reviewing a pull request"
    )
    assert asyncio.run(_categorizer(FakeProvider(" 💼 ")).suggest_emoji(settings, "Work")) == "💼"


def test_category_suggestions_are_capped_to_count() -> None:
    reply = '{"categories": [' + ",".join(
        f'{{"name": "C{i}", "isProductive": true}}' for i in range(8)
    ) + "]}"
    ai = _categorizer(FakeProvider(reply))

    suggestions = asyncio.run(ai.generate_category_suggestions(AppSettings(), "Write a book", 3))

    assert [s.name for s in suggestions] == ["C0", "C1", "C2"]


def test_title_informative_accepts_verbose_yes() -> None:
    settings = AppSettings()

    verbose_yes = _categorizer(FakeProvider("Yes, it is informative."))
    verbose_no = _categorizer(FakeProvider("No, it is a generic tab."))

    assert asyncio.run(verbose_yes.is_title_informative(settings, "Inbox (3)")) is True
    assert asyncio.run(verbose_no.is_title_informative(settings, "New Tab")) is False

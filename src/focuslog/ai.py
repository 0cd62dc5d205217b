"""LLM-backed categorization and helper prompts.

Every public coroutine here checks that AI is enabled and that the active
provider is reachable before doing any work, and returns ``None`` instead of
raising when anything goes wrong. Callers fall back to the rule engine.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .cache import ActivityHashCache
from .config import AppSettings
from .models import ActivityDetails, Category, CategoryChoice, CategorySuggestion
from .prompts import (
    build_activity_title_prompt,
    build_block_summary_prompt,
    build_category_choice_prompt,
    build_category_suggestions_prompt,
    build_emoji_prompt,
    build_title_informative_prompt,
    parse_category_choice,
    parse_category_suggestions,
)
from .providers import AIProvider, ChatMessage, ChatOptions, ProviderRegistry

logger = logging.getLogger(__name__)

CATEGORY_CHOICE_OPTIONS = ChatOptions(temperature=0.2, response_format="json")
SUMMARY_OPTIONS = ChatOptions(temperature=0.3, max_tokens=50)
YES_NO_OPTIONS = ChatOptions(temperature=0.0, max_tokens=3)
EMOJI_OPTIONS = ChatOptions(temperature=0.0, max_tokens=10)
SUGGESTION_OPTIONS = ChatOptions(temperature=0.0, max_tokens=1500, response_format="json")


class AICategorizer:
    def __init__(self, providers: ProviderRegistry, cache: ActivityHashCache) -> None:
        self.providers = providers
        self.cache = cache

    async def _provider(self, settings: AppSettings) -> Optional[AIProvider]:
        if not settings.ai_enabled:
            return None
        provider = await self.providers.get_available(settings)
        if provider is None:
            logger.debug("AI provider %s unavailable", settings.ai_provider)
        return provider

    async def _complete(
        self, settings: AppSettings, messages: list[ChatMessage], options: ChatOptions
    ) -> Optional[str]:
        provider = await self._provider(settings)
        if provider is None:
            return None
        try:
            return await provider.generate_chat_completion(messages, options)
        except Exception:
            logger.exception("AI completion failed")
            return None

    async def choose_category(
        self,
        settings: AppSettings,
        goals: str,
        categories: Sequence[Category],
        details: ActivityDetails,
    ) -> Optional[CategoryChoice]:
        if not settings.ai_enabled or not categories:
            return None

        cached = self.cache.get(details)
        if cached is not None:
            logger.debug(
                "Cached: %s -> %s",
                details.owner_name or details.url,
                cached.chosen_category_name,
            )
            return cached

        messages = build_category_choice_prompt(goals, categories, details)
        logger.debug(
            "AI categorization request for %s (title=%r, url=%r)",
            details.owner_name,
            details.title,
            details.url,
        )
        response = await self._complete(settings, messages, CATEGORY_CHOICE_OPTIONS)
        if not response:
            return None

        choice = parse_category_choice(response)
        if choice is None:
            logger.warning("Unparseable AI categorization response: %.200r", response)
            return None

        logger.debug(
            "AI chose %s (%s)", choice.chosen_category_name, choice.reasoning
        )
        self.cache.put(details, choice)
        return choice

    async def summarize_block(
        self, settings: AppSettings, details: ActivityDetails
    ) -> Optional[str]:
        response = await self._complete(
            settings, build_block_summary_prompt(details), SUMMARY_OPTIONS
        )
        return response.strip() if response and response.strip() else None

    async def is_title_informative(
        self, settings: AppSettings, title: str
    ) -> Optional[bool]:
        response = await self._complete(
            settings, build_title_informative_prompt(title), YES_NO_OPTIONS
        )
        if not response:
            return None
        return response.strip().lower().startswith("yes")

    async def generate_activity_title(
        self, settings: AppSettings, details: ActivityDetails
    ) -> Optional[str]:
        response = await self._complete(
            settings, build_activity_title_prompt(details), SUMMARY_OPTIONS
        )
        if not response:
            return None
        return response.strip().strip('"').strip() or None

    async def suggest_emoji(
        self, settings: AppSettings, name: str, description: Optional[str] = None
    ) -> Optional[str]:
        response = await self._complete(
            settings, build_emoji_prompt(name, description), EMOJI_OPTIONS
        )
        return response.strip() if response and response.strip() else None

    async def generate_category_suggestions(
        self, settings: AppSettings, goals: str, count: int = 5
    ) -> Optional[list[CategorySuggestion]]:
        response = await self._complete(
            settings,
            build_category_suggestions_prompt(goals, count),
            SUGGESTION_OPTIONS,
        )
        suggestions = parse_category_suggestions(response)
        if not suggestions:
            return None
        return suggestions[:count]

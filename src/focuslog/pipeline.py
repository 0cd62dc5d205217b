"""Window event pipeline: persist observations, categorize them in the background."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Optional, Sequence

from . import db
from .ai import AICategorizer
from .cache import ActivityHashCache
from .config import PipelineSettings
from .models import (
    ActivityDetails,
    ActivityEvent,
    Category,
    CategoryChoice,
    ItemType,
    WindowObservation,
)
from .normalization import normalize_window_title
from .providers import ProviderRegistry
from .request_queue import RequestQueue
from .rules import RuleBasedCategorizer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ActiveEvent:
    event_id: str
    started_at: datetime


def resolve_category(categories: Sequence[Category], name: str) -> Optional[Category]:
    """Case-insensitive exact name match; no fuzzy guessing."""
    target = name.strip().lower()
    return next((c for c in categories if c.name.lower() == target), None)


class WindowEventPipeline:
    """Owns the request queue and decision cache for one process.

    ``process_event`` returns as soon as the event row exists. Its category
    fields are still empty at that point; they are filled in later by a queued
    job and must be re-read through :meth:`get_event`.
    """

    def __init__(
        self,
        database: db.Database,
        *,
        ai: AICategorizer,
        queue: RequestQueue,
        cache: ActivityHashCache,
        rules: Optional[RuleBasedCategorizer] = None,
    ) -> None:
        self.database = database
        self.ai = ai
        self.queue = queue
        self.cache = cache
        self.rules = rules or RuleBasedCategorizer()
        self._active: dict[str, ActiveEvent] = {}

    @classmethod
    def create(
        cls,
        database: db.Database,
        settings: Optional[PipelineSettings] = None,
        *,
        providers: Optional[ProviderRegistry] = None,
    ) -> "WindowEventPipeline":
        settings = settings or PipelineSettings()
        cache = ActivityHashCache(settings.cache_ttl)
        providers = providers or ProviderRegistry(
            availability_ttl=settings.availability_ttl,
            request_timeout=settings.request_timeout,
            probe_timeout=settings.probe_timeout,
        )
        return cls(
            database,
            ai=AICategorizer(providers, cache),
            queue=RequestQueue(settings.max_concurrent, settings.delay_between_requests),
            cache=cache,
        )

    @property
    def providers(self) -> ProviderRegistry:
        return self.ai.providers

    async def start(self) -> None:
        """Make sure the local user and the template categories exist."""
        user = await self.database.run(db.get_or_create_local_user)
        categories = await self.database.run(db.ensure_default_categories, user.id)
        logger.info("Pipeline ready with %d categories", len(categories))

    async def drain(self) -> None:
        await self.queue.join()

    # Observation lifecycle --------------------------------------------------

    async def process_event(self, observation: WindowObservation) -> ActivityEvent:
        user = await self.database.run(db.get_or_create_local_user)
        settings = await self.database.run(db.load_app_settings)
        title = normalize_window_title(observation.owner_name, observation.title)

        event = await self.database.run(
            db.create_event,
            user.id,
            timestamp=observation.timestamp,
            window_id=observation.window_id,
            owner_name=observation.owner_name,
            type=observation.type,
            browser=observation.browser,
            title=title,
            url=observation.url,
            content=observation.content,
            duration_ms=observation.duration_ms,
        )
        self._active[observation.window_id] = ActiveEvent(event.id, event.timestamp)
        logger.debug(
            "Recorded event %s for %s (content length: %d)",
            event.id,
            event.owner_name,
            len(event.content or ""),
        )

        if settings.categorization_enabled:
            self.queue.add(event.id, partial(self._categorize, event.id))
        return event

    async def update_duration(self, window_id: str, duration_ms: int) -> bool:
        active = self._active.get(window_id)
        if active is None:
            return False
        try:
            await self.database.run(db.update_event_duration, active.event_id, duration_ms)
        except Exception:
            logger.exception("Error updating duration for window %s", window_id)
            return False
        return True

    async def end_window_event(
        self, window_id: str, duration_ms: Optional[int] = None
    ) -> bool:
        """Stop tracking ``window_id``; a pending categorization still completes."""
        if duration_ms is not None:
            await self.update_duration(window_id, duration_ms)
        return self._active.pop(window_id, None) is not None

    def is_active(self, window_id: str) -> bool:
        return window_id in self._active

    # Categorization ---------------------------------------------------------

    async def request_categorization(self, event_id: str) -> bool:
        """Queue a fresh automatic categorization of an existing event."""
        event = await self.database.run(db.get_event, event_id)
        if event is None:
            raise ValueError(f"No event found for id={event_id}")
        return self.queue.add(event.id, partial(self._categorize, event.id))

    async def choose(
        self, user_goals: str, categories: Sequence[Category], details: ActivityDetails
    ) -> Optional[CategoryChoice]:
        settings = await self.database.run(db.load_app_settings)
        choice: Optional[CategoryChoice] = None
        if settings.ai_enabled:
            choice = await self.ai.choose_category(settings, user_goals, categories, details)
        if choice is None:
            choice = self.rules.categorize(categories, details)
        return choice

    async def _categorize(self, event_id: str) -> None:
        event = await self.database.run(db.get_event, event_id)
        if event is None:
            logger.warning("Event %s disappeared before categorization", event_id)
            return

        user = await self.database.run(db.get_or_create_local_user)
        categories = await self.database.run(db.fetch_categories, user.id)
        if not categories:
            logger.warning("No categories available for categorization")
            return

        choice = await self.choose(user.goals_text, categories, event.to_details())
        if choice is None:
            logger.warning("Failed to categorize event %s", event_id)
            return

        # Categories may have changed while the model was thinking.
        live = await self.database.run(db.fetch_categories, user.id)
        category = resolve_category(live, choice.chosen_category_name)
        if category is None:
            logger.warning(
                "Category not found for event %s: %s", event_id, choice.chosen_category_name
            )
            return

        await self.database.run(
            db.update_event,
            event_id,
            category_id=category.id,
            category_reasoning=choice.reasoning,
            llm_summary=choice.summary,
            last_categorization_at=datetime.now(),
        )
        logger.info("Categorized event %s as %s", event_id, category.name)

    # Recategorization -------------------------------------------------------

    async def get_event(self, event_id: str) -> Optional[ActivityEvent]:
        return await self.database.run(db.get_event, event_id)

    async def recategorize_event(self, event_id: str, category_id: str) -> ActivityEvent:
        return await self.database.run(db.recategorize_event, event_id, category_id)

    async def recategorize_events_by_identifier(
        self,
        identifier: str,
        item_type: ItemType | str,
        start: datetime,
        end: datetime,
        category_id: str,
    ) -> int:
        user = await self.database.run(db.get_or_create_local_user)
        updated = await self.database.run(
            db.recategorize_events_by_identifier,
            user.id,
            identifier,
            item_type,
            start,
            end,
            category_id,
        )
        cleared = self.cache.invalidate(identifier, item_type)
        logger.info(
            "Recategorized %d events for %r to %s (cleared %d cached decisions)",
            updated,
            identifier,
            category_id,
            cleared,
        )
        return updated

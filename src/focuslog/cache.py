"""Short-lived cache of categorization decisions keyed by activity identity."""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from .models import ActivityDetails, CategoryChoice, ItemType

logger = logging.getLogger(__name__)


def activity_hash(details: ActivityDetails) -> str:
    """Stable key over (owner name, url, title); content is deliberately excluded."""
    key = f"{details.owner_name or ''}_{details.url or ''}_{details.title or ''}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class CacheEntry:
    choice: CategoryChoice
    cached_at: float
    owner_name: Optional[str]
    url: Optional[str]


class ActivityHashCache:
    """Reuses a previous decision for the same app/url/title within ``ttl``."""

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=5),
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, details: ActivityDetails) -> Optional[CategoryChoice]:
        key = activity_hash(details)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.cached_at > self.ttl.total_seconds():
            del self._entries[key]
            return None
        return entry.choice

    def put(self, details: ActivityDetails, choice: CategoryChoice) -> None:
        now = self._clock()
        if now - self._last_sweep >= self.ttl.total_seconds():
            self._sweep(now)
        self._entries[activity_hash(details)] = CacheEntry(
            choice=choice,
            cached_at=now,
            owner_name=details.owner_name,
            url=details.url,
        )

    def invalidate(self, identifier: str, item_type: ItemType | str) -> int:
        """Drop every entry derived from the given app name or url."""
        if ItemType(item_type) is ItemType.APP:
            stale = [k for k, e in self._entries.items() if e.owner_name == identifier]
        else:
            stale = [k for k, e in self._entries.items() if e.url == identifier]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Invalidated %d cached decisions for %r", len(stale), identifier)
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def _sweep(self, now: float) -> None:
        ttl = self.ttl.total_seconds()
        expired = [k for k, e in self._entries.items() if now - e.cached_at > ttl]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        if expired:
            logger.debug("Swept %d expired cached decisions", len(expired))

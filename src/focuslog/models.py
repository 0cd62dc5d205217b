"""Domain models for recorded activity and categorization."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class ActivityType(str, Enum):
    WINDOW = "window"
    BROWSER = "browser"
    MANUAL = "manual"
    CALENDAR = "calendar"


class ItemType(str, Enum):
    """Which event column a bulk recategorization identifier refers to."""

    APP = "app"
    WEBSITE = "website"


@dataclass(slots=True)
class WindowObservation:
    """A single foreground-window change reported by the observer."""

    window_id: str
    timestamp: datetime
    owner_name: Optional[str] = None
    type: Optional[str] = None
    browser: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    content: Optional[str] = None
    duration_ms: int = 0


@dataclass(slots=True)
class ActivityEvent:
    """Represents one observed interval of foreground-application usage."""

    id: str
    user_id: str
    timestamp: datetime
    window_id: Optional[str] = None
    owner_name: Optional[str] = None
    type: Optional[str] = None
    browser: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    content: Optional[str] = None
    duration_ms: int = 0
    category_id: Optional[str] = None
    category_reasoning: Optional[str] = None
    llm_summary: Optional[str] = None
    last_categorization_at: Optional[datetime] = None
    old_category_id: Optional[str] = None
    old_category_reasoning: Optional[str] = None
    old_llm_summary: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return self.duration_ms / 1000.0

    def to_details(self) -> "ActivityDetails":
        return ActivityDetails(
            owner_name=self.owner_name,
            title=self.title,
            url=self.url,
            content=self.content,
            type=self.type,
            browser=self.browser,
        )


@dataclass(slots=True)
class Category:
    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    emoji: Optional[str] = None
    is_productive: bool = False
    is_default: bool = False
    is_archived: bool = False


@dataclass(slots=True)
class User:
    id: str
    name: str
    goals: list[str] = field(default_factory=list)

    @property
    def goals_text(self) -> str:
        return "\n".join(goal for goal in self.goals if goal)


@dataclass(frozen=True, slots=True)
class ActivityDetails:
    """Categorization input derived from an event or an observation."""

    owner_name: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None
    browser: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CategoryChoice:
    """Categorization output; the category is referenced by name, not id."""

    chosen_category_name: str
    summary: str = ""
    reasoning: str = ""


@dataclass(frozen=True, slots=True)
class CategorySuggestion:
    name: str
    description: str = ""
    color: str = "#6b7280"
    emoji: str = ""
    is_productive: bool = True

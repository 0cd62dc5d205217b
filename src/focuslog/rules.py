"""Deterministic keyword/app/domain categorizer used when AI is unavailable."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .models import ActivityDetails, Category, CategoryChoice
from .normalization import extract_domain

logger = logging.getLogger(__name__)

UNCATEGORIZED = "uncategorized"
MIN_SCORE = 2

APP_WEIGHT = 3
DOMAIN_WEIGHT = 3
KEYWORD_WEIGHT = 1


@dataclass(frozen=True, slots=True)
class Archetype:
    name: str
    keywords: tuple[str, ...]
    apps: tuple[str, ...]
    domains: tuple[str, ...]
    likely_names: tuple[str, ...]


ARCHETYPES: tuple[Archetype, ...] = (
    Archetype(
        name="work",
        keywords=("work", "office", "job", "business", "project", "meeting", "documentation", "docs"),
        apps=("vscode", "intellij", "xcode", "visual studio", "sublime", "atom", "slack", "teams", "zoom", "webex"),
        domains=("github.com", "gitlab.com", "bitbucket.org", "stackoverflow.com", "docs.google.com"),
        likely_names=("Work", "Productive", "Business"),
    ),
    Archetype(
        name="communication",
        keywords=("email", "message", "chat", "call", "meeting"),
        apps=("mail", "outlook", "thunderbird", "messages", "telegram", "discord", "slack", "teams", "zoom"),
        domains=("gmail.com", "outlook.com", "mail.google.com", "slack.com", "discord.com"),
        likely_names=("Communication", "Email", "Chat", "Work"),
    ),
    Archetype(
        name="entertainment",
        keywords=("game", "play", "watch", "movie", "video", "entertainment", "music", "stream"),
        apps=("spotify", "apple music", "netflix", "steam", "epic games", "vlc", "music"),
        domains=("youtube.com", "netflix.com", "spotify.com", "twitch.tv", "reddit.com"),
        likely_names=("Entertainment", "Leisure", "Distraction"),
    ),
    Archetype(
        name="social",
        keywords=("social", "friend", "post", "tweet", "story"),
        apps=("twitter", "facebook", "instagram"),
        domains=("twitter.com", "facebook.com", "instagram.com", "tiktok.com", "linkedin.com"),
        likely_names=("Social Media", "Entertainment", "Distraction"),
    ),
    Archetype(
        name="shopping",
        keywords=("shop", "buy", "purchase", "cart", "order"),
        apps=(),
        domains=("amazon.com", "ebay.com", "etsy.com", "shopify.com"),
        likely_names=("Personal", "Shopping", "Other"),
    ),
)

UNINFORMATIVE_TITLES = ("new tab", "untitled", "blank", "loading", "welcome")


@dataclass(frozen=True, slots=True)
class ArchetypeMatch:
    archetype: Optional[Archetype]
    score: int
    signals: tuple[str, ...]

    @property
    def name(self) -> str:
        return self.archetype.name if self.archetype else UNCATEGORIZED


def _contains_any(text: str, needles: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(needle in lowered for needle in needles)


def score_archetype(archetype: Archetype, details: ActivityDetails) -> ArchetypeMatch:
    score = 0
    signals: list[str] = []

    if details.owner_name and _contains_any(details.owner_name, archetype.apps):
        score += APP_WEIGHT
        signals.append("app name")

    domain = extract_domain(details.url)
    if domain and any(d in domain for d in archetype.domains):
        score += DOMAIN_WEIGHT
        signals.append("URL")

    text = " ".join(part for part in (details.title, details.content) if part)
    if text and _contains_any(text, archetype.keywords):
        score += KEYWORD_WEIGHT
        signals.append("content")

    return ArchetypeMatch(archetype=archetype, score=score, signals=tuple(signals))


def determine_archetype(details: ActivityDetails) -> ArchetypeMatch:
    """Highest-scoring archetype; ties go to the one listed first."""
    best = ArchetypeMatch(archetype=None, score=0, signals=())
    for archetype in ARCHETYPES:
        match = score_archetype(archetype, details)
        if match.score > best.score:
            best = match
    if best.score < MIN_SCORE:
        return ArchetypeMatch(archetype=None, score=best.score, signals=())
    return best


def find_matching_category(
    archetype_name: str, categories: Sequence[Category]
) -> Optional[Category]:
    if not categories:
        return None
    target = archetype_name.lower()

    for category in categories:
        if category.name.lower() == target:
            return category

    for category in categories:
        if target in category.name.lower() or target in (category.description or "").lower():
            return category

    likely = next(
        (a.likely_names for a in ARCHETYPES if a.name == target), ("Uncategorized",)
    )
    for name in likely:
        for category in categories:
            if category.name.lower() == name.lower():
                return category

    return categories[0]


def generate_simple_summary(details: ActivityDetails) -> str:
    if details.title and details.title != "New Tab":
        return details.title[:50]
    domain = extract_domain(details.url)
    if domain:
        return f"Browsing {domain}"
    if details.owner_name:
        return f"Using {details.owner_name}"
    return "Unknown activity"


def generate_simple_activity_title(details: ActivityDetails) -> str:
    return generate_simple_summary(details)


def is_simple_title_informative(title: Optional[str]) -> bool:
    if not title or len(title) < 3:
        return False
    lowered = title.lower()
    return not any(marker in lowered for marker in UNINFORMATIVE_TITLES)


def _reasoning(match: ArchetypeMatch) -> str:
    if match.archetype is None:
        return "No rule matched; assigned the closest available category"
    return f"Matched {match.name} rules based on {' and '.join(match.signals)} patterns"


class RuleBasedCategorizer:
    """Scores built-in archetypes and maps the winner onto the user's categories."""

    def categorize(
        self, categories: Sequence[Category], details: ActivityDetails
    ) -> Optional[CategoryChoice]:
        if not categories:
            return None
        match = determine_archetype(details)
        category = find_matching_category(match.name, categories)
        if category is None:
            return None
        logger.debug(
            "Rules: %s -> %s (score=%d)", details.owner_name or details.url, category.name, match.score
        )
        return CategoryChoice(
            chosen_category_name=category.name,
            summary=generate_simple_summary(details),
            reasoning=_reasoning(match),
        )

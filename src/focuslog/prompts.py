"""Prompt builders and response parsers for the categorization model."""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Optional

from .models import ActivityDetails, Category, CategoryChoice, CategorySuggestion
from .normalization import truncate
from .providers import ChatMessage

MAX_URL_LENGTH = 150
MAX_CONTENT_LENGTH = 7000
MAX_SUMMARY_CONTENT_LENGTH = 1000

CATEGORIZATION_RULES = """
1. Professional tools (IDE, code editor, Office apps, Slack, Teams) -> Work

2. For browsers (Arc, Chrome, Safari, Firefox, Edge):
   - Check the URL domain to determine category
   - Work domains: github.com, gitlab.com, stackoverflow.com, atlassian.net, jira, linear.app, docs.
   - Entertainment domains: facebook.com, instagram.com, reddit.com, twitter.com, tiktok.com, youtube.com, amazon.com, ebay.com, kickstarter.com, netflix.com
   - If URL matches work domain -> Work
   - If URL matches entertainment domain -> Entertainment

3. Examples:
   - Arc + github.com/repo -> Work
   - Arc + facebook.com -> Entertainment
   - VS Code -> Work
   - Chrome + stackoverflow.com -> Work
   - Chrome + kickstarter.com -> Entertainment
""".strip()

RESPONSE_SHAPE = """
Respond ONLY with JSON, no markdown, no explanations:
{
  "chosenCategoryName": "category name",
  "summary": "brief activity summary (max 10 words)",
  "reasoning": "why this category (max 20 words)"
}
""".strip()


def format_activity(details: ActivityDetails) -> str:
    """One ``Label: value`` line per known field, long fields truncated."""
    lines = [
        details.owner_name and f"Application: {details.owner_name}",
        details.title and f"Window Title: {details.title}",
        details.url and f"URL: {truncate(details.url, MAX_URL_LENGTH)}",
        details.content
        and f"Page Content: {truncate(details.content, MAX_CONTENT_LENGTH)}",
        details.type and f"Type: {details.type}",
        details.browser and f"Browser: {details.browser}",
    ]
    return "\n".join(line for line in lines if line)


def format_categories(categories: Iterable[Category]) -> str:
    return "\n".join(
        f'- "{c.name}"' + (f": {c.description}" if c.description else "")
        for c in categories
    )


def build_category_choice_prompt(
    goals: str, categories: Iterable[Category], details: ActivityDetails
) -> list[ChatMessage]:
    content = (
        "You categorize user activities into categories. "
        "Here is the current activity:\n\n"
        f"ACTIVITY:\n{format_activity(details)}\n\n"
        f"USER CATEGORIES:\n{format_categories(categories)}\n\n"
        f"USER GOALS:\n{goals or 'Not set'}\n\n"
        f"CATEGORIZATION RULES:\n\n{CATEGORIZATION_RULES}\n\n"
        f"{RESPONSE_SHAPE}"
    )
    return [{"role": "user", "content": content}]


def _brief_activity(details: ActivityDetails, *, with_type: bool = True) -> str:
    content = truncate(details.content, MAX_SUMMARY_CONTENT_LENGTH) or ""
    lines = [
        f"APP: {details.owner_name or ''}",
        f"TITLE: {details.title or ''}",
        f"URL: {truncate(details.url, MAX_URL_LENGTH) or ''}",
        f"CONTENT: {content}",
    ]
    if with_type:
        lines.append(f"TYPE: {details.type or ''}")
        lines.append(f"BROWSER: {details.browser or ''}")
    return "\n".join(lines)


def build_block_summary_prompt(details: ActivityDetails) -> list[ChatMessage]:
    return [
        {
            "role": "system",
            "content": (
                "You are an AI assistant that summarizes user activity blocks for "
                "productivity tracking. Provide a concise, one-line summary of what "
                "the user was likely doing in this time block, based on the app, "
                "window title, content, and any available context."
            ),
        },
        {"role": "user", "content": _brief_activity(details)},
    ]


def build_title_informative_prompt(title: str) -> list[ChatMessage]:
    return [
        {
            "role": "system",
            "content": (
                "You determine if a window title is informative enough to understand "
                'what the user is doing. Respond with only "yes" or "no".'
            ),
        },
        {"role": "user", "content": f'Is this window title informative: "{title}"?'},
    ]


def build_activity_title_prompt(details: ActivityDetails) -> list[ChatMessage]:
    return [
        {
            "role": "system",
            "content": (
                "Generate a concise, descriptive title (5-8 words) for this activity "
                "based on the available information. Respond with the title only."
            ),
        },
        {"role": "user", "content": _brief_activity(details, with_type=False)},
    ]


def build_emoji_prompt(name: str, description: Optional[str] = None) -> list[ChatMessage]:
    user = f'Category: "{name}"'
    if description:
        user += f"\nDescription: {description}"
    return [
        {
            "role": "system",
            "content": (
                "Suggest a single emoji that represents this category. "
                "Respond with only the emoji character, nothing else."
            ),
        },
        {"role": "user", "content": user},
    ]


def build_category_suggestions_prompt(goals: str, count: int = 5) -> list[ChatMessage]:
    return [
        {
            "role": "system",
            "content": (
                "You are an AI assistant that generates personalized productivity "
                "categories based on a user's projects and goals.\n"
                f"Generate {count} relevant categories that would help track time "
                "for these goals.\n\n"
                'Respond in JSON format as {"categories": [...]} where each item is:\n'
                "{\n"
                '  "name": "Category Name",\n'
                '  "description": "Brief description",\n'
                '  "color": "#hex color code",\n'
                '  "emoji": "single emoji",\n'
                '  "isProductive": true or false\n'
                "}"
            ),
        },
        {
            "role": "user",
            "content": (
                "USER'S PROJECTS AND GOALS:\n"
                f"{goals or 'General productivity tracking'}\n\n"
                f"Generate {count} relevant categories to help track time for these goals."
            ),
        },
    ]


# Response parsing -----------------------------------------------------------

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned).strip()
    return cleaned


def first_balanced(text: str, opener: str = "{", closer: str = "}") -> Optional[str]:
    """Return the first ``opener...closer`` span whose brackets balance.

    Brackets inside JSON string literals are ignored.
    """
    start = text.find(opener)
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def extract_json_object(text: Optional[str]) -> Optional[dict[str, Any]]:
    """Strip fences, take the first balanced object, parse it; ``None`` on failure."""
    if not text or not text.strip():
        return None
    candidate = first_balanced(strip_code_fences(text))
    if candidate is None:
        return None
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_value(text: Optional[str]) -> Any:
    """Like :func:`extract_json_object` but also accepts a top-level array."""
    if not text or not text.strip():
        return None
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except ValueError:
        pass
    positions = [(cleaned.find(o), o, c) for o, c in (("{", "}"), ("[", "]"))]
    positions = [p for p in positions if p[0] >= 0]
    if not positions:
        return None
    _, opener, closer = min(positions)
    candidate = first_balanced(cleaned, opener, closer)
    if candidate is None:
        return None
    try:
        return json.loads(candidate)
    except ValueError:
        return None


def parse_category_choice(text: Optional[str]) -> Optional[CategoryChoice]:
    obj = extract_json_object(text)
    if obj is None:
        return None
    name = obj.get("chosenCategoryName")
    if not isinstance(name, str) or not name.strip():
        return None
    return CategoryChoice(
        chosen_category_name=name.strip(),
        summary=str(obj.get("summary") or "").strip(),
        reasoning=str(obj.get("reasoning") or "").strip(),
    )


def parse_category_suggestions(text: Optional[str]) -> Optional[list[CategorySuggestion]]:
    value = extract_json_value(text)
    if isinstance(value, dict):
        value = next((v for v in value.values() if isinstance(v, list)), None)
    if not isinstance(value, list):
        return None
    suggestions = []
    for item in value:
        if not isinstance(item, dict) or not str(item.get("name") or "").strip():
            continue
        suggestions.append(
            CategorySuggestion(
                name=str(item["name"]).strip(),
                description=str(item.get("description") or ""),
                color=str(item.get("color") or "#6b7280"),
                emoji=str(item.get("emoji") or ""),
                is_productive=bool(item.get("isProductive", True)),
            )
        )
    return suggestions

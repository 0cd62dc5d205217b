"""Utilities to normalize window titles and URLs from observations."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlsplit

_BROWSER_SUFFIXES: dict[str, tuple[str, ...]] = {
    "msedge.exe": (" - Microsoft Edge",),
    "microsoft edge": (" - Microsoft Edge",),
    "chrome.exe": (" - Google Chrome",),
    "google chrome": (" - Google Chrome",),
    "firefox.exe": (" - Mozilla Firefox",),
    "firefox": (" - Mozilla Firefox",),
    "brave.exe": (" - Brave",),
    "brave browser": (" - Brave",),
    "opera.exe": (" - Opera",),
    "opera": (" - Opera",),
}


def normalize_window_title(owner_name: Optional[str], window_title: Optional[str]) -> Optional[str]:
    """Remove common browser suffixes to surface tab names."""
    if not window_title:
        return None
    normalized = window_title.strip()
    if not owner_name:
        return normalized or None

    suffixes = _BROWSER_SUFFIXES.get(owner_name.strip().lower())
    if suffixes:
        for suffix in suffixes:
            if normalized.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip(" -")
                break

    normalized = _strip_tab_count(normalized)
    normalized = re.sub(r"\s{2,}", " ", normalized).strip()
    return normalized or None


_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")


def extract_domain(url: Optional[str]) -> Optional[str]:
    """Return the lower-cased hostname of ``url`` or ``None`` if it cannot be parsed."""
    if not url:
        return None
    try:
        hostname = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value and len(value) > limit:
        return f"{value[:limit]}..."
    return value

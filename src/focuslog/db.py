"""SQLite database layer for users, categories, activity events and settings."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar

from .config import DEFAULT_SETTINGS, AppSettings, serialize_setting
from .models import ActivityEvent, Category, ItemType, User


DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"

LOCAL_USER_NAME = "Local User"

DEFAULT_CATEGORIES: tuple[dict[str, Any], ...] = (
    {
        "name": "Work",
        "description": "Work-related activities",
        "color": "#3b82f6",
        "emoji": "💼",
        "is_productive": True,
    },
    {
        "name": "Personal",
        "description": "Personal activities",
        "color": "#8b5cf6",
        "emoji": "🏠",
        "is_productive": True,
    },
    {
        "name": "Entertainment",
        "description": "Entertainment and leisure",
        "color": "#ec4899",
        "emoji": "🎮",
        "is_productive": False,
    },
    {
        "name": "Communication",
        "description": "Email, messaging, meetings",
        "color": "#10b981",
        "emoji": "💬",
        "is_productive": True,
    },
    {
        "name": "Uncategorized",
        "description": "Uncategorized activities",
        "color": "#6b7280",
        "emoji": "❓",
        "is_productive": False,
    },
)

_UNSET = object()

T = TypeVar("T")


class CategoryNotFoundError(ValueError):
    """Raised when a category id is unknown or owned by another user."""


def open_database(path: Path | str, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    enable_foreign_keys(conn)
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            user_projects_and_goals TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS categories (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            color TEXT,
            emoji TEXT,
            is_productive INTEGER NOT NULL DEFAULT 0,
            is_default INTEGER NOT NULL DEFAULT 0,
            is_archived INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS active_window_events (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            window_id TEXT,
            owner_name TEXT,
            type TEXT,
            browser TEXT,
            title TEXT,
            url TEXT,
            content TEXT,
            category_id TEXT,
            category_reasoning TEXT,
            llm_summary TEXT,
            timestamp TEXT NOT NULL,
            duration_ms INTEGER NOT NULL DEFAULT 0,
            last_categorization_at TEXT,
            old_category_id TEXT,
            old_category_reasoning TEXT,
            old_llm_summary TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
        );

        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_categories_user_id
            ON categories(user_id);
        CREATE INDEX IF NOT EXISTS idx_events_user_time
            ON active_window_events(user_id, timestamp);
        CREATE INDEX IF NOT EXISTS idx_events_owner_name
            ON active_window_events(owner_name);
        CREATE INDEX IF NOT EXISTS idx_events_url
            ON active_window_events(url);
        """
    )
    conn.executemany(
        "INSERT OR IGNORE INTO app_settings (key, value) VALUES (?, ?)",
        list(DEFAULT_SETTINGS.items()),
    )


class Database:
    """Serializes access to one connection and runs calls off the event loop."""

    def __init__(self, path: Path | str) -> None:
        self.path = path
        self._conn = open_database(path, check_same_thread=False)
        self._lock = threading.Lock()

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self._lock:
            return fn(self._conn, *args, **kwargs)

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(self.call, fn, *args, **kwargs)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def format_datetime(value: datetime) -> str:
    return to_local_naive(value).strftime(DATETIME_FMT)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, DATETIME_FMT)


def _now() -> str:
    return format_datetime(datetime.now())


def _new_id() -> str:
    return uuid.uuid4().hex


# Users ----------------------------------------------------------------------


def get_or_create_local_user(conn: sqlite3.Connection) -> User:
    """Return the single local user, creating it on first use."""
    row = conn.execute(
        "SELECT id, name, user_projects_and_goals FROM users ORDER BY created_at LIMIT 1"
    ).fetchone()
    if row is not None:
        return _row_to_user(row)

    user_id = _new_id()
    now = _now()
    conn.execute(
        """
        INSERT INTO users (id, name, user_projects_and_goals, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (user_id, LOCAL_USER_NAME, json.dumps([]), now, now),
    )
    return User(id=user_id, name=LOCAL_USER_NAME, goals=[])


def get_user_goals(conn: sqlite3.Connection, user_id: str) -> list[str]:
    row = conn.execute(
        "SELECT user_projects_and_goals FROM users WHERE id = ?", (user_id,)
    ).fetchone()
    if row is None:
        raise ValueError(f"No user found for id={user_id}")
    return parse_goals(row["user_projects_and_goals"])


def set_user_goals(conn: sqlite3.Connection, user_id: str, goals: list[str] | str) -> User:
    if isinstance(goals, str):
        goals = [line.strip() for line in goals.splitlines() if line.strip()]
    cur = conn.execute(
        "UPDATE users SET user_projects_and_goals = ?, updated_at = ? WHERE id = ?",
        (json.dumps(list(goals)), _now(), user_id),
    )
    if cur.rowcount == 0:
        raise ValueError(f"No user found for id={user_id}")
    row = conn.execute(
        "SELECT id, name, user_projects_and_goals FROM users WHERE id = ?", (user_id,)
    ).fetchone()
    return _row_to_user(row)


def parse_goals(raw: Optional[str]) -> list[str]:
    """Goals are stored as a JSON list; older rows may hold plain text."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        return [raw]
    if isinstance(parsed, list):
        return [str(item) for item in parsed if item]
    if isinstance(parsed, str):
        return [parsed] if parsed else []
    return [raw]


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        goals=parse_goals(row["user_projects_and_goals"]),
    )


# Categories -----------------------------------------------------------------


def create_category(
    conn: sqlite3.Connection,
    user_id: str,
    name: str,
    *,
    description: Optional[str] = None,
    color: Optional[str] = None,
    emoji: Optional[str] = None,
    is_productive: bool = False,
    is_default: bool = False,
) -> Category:
    category_id = _new_id()
    now = _now()
    conn.execute(
        """
        INSERT INTO categories (
            id, user_id, name, description, color, emoji,
            is_productive, is_default, is_archived, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
        """,
        (
            category_id,
            user_id,
            name,
            description,
            color,
            emoji,
            1 if is_productive else 0,
            1 if is_default else 0,
            now,
            now,
        ),
    )
    return Category(
        id=category_id,
        user_id=user_id,
        name=name,
        description=description,
        color=color,
        emoji=emoji,
        is_productive=is_productive,
        is_default=is_default,
    )


def ensure_default_categories(conn: sqlite3.Connection, user_id: str) -> list[Category]:
    """Seed the template categories if the user has none at all."""
    existing = fetch_categories(conn, user_id, include_archived=True)
    if existing:
        return [category for category in existing if not category.is_archived]
    return [
        create_category(conn, user_id, is_default=True, **template)
        for template in DEFAULT_CATEGORIES
    ]


def fetch_categories(
    conn: sqlite3.Connection, user_id: str, *, include_archived: bool = False
) -> list[Category]:
    """Return the user's categories, oldest first."""
    query = "SELECT * FROM categories WHERE user_id = ?"
    if not include_archived:
        query += " AND is_archived = 0"
    query += " ORDER BY created_at, rowid"
    return [_row_to_category(row) for row in conn.execute(query, (user_id,))]


def get_category(conn: sqlite3.Connection, category_id: str) -> Optional[Category]:
    row = conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
    return _row_to_category(row) if row is not None else None


def update_category(
    conn: sqlite3.Connection,
    category_id: str,
    *,
    name: Optional[str] = None,
    description: object = _UNSET,
    color: object = _UNSET,
    emoji: object = _UNSET,
    is_productive: Optional[bool] = None,
    is_archived: Optional[bool] = None,
) -> Category:
    fields: list[str] = []
    params: list[object] = []

    if name is not None:
        fields.append("name = ?")
        params.append(name)
    if description is not _UNSET:
        fields.append("description = ?")
        params.append(description)
    if color is not _UNSET:
        fields.append("color = ?")
        params.append(color)
    if emoji is not _UNSET:
        fields.append("emoji = ?")
        params.append(emoji)
    if is_productive is not None:
        fields.append("is_productive = ?")
        params.append(1 if is_productive else 0)
    if is_archived is not None:
        fields.append("is_archived = ?")
        params.append(1 if is_archived else 0)

    if fields:
        fields.append("updated_at = ?")
        params.append(_now())
        params.append(category_id)
        cur = conn.execute(
            f"UPDATE categories SET {', '.join(fields)} WHERE id = ?",
            params,
        )
        if cur.rowcount == 0:
            raise CategoryNotFoundError(f"No category found for id={category_id}")

    category = get_category(conn, category_id)
    if category is None:
        raise CategoryNotFoundError(f"No category found for id={category_id}")
    return category


def archive_category(conn: sqlite3.Connection, category_id: str) -> Category:
    return update_category(conn, category_id, is_archived=True)


def delete_category(conn: sqlite3.Connection, category_id: str) -> bool:
    """Hard delete; events referencing the category fall back to NULL."""
    cur = conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
    return cur.rowcount > 0


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
        color=row["color"],
        emoji=row["emoji"],
        is_productive=bool(row["is_productive"]),
        is_default=bool(row["is_default"]),
        is_archived=bool(row["is_archived"]),
    )


def _require_user_category(
    conn: sqlite3.Connection, user_id: str, category_id: str
) -> Category:
    category = get_category(conn, category_id)
    if category is None or category.user_id != user_id:
        raise CategoryNotFoundError(f"No category found for id={category_id}")
    return category


# Events ---------------------------------------------------------------------


def create_event(
    conn: sqlite3.Connection,
    user_id: str,
    *,
    timestamp: datetime,
    window_id: Optional[str] = None,
    owner_name: Optional[str] = None,
    type: Optional[str] = None,
    browser: Optional[str] = None,
    title: Optional[str] = None,
    url: Optional[str] = None,
    content: Optional[str] = None,
    duration_ms: int = 0,
) -> ActivityEvent:
    """Insert an uncategorized event and return it."""
    event_id = _new_id()
    now = _now()
    conn.execute(
        """
        INSERT INTO active_window_events (
            id, user_id, window_id, owner_name, type, browser, title, url,
            content, timestamp, duration_ms, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            event_id,
            user_id,
            window_id,
            owner_name,
            type,
            browser,
            title,
            url,
            content,
            format_datetime(timestamp),
            duration_ms,
            now,
            now,
        ),
    )
    return ActivityEvent(
        id=event_id,
        user_id=user_id,
        timestamp=parse_datetime(format_datetime(timestamp)),
        window_id=window_id,
        owner_name=owner_name,
        type=type,
        browser=browser,
        title=title,
        url=url,
        content=content,
        duration_ms=duration_ms,
    )


def get_event(conn: sqlite3.Connection, event_id: str) -> Optional[ActivityEvent]:
    row = conn.execute(
        "SELECT * FROM active_window_events WHERE id = ?", (event_id,)
    ).fetchone()
    return _row_to_event(row) if row is not None else None


def fetch_events_in_range(
    conn: sqlite3.Connection, user_id: str, start: datetime, end: datetime
) -> list[ActivityEvent]:
    """Fetch events whose start timestamp lies in ``[start, end)``."""
    rows = conn.execute(
        """
        SELECT * FROM active_window_events
        WHERE user_id = ? AND timestamp >= ? AND timestamp < ?
        ORDER BY timestamp;
        """,
        (user_id, format_datetime(start), format_datetime(end)),
    )
    return [_row_to_event(row) for row in rows]


def update_event(
    conn: sqlite3.Connection,
    event_id: str,
    *,
    duration_ms: Optional[int] = None,
    category_id: object = _UNSET,
    category_reasoning: object = _UNSET,
    llm_summary: object = _UNSET,
    last_categorization_at: Optional[datetime] = None,
    title: object = _UNSET,
) -> None:
    """Update a single event record."""
    fields: list[str] = []
    params: list[object] = []

    if duration_ms is not None:
        fields.append("duration_ms = ?")
        params.append(int(duration_ms))
    if category_id is not _UNSET:
        fields.append("category_id = ?")
        params.append(category_id)
    if category_reasoning is not _UNSET:
        fields.append("category_reasoning = ?")
        params.append(category_reasoning)
    if llm_summary is not _UNSET:
        fields.append("llm_summary = ?")
        params.append(llm_summary)
    if last_categorization_at is not None:
        fields.append("last_categorization_at = ?")
        params.append(format_datetime(last_categorization_at))
    if title is not _UNSET:
        fields.append("title = ?")
        params.append(title)

    if not fields:
        return

    fields.append("updated_at = ?")
    params.append(_now())
    params.append(event_id)
    cur = conn.execute(
        f"UPDATE active_window_events SET {', '.join(fields)} WHERE id = ?",
        params,
    )
    if cur.rowcount == 0:
        raise ValueError(f"No event found for id={event_id}")


def update_event_duration(conn: sqlite3.Connection, event_id: str, duration_ms: int) -> None:
    update_event(conn, event_id, duration_ms=duration_ms)


MANUAL_REASONING = "Manually recategorized by user"


def recategorize_event(
    conn: sqlite3.Connection,
    event_id: str,
    category_id: str,
    *,
    reasoning: str = MANUAL_REASONING,
) -> ActivityEvent:
    """Assign ``category_id`` to one event, keeping the previous decision in old_*."""
    event = get_event(conn, event_id)
    if event is None:
        raise ValueError(f"No event found for id={event_id}")
    _require_user_category(conn, event.user_id, category_id)
    conn.execute(
        """
        UPDATE active_window_events
        SET old_category_id = category_id,
            old_category_reasoning = category_reasoning,
            old_llm_summary = llm_summary,
            category_id = ?,
            category_reasoning = ?,
            last_categorization_at = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (category_id, reasoning, _now(), _now(), event_id),
    )
    return get_event(conn, event_id)  # type: ignore[return-value]


def recategorize_events_by_identifier(
    conn: sqlite3.Connection,
    user_id: str,
    identifier: str,
    item_type: ItemType | str,
    start: datetime,
    end: datetime,
    category_id: str,
    *,
    reasoning: str = MANUAL_REASONING,
) -> int:
    """Reassign every event of an app (owner name) or website (url) in ``[start, end]``."""
    _require_user_category(conn, user_id, category_id)
    column = "owner_name" if ItemType(item_type) is ItemType.APP else "url"
    now = _now()
    cur = conn.execute(
        f"""
        UPDATE active_window_events
        SET old_category_id = category_id,
            old_category_reasoning = category_reasoning,
            old_llm_summary = llm_summary,
            category_id = ?,
            category_reasoning = ?,
            last_categorization_at = ?,
            updated_at = ?
        WHERE user_id = ?
          AND {column} = ?
          AND timestamp >= ?
          AND timestamp <= ?
        """,
        (
            category_id,
            reasoning,
            now,
            now,
            user_id,
            identifier,
            format_datetime(start),
            format_datetime(end),
        ),
    )
    return cur.rowcount


def fetch_category_totals(
    conn: sqlite3.Connection, user_id: str, day: datetime
) -> list[sqlite3.Row]:
    """Return total milliseconds per category (NULL for uncategorized) on a given day."""
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return list(
        conn.execute(
            """
            SELECT
                c.id AS category_id,
                c.name AS category_name,
                c.is_productive AS is_productive,
                COUNT(e.id) AS events,
                SUM(e.duration_ms) AS duration_ms
            FROM active_window_events e
            LEFT JOIN categories c ON c.id = e.category_id
            WHERE e.user_id = ? AND e.timestamp >= ? AND e.timestamp < ?
            GROUP BY c.id, c.name, c.is_productive
            ORDER BY duration_ms DESC;
            """,
            (user_id, format_datetime(start), format_datetime(end)),
        )
    )


def _row_to_event(row: sqlite3.Row) -> ActivityEvent:
    return ActivityEvent(
        id=row["id"],
        user_id=row["user_id"],
        timestamp=parse_datetime(row["timestamp"]),
        window_id=row["window_id"],
        owner_name=row["owner_name"],
        type=row["type"],
        browser=row["browser"],
        title=row["title"],
        url=row["url"],
        content=row["content"],
        duration_ms=int(row["duration_ms"] or 0),
        category_id=row["category_id"],
        category_reasoning=row["category_reasoning"],
        llm_summary=row["llm_summary"],
        last_categorization_at=parse_datetime(row["last_categorization_at"]),
        old_category_id=row["old_category_id"],
        old_category_reasoning=row["old_category_reasoning"],
        old_llm_summary=row["old_llm_summary"],
    )


# Settings -------------------------------------------------------------------


def get_setting(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM app_settings WHERE key = ?", (key,)).fetchone()
    return row["value"] if row is not None else None


def set_setting(conn: sqlite3.Connection, key: str, value: object) -> None:
    conn.execute(
        """
        INSERT INTO app_settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
            value = excluded.value,
            updated_at = excluded.updated_at
        """,
        (key, serialize_setting(value), _now()),
    )


def update_settings(conn: sqlite3.Connection, values: dict[str, object]) -> None:
    conn.execute("BEGIN")
    try:
        for key, value in values.items():
            set_setting(conn, key, value)
    except Exception:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def fetch_settings(conn: sqlite3.Connection) -> dict[str, Optional[str]]:
    return {row["key"]: row["value"] for row in conn.execute("SELECT key, value FROM app_settings")}


def load_app_settings(conn: sqlite3.Connection) -> AppSettings:
    return AppSettings.from_mapping(fetch_settings(conn))

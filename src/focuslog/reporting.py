"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .db import database_connection, fetch_category_totals, get_or_create_local_user


@dataclass(slots=True)
class CategoryTotal:
    name: str
    is_productive: Optional[bool]
    events: int
    seconds: float


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def print_daily_summary(self, day: datetime) -> None:
        with database_connection(self.db_path) as conn:
            user = get_or_create_local_user(conn)
            rows = fetch_category_totals(conn, user.id, day)
        totals = to_category_totals(rows)
        if not totals:
            print("No activity recorded for the selected day.")
            return

        productive, unproductive, uncategorized = split_productivity(totals)
        print(f"Summary for {day.strftime('%Y-%m-%d')}")
        print("-" * 40)
        print(f"Productive:    {format_duration(productive)}")
        print(f"Unproductive:  {format_duration(unproductive)}")
        print(f"Uncategorized: {format_duration(uncategorized)}")
        print()
        print("By category:")
        for total in totals:
            print(f"  {total.name:<30} {total.events:>5}  {format_duration(total.seconds)}")


def to_category_totals(rows: Iterable[dict]) -> list[CategoryTotal]:
    totals = [
        CategoryTotal(
            name=row["category_name"] or "(uncategorized)",
            is_productive=(
                None if row["category_id"] is None else bool(row["is_productive"])
            ),
            events=int(row["events"] or 0),
            seconds=(row["duration_ms"] or 0) / 1000.0,
        )
        for row in rows
    ]
    return sorted(totals, key=lambda item: item.seconds, reverse=True)


def split_productivity(totals: Iterable[CategoryTotal]) -> tuple[float, float, float]:
    productive = unproductive = uncategorized = 0.0
    for total in totals:
        if total.is_productive is None:
            uncategorized += total.seconds
        elif total.is_productive:
            productive += total.seconds
        else:
            unproductive += total.seconds
    return productive, unproductive, uncategorized


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"

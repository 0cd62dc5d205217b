"""FastAPI application exposing the tracker's local API to the desktop shell."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Union

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import db
from .config import BOOLEAN_SETTINGS, DEFAULT_SETTINGS, PipelineSettings
from .models import ActivityEvent, Category, ItemType, WindowObservation
from .paths import get_db_path
from .pipeline import WindowEventPipeline
from .providers import ProviderType
from .reporting import split_productivity, to_category_totals
from .rules import generate_simple_activity_title, is_simple_title_informative

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True
    )


class ObservationPayload(_CamelModel):
    window_id: str
    timestamp: Optional[datetime] = None
    owner_name: Optional[str] = None
    type: Optional[str] = None
    browser: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    content: Optional[str] = None
    duration_ms: int = Field(default=0, ge=0)


class DurationPayload(_CamelModel):
    duration_ms: int = Field(ge=0)


class EndPayload(_CamelModel):
    duration_ms: Optional[int] = Field(default=None, ge=0)


class CategoryAssignment(_CamelModel):
    category_id: str


class BulkRecategorizePayload(_CamelModel):
    identifier: str
    item_type: ItemType
    start: datetime
    end: datetime
    category_id: str


class CategoryPayload(_CamelModel):
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    emoji: Optional[str] = None
    is_productive: bool = False


class CategoryUpdate(_CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    emoji: Optional[str] = None
    is_productive: Optional[bool] = None
    is_archived: Optional[bool] = None


class GoalsPayload(_CamelModel):
    goals: Union[list[str], str]


class SuggestionRequest(_CamelModel):
    goals: Optional[str] = None
    count: int = Field(default=5, ge=1, le=12)


class ConnectionRequest(_CamelModel):
    base_url: Optional[str] = None


class PullRequest(_CamelModel):
    model: str


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[PipelineSettings] = None,
    pipeline: Optional[WindowEventPipeline] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    if pipeline is None:
        database = db.Database(Path(db_path or get_db_path()))
        pipeline = WindowEventPipeline.create(database, settings or PipelineSettings())
    database = pipeline.database

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        await pipeline.start()
        yield
        pipeline.queue.clear()
        await pipeline.drain()
        pipeline.providers.close()
        database.close()

    app = FastAPI(title="FocusLog", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.pipeline = pipeline

    @app.get("/api/status")
    def status() -> Dict[str, Any]:
        stats = pipeline.queue.stats()
        return {
            "database_path": str(database.path),
            "queue_size": stats.queue_size,
            "processing": stats.processing,
            "cached_decisions": len(pipeline.cache),
        }

    # Observations -----------------------------------------------------------

    @app.post("/api/observations", status_code=201)
    async def submit_observation(payload: ObservationPayload) -> Dict[str, Any]:
        observation = WindowObservation(
            window_id=payload.window_id,
            timestamp=payload.timestamp or datetime.now(),
            owner_name=payload.owner_name,
            type=payload.type,
            browser=payload.browser,
            title=payload.title,
            url=payload.url,
            content=payload.content,
            duration_ms=payload.duration_ms,
        )
        event = await pipeline.process_event(observation)
        return _event_payload(event)

    @app.patch("/api/observations/{window_id}")
    async def update_observation(window_id: str, payload: DurationPayload) -> Dict[str, Any]:
        updated = await pipeline.update_duration(window_id, payload.duration_ms)
        return {"window_id": window_id, "updated": updated}

    @app.post("/api/observations/{window_id}/end")
    async def end_observation(
        window_id: str, payload: Optional[EndPayload] = None
    ) -> Dict[str, Any]:
        ended = await pipeline.end_window_event(
            window_id, payload.duration_ms if payload else None
        )
        return {"window_id": window_id, "ended": ended}

    # Events -----------------------------------------------------------------

    @app.get("/api/events")
    async def events(
        start: Optional[str] = Query(
            default=None,
            description="Start date in YYYY-MM-DD format (inclusive).",
        ),
        end: Optional[str] = Query(
            default=None,
            description="End date in YYYY-MM-DD format (inclusive).",
        ),
    ) -> Dict[str, Any]:
        start_day = _parse_date(start)
        end_day = _parse_date(end) if end else start_day
        if end_day < start_day:
            raise HTTPException(
                status_code=400, detail="end date must be on or after start date"
            )
        user = await database.run(db.get_or_create_local_user)
        rows = await database.run(
            db.fetch_events_in_range, user.id, start_day, end_day + timedelta(days=1)
        )
        return {
            "start": start_day.strftime("%Y-%m-%d"),
            "end": end_day.strftime("%Y-%m-%d"),
            "events": [_event_payload(event) for event in rows],
        }

    @app.get("/api/events/{event_id}")
    async def get_event(event_id: str) -> Dict[str, Any]:
        return _event_payload(await _require_event(pipeline, event_id))

    @app.patch("/api/events/{event_id}/category")
    async def set_event_category(
        event_id: str, payload: CategoryAssignment
    ) -> Dict[str, Any]:
        try:
            event = await pipeline.recategorize_event(event_id, payload.category_id)
        except db.CategoryNotFoundError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=404, detail="Event not found") from exc
        return _event_payload(event)

    @app.post("/api/events/{event_id}/categorize", status_code=202)
    async def categorize_event(event_id: str) -> Dict[str, Any]:
        try:
            queued = await pipeline.request_categorization(event_id)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail="Event not found") from exc
        return {"event_id": event_id, "queued": queued}

    @app.get("/api/events/{event_id}/insights")
    async def event_insights(event_id: str) -> Dict[str, Any]:
        event = await _require_event(pipeline, event_id)
        settings = await database.run(db.load_app_settings)
        details = event.to_details()
        summary = await pipeline.ai.summarize_block(settings, details)
        title = await pipeline.ai.generate_activity_title(settings, details)
        informative = None
        if event.title:
            informative = await pipeline.ai.is_title_informative(settings, event.title)
        return {
            "event_id": event.id,
            "summary": summary,
            "title": title or generate_simple_activity_title(details),
            "title_informative": (
                informative
                if informative is not None
                else is_simple_title_informative(event.title)
            ),
        }

    @app.post("/api/recategorize")
    async def recategorize(payload: BulkRecategorizePayload) -> Dict[str, Any]:
        start = db.to_local_naive(payload.start)
        end = db.to_local_naive(payload.end)
        if end < start:
            raise HTTPException(status_code=400, detail="end must be on or after start")
        try:
            updated = await pipeline.recategorize_events_by_identifier(
                payload.identifier,
                payload.item_type,
                start,
                end,
                payload.category_id,
            )
        except db.CategoryNotFoundError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"updated": updated}

    @app.get("/api/summary")
    async def summary(
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        target_day = _parse_date(date)
        user = await database.run(db.get_or_create_local_user)
        rows = await database.run(db.fetch_category_totals, user.id, target_day)
        totals = to_category_totals(rows)
        productive, unproductive, uncategorized = split_productivity(totals)
        return {
            "date": target_day.strftime("%Y-%m-%d"),
            "totals": {
                "productive_seconds": productive,
                "unproductive_seconds": unproductive,
                "uncategorized_seconds": uncategorized,
            },
            "categories": [
                {
                    "name": total.name,
                    "is_productive": total.is_productive,
                    "events": total.events,
                    "seconds": total.seconds,
                }
                for total in totals
            ],
        }

    # Categories and goals ---------------------------------------------------

    @app.get("/api/categories")
    async def list_categories(include_archived: bool = False) -> Dict[str, Any]:
        user = await database.run(db.get_or_create_local_user)
        rows = await database.run(
            db.fetch_categories, user.id, include_archived=include_archived
        )
        return {"categories": [_category_payload(c) for c in rows]}

    @app.post("/api/categories", status_code=201)
    async def create_category(payload: CategoryPayload) -> Dict[str, Any]:
        name = payload.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="name is required")
        user = await database.run(db.get_or_create_local_user)
        category = await database.run(
            db.create_category,
            user.id,
            name,
            description=payload.description,
            color=payload.color,
            emoji=payload.emoji,
            is_productive=payload.is_productive,
        )
        return _category_payload(category)

    @app.patch("/api/categories/{category_id}")
    async def update_category(category_id: str, payload: CategoryUpdate) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True)
        try:
            category = await database.run(db.update_category, category_id, **updates)
        except db.CategoryNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Category not found") from exc
        return _category_payload(category)

    @app.delete("/api/categories/{category_id}")
    async def delete_category(category_id: str, hard: bool = False) -> Dict[str, Any]:
        try:
            if hard:
                if not await database.run(db.delete_category, category_id):
                    raise db.CategoryNotFoundError(category_id)
            else:
                await database.run(db.archive_category, category_id)
        except db.CategoryNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Category not found") from exc
        return {"deleted": True, "archived": not hard}

    @app.post("/api/categories/{category_id}/emoji")
    async def suggest_emoji(category_id: str) -> Dict[str, Any]:
        category = await database.run(db.get_category, category_id)
        if category is None:
            raise HTTPException(status_code=404, detail="Category not found")
        settings = await database.run(db.load_app_settings)
        emoji = await pipeline.ai.suggest_emoji(settings, category.name, category.description)
        return {"emoji": emoji}

    @app.post("/api/category-suggestions")
    async def category_suggestions(payload: SuggestionRequest) -> Dict[str, Any]:
        user = await database.run(db.get_or_create_local_user)
        settings = await database.run(db.load_app_settings)
        goals = payload.goals if payload.goals is not None else user.goals_text
        suggestions = await pipeline.ai.generate_category_suggestions(
            settings, goals, payload.count
        )
        return {
            "suggestions": (
                [
                    {
                        "name": s.name,
                        "description": s.description,
                        "color": s.color,
                        "emoji": s.emoji,
                        "is_productive": s.is_productive,
                    }
                    for s in suggestions
                ]
                if suggestions is not None
                else None
            )
        }

    @app.get("/api/goals")
    async def get_goals() -> Dict[str, Any]:
        user = await database.run(db.get_or_create_local_user)
        return {"goals": await database.run(db.get_user_goals, user.id)}

    @app.put("/api/goals")
    async def set_goals(payload: GoalsPayload) -> Dict[str, Any]:
        user = await database.run(db.get_or_create_local_user)
        user = await database.run(db.set_user_goals, user.id, payload.goals)
        return {"goals": user.goals}

    # Settings and providers -------------------------------------------------

    @app.get("/api/settings")
    async def get_settings() -> Dict[str, Any]:
        return {"settings": await database.run(db.fetch_settings)}

    @app.put("/api/settings")
    async def put_settings(values: Dict[str, Union[bool, str, int, float]]) -> Dict[str, Any]:
        unknown = sorted(set(values) - set(DEFAULT_SETTINGS))
        if unknown:
            raise HTTPException(
                status_code=400, detail=f"Unknown settings: {', '.join(unknown)}"
            )
        invalid = sorted(
            key
            for key in BOOLEAN_SETTINGS & set(values)
            if not isinstance(values[key], bool)
            and str(values[key]).strip().lower() not in ("true", "false")
        )
        if invalid:
            raise HTTPException(
                status_code=400,
                detail=f"Expected true or false for: {', '.join(invalid)}",
            )
        await database.run(db.update_settings, values)
        pipeline.providers.clear_availability_cache()
        return {"settings": await database.run(db.fetch_settings)}

    @app.get("/api/providers/{provider_type}/models")
    async def list_models(
        provider_type: ProviderType, base_url: Optional[str] = None
    ) -> Dict[str, Any]:
        settings = await database.run(db.load_app_settings)
        provider = pipeline.providers.get(settings, provider_type, base_url=base_url)
        return {"models": await provider.list_models()}

    @app.post("/api/providers/{provider_type}/test")
    async def test_provider(
        provider_type: ProviderType, payload: Optional[ConnectionRequest] = None
    ) -> Dict[str, Any]:
        settings = await database.run(db.load_app_settings)
        result = await pipeline.providers.test_connection(
            settings, provider_type, payload.base_url if payload else None
        )
        return {"success": result.success, "message": result.message, "models": result.models}

    @app.post("/api/providers/{provider_type}/pull")
    async def pull_model(provider_type: ProviderType, payload: PullRequest) -> Dict[str, Any]:
        settings = await database.run(db.load_app_settings)
        provider = pipeline.providers.get(settings, provider_type)
        return {"success": await provider.pull_model(payload.model)}

    return app


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return _start_of_day(datetime.now())
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc
    return _start_of_day(parsed)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


async def _require_event(pipeline: WindowEventPipeline, event_id: str) -> ActivityEvent:
    event = await pipeline.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _event_payload(event: ActivityEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "window_id": event.window_id,
        "owner_name": event.owner_name,
        "type": event.type,
        "browser": event.browser,
        "title": event.title,
        "url": event.url,
        "content": event.content,
        "timestamp": _isoformat(event.timestamp),
        "duration_ms": event.duration_ms,
        "category_id": event.category_id,
        "category_reasoning": event.category_reasoning,
        "llm_summary": event.llm_summary,
        "last_categorization_at": _isoformat(event.last_categorization_at),
        "old_category_id": event.old_category_id,
        "old_category_reasoning": event.old_category_reasoning,
        "old_llm_summary": event.old_llm_summary,
    }


def _category_payload(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "description": category.description,
        "color": category.color,
        "emoji": category.emoji,
        "is_productive": category.is_productive,
        "is_default": category.is_default,
        "is_archived": category.is_archived,
    }

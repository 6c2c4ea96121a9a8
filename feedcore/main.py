from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Annotated, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from feedcore.config import load_settings
from feedcore.constants import (
    EVENT_QUERY_LIMIT,
    GENERATION_DEFAULT_COUNT,
    GENERATION_MAX_COUNT,
    USER_ID_MAX_LENGTH,
    USER_ID_MIN_LENGTH,
    USER_ID_PATTERN,
)
from feedcore.events import EventSweeper
from feedcore.logging_config import configure_logging, get_logger
from feedcore.service import FeedService

logger = get_logger(__name__)

_USER_ID_RULES = dict(
    min_length=USER_ID_MIN_LENGTH, max_length=USER_ID_MAX_LENGTH, pattern=USER_ID_PATTERN
)
UserId = Annotated[str, Field(**_USER_ID_RULES)]
UserIdPath = Annotated[str, Path(**_USER_ID_RULES)]


@lru_cache(maxsize=1)
def get_feed_service() -> FeedService:
    settings = load_settings()
    configure_logging(settings.log_level)
    return FeedService.from_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = app.dependency_overrides.get(get_feed_service, get_feed_service)()
    sweeper = EventSweeper(service.events, interval=service.settings.event_sweep_interval)
    sweeper.start()
    try:
        yield
    finally:
        sweeper.stop(timeout=1.0)


app = FastAPI(title="Feedcore API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class InteractionRequest(BaseModel):
    user_id: UserId
    content_id: str = Field(min_length=1)
    action: Literal["like", "dislike", "view"]
    dwell_time_ms: Optional[float] = Field(default=None, ge=0)
    scroll_depth: Optional[float] = Field(default=None, ge=0)


class GenerateRequest(BaseModel):
    user_id: UserId
    count: int = Field(default=GENERATION_DEFAULT_COUNT, ge=1, le=GENERATION_MAX_COUNT)
    mode: Literal["default", "creative", "focused"] = "default"


class EventTrackRequest(BaseModel):
    user_id: UserId
    content_id: Optional[str] = None
    action: Optional[Literal["like", "dislike"]] = None
    old_score: float = 50
    new_score: float = 50
    variant: Optional[str] = None
    config: Optional[dict] = None


class PreferencesRequest(BaseModel):
    interests: list[str]
    language: Optional[str] = None
    style: Optional[Literal["casual", "formal"]] = None


@app.get("/health")
async def health(service: FeedService = Depends(get_feed_service)):
    generator = "mock"
    if service.generator is not None:
        generator = "ok" if await service.generator.health_check() else "unavailable"
    return {"status": "ok", "generator": generator, "cache": service.cache.get_stats()}


@app.post("/interaction")
def interaction_route(
    req: InteractionRequest, service: FeedService = Depends(get_feed_service)
):
    try:
        data = service.record_interaction(
            req.user_id, req.content_id, req.action, req.dwell_time_ms, req.scroll_depth
        )
    except Exception as e:
        logger.error(f"Failed to record interaction for {req.user_id}: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "INTERACTION_ERROR",
                "data": {
                    "content_id": req.content_id,
                    "new_score": 50,
                    "old_score": 50,
                    "reason": "Error calculating score",
                },
            },
        )
    return {"success": True, "data": data}


@app.get("/interaction")
def get_interactions_route(
    user_id: Annotated[str, Query(**_USER_ID_RULES)],
    content_id: Optional[str] = None,
    service: FeedService = Depends(get_feed_service),
):
    return {"success": True, **service.get_interactions(user_id, content_id)}


@app.post("/generate")
async def generate_route(
    req: GenerateRequest, service: FeedService = Depends(get_feed_service)
):
    result = await service.request_generation(req.user_id, req.count, req.mode)
    admission = result.pop("admission")
    headers = service.limiter.rate_limit_headers(admission)
    status = 200 if admission.allowed else 429
    return JSONResponse(status_code=status, content=result, headers=headers)


@app.post("/events")
def track_event_route(
    req: EventTrackRequest, service: FeedService = Depends(get_feed_service)
):
    data = service.track_client_event(
        req.user_id,
        req.content_id,
        req.action,
        req.old_score,
        req.new_score,
        req.variant,
        req.config,
    )
    return {"success": True, "data": data}


@app.get("/events")
def get_events_route(
    user_id: Annotated[Optional[str], Query(**_USER_ID_RULES)] = None,
    variant: Optional[str] = None,
    event_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(default=EVENT_QUERY_LIMIT, ge=1, le=1000),
    service: FeedService = Depends(get_feed_service),
):
    data = service.query_events(user_id, variant, start, end, event_type, limit)
    return {"success": True, "data": data}


@app.get("/events/export")
def export_events_route(
    format: Literal["json", "csv"] = "json",
    service: FeedService = Depends(get_feed_service),
):
    body = service.events.export_events(format)
    media_type = "text/csv" if format == "csv" else "application/json"
    return PlainTextResponse(body, media_type=media_type)


@app.get("/experiments/stats")
def experiment_stats_route(service: FeedService = Depends(get_feed_service)):
    return service.experiment_stats()


@app.get("/rate-limit/{user_id}")
def rate_limit_route(user_id: UserIdPath, service: FeedService = Depends(get_feed_service)):
    return service.limiter.get_user_stats(user_id)


@app.put("/users/{user_id}/preferences")
def preferences_route(
    user_id: UserIdPath,
    req: PreferencesRequest,
    service: FeedService = Depends(get_feed_service),
):
    if not any(i.strip() for i in req.interests):
        raise HTTPException(status_code=400, detail="At least one interest is required")
    return service.update_preferences(user_id, req.interests, req.language, req.style)

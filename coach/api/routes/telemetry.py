"""
Telemetry Routes - Event ingestion and the admin dashboard.

Endpoints:
- POST /telemetry/track        : Record a frontend event (public)
- GET  /telemetry/summary      : Dashboard cards (admin)
- GET  /telemetry/time-series  : Daily counts per event (admin)
- GET  /telemetry/top-scenarios: Most started scenarios (admin)
- GET  /telemetry/events       : Paginated event list (admin)
- GET  /telemetry/event-types  : Distinct event names (admin)
"""
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from coach.api.access import Caller, Tier, require
from coach.models.schemas import SuccessResponse, TrackEventRequest
from coach.services.telemetry import TelemetryService, track_client_event

router = APIRouter(prefix="/telemetry", tags=["Telemetry"])


class SummaryResponse(BaseModel):
    total_events: int
    conversations_started: int
    conversations_completed: int
    completion_rate: float
    avg_duration_ms: float
    total_tokens: int


class TimeSeriesResponse(BaseModel):
    data: List[Dict[str, Any]]
    event_names: List[str]


class ScenarioCount(BaseModel):
    scenario: str
    count: int


class EventListResponse(BaseModel):
    events: List[Dict[str, Any]]
    next_cursor: Optional[str] = None


def get_telemetry_service() -> TelemetryService:
    return TelemetryService()


def _utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; convert aware inputs to match."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@router.post("/track", response_model=SuccessResponse, summary="Track an event")
async def track_event(
    body: TrackEventRequest,
    caller: Caller = Depends(require(Tier.PUBLIC)),
) -> SuccessResponse:
    track_client_event(body.name, body.properties, user_id=caller.user_id, session_id=body.session_id)
    return SuccessResponse()


@router.get("/summary", response_model=SummaryResponse, summary="Dashboard summary")
async def summary(
    start: datetime,
    end: datetime,
    caller: Caller = Depends(require(Tier.ADMIN)),
    service: TelemetryService = Depends(get_telemetry_service),
) -> SummaryResponse:
    result = service.summary(_utc(start), _utc(end))
    return SummaryResponse(**asdict(result))


@router.get("/time-series", response_model=TimeSeriesResponse, summary="Daily event counts")
async def time_series(
    start: datetime,
    end: datetime,
    event_names: Optional[List[str]] = Query(default=None),
    caller: Caller = Depends(require(Tier.ADMIN)),
    service: TelemetryService = Depends(get_telemetry_service),
) -> TimeSeriesResponse:
    return TimeSeriesResponse(**service.time_series(_utc(start), _utc(end), event_names))


@router.get("/top-scenarios", response_model=List[ScenarioCount], summary="Top scenarios")
async def top_scenarios(
    start: datetime,
    end: datetime,
    limit: int = Query(default=10, ge=1, le=20),
    caller: Caller = Depends(require(Tier.ADMIN)),
    service: TelemetryService = Depends(get_telemetry_service),
) -> List[ScenarioCount]:
    return [ScenarioCount(**row) for row in service.top_scenarios(_utc(start), _utc(end), limit)]


@router.get("/events", response_model=EventListResponse, summary="List events")
async def list_events(
    start: datetime,
    end: datetime,
    event_type: Optional[str] = None,
    user_id: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=100),
    caller: Caller = Depends(require(Tier.ADMIN)),
    service: TelemetryService = Depends(get_telemetry_service),
) -> EventListResponse:
    page = service.list_events(_utc(start), _utc(end), event_type, user_id, cursor, limit)
    return EventListResponse(events=page.events, next_cursor=page.next_cursor)


@router.get("/event-types", response_model=List[str], summary="Distinct event names")
async def event_types(
    caller: Caller = Depends(require(Tier.ADMIN)),
    service: TelemetryService = Depends(get_telemetry_service),
) -> List[str]:
    return service.event_types()

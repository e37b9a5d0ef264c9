"""
Session Routes - Conversation session lifecycle.

Endpoints:
- POST /session/start : Staff quick start (self-claimed invitation + session)
- GET  /session/mine  : The caller's sessions, newest first
"""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from coach.api.access import Caller, Tier, require
from coach.core.logging_config import get_logger
from coach.models.schemas import StartSessionRequest
from coach.services.session_service import SessionService, get_session_service

logger = get_logger(__name__)
router = APIRouter(prefix="/session", tags=["Session Management"])


# ============================================================
# Response Models
# ============================================================

class SessionStartResponse(BaseModel):
    """Response for a staff quick start."""
    session_id: int = Field(..., description="New conversation session")
    invitation_id: str = Field(..., description="Self-claimed invitation backing the session")


class SessionScenario(BaseModel):
    id: int
    name: str
    partner_persona: str


class SessionListItem(BaseModel):
    """Single session in list response."""
    id: int
    scenario: SessionScenario
    status: str
    message_count: int
    started_at: datetime


# ============================================================
# Endpoints
# ============================================================

@router.post(
    "/start",
    response_model=SessionStartResponse,
    summary="Start a session without an invitation",
    description="""
    Staff shortcut: creates an invitation claimed by the caller and an ACTIVE
    session bound to it, in one transaction.

    Returns 404 if the scenario or quota preset does not exist; nothing is
    written in that case.
    """
)
async def start_session(
    body: StartSessionRequest,
    caller: Caller = Depends(require(Tier.STAFF)),
    service: SessionService = Depends(get_session_service),
) -> SessionStartResponse:
    result = service.start_new(caller.user_id, body.scenario_id, body.preset_name)
    return SessionStartResponse(**result)


@router.get(
    "/mine",
    response_model=List[SessionListItem],
    summary="List my sessions",
    description="Sessions of the signed-in user. Anonymous callers get an empty list."
)
async def list_my_sessions(
    caller: Caller = Depends(require(Tier.PUBLIC)),
    service: SessionService = Depends(get_session_service),
) -> List[SessionListItem]:
    return [SessionListItem(**item) for item in service.list_mine(caller.user_id)]

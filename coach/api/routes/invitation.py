"""
Invitation Routes - Validate, claim and issue invitations.

Endpoints:
- GET  /invitation/validate : Preview an invitation by token (public)
- POST /invitation/claim    : Claim it; anonymous callers become GUEST users (public)
- POST /invitation          : Issue an invitation (staff)
- GET  /invitation          : Invitations the caller issued (staff)
- GET  /invitation/presets  : Quota presets (staff)
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from coach.api.access import Caller, Tier, login, require
from coach.core.logging_config import get_logger
from coach.models.schemas import (
    ClaimInvitationRequest,
    CreateInvitationRequest,
    QuotaView,
    ScenarioSummary,
)
from coach.services.invitation_service import InvitationService, get_invitation_service

logger = get_logger(__name__)
router = APIRouter(prefix="/invitation", tags=["Invitations"])


class InvitationPreview(BaseModel):
    id: str
    scenario: Optional[ScenarioSummary] = None
    allow_custom_scenario: bool
    quota: QuotaView
    claimed: bool
    expires_at: datetime


class ClaimedInvitation(BaseModel):
    id: str
    scenario: Optional[ScenarioSummary] = None
    allow_custom_scenario: bool
    quota: QuotaView


class ClaimResponse(BaseModel):
    invitation: ClaimedInvitation
    user: Dict[str, Any]
    session_id: int
    already_claimed: bool


class CreatedInvitation(BaseModel):
    id: str
    token: str
    label: Optional[str] = None
    scenario: Dict[str, Any]
    allow_custom_scenario: bool
    quota: Dict[str, Any]
    expires_at: datetime


class InvitationListItem(BaseModel):
    id: str
    token: str
    label: Optional[str] = None
    scenario: Optional[Dict[str, Any]] = None
    allow_custom_scenario: bool
    quota: Dict[str, Any]
    claimed_at: Optional[datetime] = None
    linked_user: Optional[Dict[str, Any]] = None
    session_count: int
    expires_at: datetime
    created_at: datetime


class PresetItem(BaseModel):
    name: str
    label: str
    description: Optional[str] = None
    quota: Dict[str, Any]
    is_default: bool


@router.get(
    "/validate",
    response_model=InvitationPreview,
    summary="Validate an invitation token",
    description="""
    Returns the scenario preview and remaining quota without claiming.

    400 for a malformed or expired token, 404 for an unknown one.
    """
)
async def validate_invitation(
    token: str = Query(..., description="43-character invitation token"),
    caller: Caller = Depends(require(Tier.PUBLIC)),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationPreview:
    return InvitationPreview(**service.validate(token))


@router.post(
    "/claim",
    response_model=ClaimResponse,
    summary="Claim an invitation",
    description="""
    Links the invitation to the caller and starts a session. Claiming again
    as the same user returns the existing session.

    Anonymous callers get a GUEST account, remembered in the session cookie.
    """
)
async def claim_invitation(
    body: ClaimInvitationRequest,
    request: Request,
    caller: Caller = Depends(require(Tier.PUBLIC)),
    service: InvitationService = Depends(get_invitation_service),
) -> ClaimResponse:
    result = service.claim(body.token, caller.user_id)
    if result.user_created or result.user["id"] != caller.user_id:
        login(request, result.user["id"])

    return ClaimResponse(
        invitation=ClaimedInvitation(**result.invitation),
        user=result.user,
        session_id=result.session_id,
        already_claimed=result.already_claimed,
    )


@router.post("", response_model=CreatedInvitation, summary="Create an invitation")
async def create_invitation(
    body: CreateInvitationRequest,
    caller: Caller = Depends(require(Tier.STAFF)),
    service: InvitationService = Depends(get_invitation_service),
) -> CreatedInvitation:
    created = service.create(
        caller.user_id,
        preset_name=body.preset_name,
        scenario_id=body.scenario_id,
        label=body.label,
        expires_in_days=body.expires_in_days,
    )
    return CreatedInvitation(**created)


@router.get("", response_model=List[InvitationListItem], summary="List my invitations")
async def list_invitations(
    caller: Caller = Depends(require(Tier.STAFF)),
    service: InvitationService = Depends(get_invitation_service),
) -> List[InvitationListItem]:
    return [InvitationListItem(**item) for item in service.list_created_by(caller.user_id)]


@router.get("/presets", response_model=List[PresetItem], summary="List quota presets")
async def list_presets(
    caller: Caller = Depends(require(Tier.STAFF)),
    service: InvitationService = Depends(get_invitation_service),
) -> List[PresetItem]:
    return [PresetItem(**p) for p in service.presets()]

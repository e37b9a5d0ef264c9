"""
Request and Response models shared across the API.

These Pydantic models define the contract between client and server.
They provide:
- Type validation
- Automatic documentation
- Request/response serialization

Route-specific payloads live next to their router.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from coach.core.validators import MAX_MESSAGE_LENGTH
from coach.database.models import utcnow


class SendMessageRequest(BaseModel):
    """
    Request body for POST /conversation/{session_id}/messages.

    Attributes:
        content: What the user says to the conversation partner.
    """
    content: str = Field(
        ...,
        min_length=1,
        max_length=MAX_MESSAGE_LENGTH,
        description="The user's message to the conversation partner",
        examples=["I'd rather not talk about politics at dinner."]
    )


class StartSessionRequest(BaseModel):
    scenario_id: int = Field(..., description="Scenario to converse in")
    preset_name: str = Field(..., description="Quota preset name, e.g. 'quick-chat'")


class ClaimInvitationRequest(BaseModel):
    token: str = Field(..., description="43-character invitation token")


class CreateInvitationRequest(BaseModel):
    """Request body for creating an invitation (staff)."""
    label: Optional[str] = Field(default=None, max_length=255)
    scenario_id: int = Field(..., description="Scenario the invitation grants")
    preset_name: str = Field(..., description="Quota preset to snapshot")
    expires_in_days: int = Field(default=30, ge=1, le=365)


class CreateObservationRequest(BaseModel):
    invitation_id: str
    session_id: Optional[int] = None
    content: str = Field(..., min_length=1, max_length=5000)


class TrackEventRequest(BaseModel):
    """Frontend telemetry event. Public so anonymous visitors are counted too."""
    name: str = Field(..., min_length=1, max_length=100)
    properties: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[int] = None


class UpdateRoleRequest(BaseModel):
    role: str = Field(..., pattern="^(GUEST|USER|STAFF|ADMIN)$")


class ScenarioSummary(BaseModel):
    id: int
    name: str
    description: str
    slug: str
    partner_persona: str


class QuotaView(BaseModel):
    label: Optional[str] = None
    total: int
    remaining: int


class SuccessResponse(BaseModel):
    success: bool = True


class HealthResponse(BaseModel):
    """Response model for the /health endpoint."""
    status: str = Field(default="healthy")
    version: str
    timestamp: datetime = Field(default_factory=utcnow)
    database: Optional[str] = None
    ai_providers: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str
    message: str
    details: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

"""
Models module - Pydantic schemas for data validation.

This module defines:
- Request models: Input validation for API endpoints
- Response models: Output formatting for API responses
"""
from coach.models.schemas import (
    ClaimInvitationRequest,
    CreateInvitationRequest,
    CreateObservationRequest,
    ErrorResponse,
    HealthResponse,
    QuotaView,
    ScenarioSummary,
    SendMessageRequest,
    StartSessionRequest,
    SuccessResponse,
    TrackEventRequest,
    UpdateRoleRequest,
)

__all__ = [
    "ClaimInvitationRequest",
    "CreateInvitationRequest",
    "CreateObservationRequest",
    "ErrorResponse",
    "HealthResponse",
    "QuotaView",
    "ScenarioSummary",
    "SendMessageRequest",
    "StartSessionRequest",
    "SuccessResponse",
    "TrackEventRequest",
    "UpdateRoleRequest",
]

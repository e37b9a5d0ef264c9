"""
Services module - Business logic and orchestration.

Services contain the core application logic:
- No HTTP concerns (those belong in api/)
- One database unit of work per operation, via DatabaseConnection.get_session()
- Orchestrate between the LLM registry, database and telemetry
"""
from coach.services.auth_service import AuthService, AuthResult, GoogleUserInfo, get_auth_service
from coach.services.conversation_service import ConversationService, TurnEvent, build_context
from coach.services.invitation_service import ClaimResult, InvitationService, get_invitation_service
from coach.services.observation_service import ObservationService, get_observation_service
from coach.services.quota import Quota, QuotaStatus, check_quota, parse_quota
from coach.services.scenario_service import ScenarioService, get_scenario_service
from coach.services.session_service import SessionService, get_session_service
from coach.services.telemetry import TelemetryEvents, TelemetryService, create_tracker, track
from coach.services.user_service import UserService, get_user_service

__all__ = [
    "AuthService",
    "AuthResult",
    "GoogleUserInfo",
    "get_auth_service",
    "ConversationService",
    "TurnEvent",
    "build_context",
    "ClaimResult",
    "InvitationService",
    "get_invitation_service",
    "ObservationService",
    "get_observation_service",
    "Quota",
    "QuotaStatus",
    "check_quota",
    "parse_quota",
    "ScenarioService",
    "get_scenario_service",
    "SessionService",
    "get_session_service",
    "TelemetryEvents",
    "TelemetryService",
    "create_tracker",
    "track",
    "UserService",
    "get_user_service",
]

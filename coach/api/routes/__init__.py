"""
API Routes module - Endpoint definitions.

Each file in this module defines routes for a specific domain:
- auth.py         : Google sign-in, logout and the current user
- session.py      : Starting and listing coaching sessions
- invitation.py   : Validating, claiming and creating invitations
- conversation.py : Streaming turns and history
- scenario.py     : Scenario catalogue
- observation.py  : Researcher notes
- telemetry.py    : Event ingestion and dashboard queries
- user.py         : Admin user management
- health.py       : Health check endpoints
"""
from coach.api.routes.auth import router as auth_router
from coach.api.routes.conversation import router as conversation_router
from coach.api.routes.health import router as health_router
from coach.api.routes.invitation import router as invitation_router
from coach.api.routes.observation import router as observation_router
from coach.api.routes.scenario import router as scenario_router
from coach.api.routes.session import router as session_router
from coach.api.routes.telemetry import router as telemetry_router
from coach.api.routes.user import router as user_router

__all__ = [
    "auth_router",
    "conversation_router",
    "health_router",
    "invitation_router",
    "observation_router",
    "scenario_router",
    "session_router",
    "telemetry_router",
    "user_router",
]

"""
Session Service - Conversation session lifecycle.

Two entry points:
- start_new : staff shortcut that skips the invitation hand-off. It writes a
              self-claimed invitation and an ACTIVE session in one transaction.
- list_mine : the caller's sessions for the "your sessions" view.
"""
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from coach.core.exceptions import NotFoundError
from coach.core.logging_config import get_logger
from coach.core.tokens import generate_token
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import (
    ConversationSession,
    Invitation,
    Message,
    QuotaPreset,
    Scenario,
    SessionStatus,
    utcnow,
)
from coach.services.quota import parse_quota
from coach.services.telemetry import TelemetryEvents, track

logger = get_logger(__name__)

SELF_CLAIM_EXPIRY = timedelta(days=365)


class SessionService:
    """
    Creates and lists conversation sessions.

    Example:
        >>> service = SessionService(db)
        >>> started = service.start_new(staff_user_id, scenario_id=1, preset_name="quick-chat")
        >>> service.list_mine(staff_user_id)[0]["id"] == started["session_id"]
        True
    """

    def __init__(self, db: Optional[DatabaseConnection] = None):
        self._db = db

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database()

    def start_new(self, user_id: str, scenario_id: int, preset_name: str) -> Dict[str, Any]:
        """
        Start a session for the caller without an invitation hand-off.

        The scenario and preset are looked up before anything is written, so
        a bad identifier leaves no trace. The invitation and the session are
        inserted in the same unit of work: both exist or neither does.

        Args:
            user_id: The staff caller; becomes creator and linked user
            scenario_id: Scenario to converse in
            preset_name: Quota preset whose allowance is snapshotted

        Returns:
            {"session_id": int, "invitation_id": str}

        Raises:
            NotFoundError: Unknown scenario or preset
        """
        with self.db.get_session() as session:
            scenario = session.get(Scenario, scenario_id)
            if scenario is None:
                raise NotFoundError("Scenario not found")

            preset = session.query(QuotaPreset).filter(QuotaPreset.name == preset_name).first()
            if preset is None:
                raise NotFoundError("Quota preset not found")

            quota = parse_quota(preset.quota)
            now = utcnow()

            invitation = Invitation(
                token=generate_token(),
                label=f"Quick start: {scenario.name}",
                scenario_id=scenario.id,
                quota={"tokens": quota.tokens, "label": preset.label},
                expires_at=now + SELF_CLAIM_EXPIRY,
                claimed_at=now,
                linked_user_id=user_id,
                created_by_id=user_id,
            )
            session.add(invitation)
            session.flush()

            conversation = ConversationSession(
                user_id=user_id,
                invitation_id=invitation.id,
                scenario_id=scenario.id,
                status=SessionStatus.ACTIVE.value,
            )
            session.add(conversation)
            session.flush()

            result = {"session_id": conversation.id, "invitation_id": invitation.id}
            scenario_slug = scenario.slug

        logger.info(
            f"Session started: session={result['session_id']}, "
            f"scenario={scenario_slug}, preset={preset_name}"
        )
        track(
            self.db,
            TelemetryEvents.CONVERSATION_STARTED,
            {
                "scenarioId": scenario_id,
                "scenarioSlug": scenario_slug,
                "invitationId": result["invitation_id"],
                "presetName": preset_name,
            },
            user_id=user_id,
            session_id=result["session_id"],
        )
        return result

    def list_mine(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """
        List the caller's sessions, newest first.

        Anonymous callers get an empty list rather than an error.
        """
        if not user_id:
            return []

        with self.db.get_session() as session:
            message_counts = (
                session.query(Message.session_id, func.count(Message.id).label("count"))
                .group_by(Message.session_id)
                .subquery()
            )
            rows = (
                session.query(ConversationSession, Scenario, message_counts.c.count)
                .join(Scenario, ConversationSession.scenario_id == Scenario.id)
                .outerjoin(message_counts, message_counts.c.session_id == ConversationSession.id)
                .filter(ConversationSession.user_id == user_id)
                .order_by(ConversationSession.started_at.desc(), ConversationSession.id.desc())
                .all()
            )

            return [
                {
                    "id": conversation.id,
                    "scenario": {
                        "id": scenario.id,
                        "name": scenario.name,
                        "partner_persona": scenario.partner_persona,
                    },
                    "status": conversation.status,
                    "message_count": count or 0,
                    "started_at": conversation.started_at,
                }
                for conversation, scenario, count in rows
            ]


_session_service: Optional[SessionService] = None


def get_session_service() -> SessionService:
    """Get or create the session service instance."""
    global _session_service
    if _session_service is None:
        _session_service = SessionService()
    return _session_service

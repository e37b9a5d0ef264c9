"""
Invitation Service - Token-bearing access grants.

An invitation ties a scenario and a quota snapshot to whoever claims it
first. Lifecycle: created by staff -> validated (preview) -> claimed once.
Claiming is idempotent for the user who already holds it.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from coach.core.exceptions import BadRequestError, NotFoundError
from coach.core.logging_config import get_logger
from coach.core.tokens import generate_token
from coach.core.validators import is_valid_invitation_token
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import (
    ConversationSession,
    Invitation,
    QuotaPreset,
    Role,
    Scenario,
    SessionStatus,
    User,
    utcnow,
)
from coach.services.quota import check_quota, get_usage_for_invitation, parse_quota
from coach.services.telemetry import TelemetryEvents, track

logger = get_logger(__name__)

DEFAULT_EXPIRY_DAYS = 30
MAX_EXPIRY_DAYS = 365


@dataclass
class ClaimResult:
    """Outcome of claim(); user_created tells the caller to set the session cookie."""
    invitation: Dict[str, Any]
    user: Dict[str, Any]
    session_id: int
    already_claimed: bool
    user_created: bool = False


def _scenario_preview(scenario: Optional[Scenario]) -> Optional[Dict[str, Any]]:
    return scenario.summary() if scenario is not None else None


def _quota_view(session: Session, invitation: Invitation) -> Dict[str, Any]:
    quota = parse_quota(invitation.quota)
    status = check_quota(quota, get_usage_for_invitation(session, invitation.id))
    return {"label": quota.label, "total": quota.tokens, "remaining": status.remaining}


class InvitationService:
    """
    Validates, claims and issues invitations.

    Example:
        >>> service = InvitationService(db)
        >>> created = service.create(staff_id, preset_name="quick-chat", scenario_id=1)
        >>> result = service.claim(created["token"], user_id=None)
        >>> result.user_created
        True
    """

    def __init__(self, db: Optional[DatabaseConnection] = None):
        self._db = db

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database()

    def _get_valid_invitation(self, session: Session, token: str) -> Invitation:
        """
        Fetch an invitation by token and check it is still usable.

        Raises:
            BadRequestError: Malformed token or expired invitation
            NotFoundError: No invitation with this token
        """
        if not is_valid_invitation_token(token):
            raise BadRequestError("Invalid token format", field="token")

        invitation = session.query(Invitation).filter(Invitation.token == token).first()
        if invitation is None:
            raise NotFoundError("Invitation not found")

        if invitation.expires_at < utcnow():
            raise BadRequestError("Invitation has expired")

        return invitation

    def validate(self, token: str) -> Dict[str, Any]:
        """Preview an invitation without claiming it."""
        with self.db.get_session() as session:
            invitation = self._get_valid_invitation(session, token)
            return {
                "id": invitation.id,
                "scenario": _scenario_preview(invitation.scenario),
                "allow_custom_scenario": invitation.allow_custom_scenario,
                "quota": _quota_view(session, invitation),
                "claimed": invitation.claimed_at is not None,
                "expires_at": invitation.expires_at,
            }

    def claim(self, token: str, user_id: Optional[str]) -> ClaimResult:
        """
        Claim an invitation for the caller.

        Anonymous callers get a fresh GUEST user. Linking the invitation and
        creating the ACTIVE session happen in one unit of work. A second claim
        by the same user returns the existing session.

        Raises:
            BadRequestError: Claimed by someone else, or no scenario assigned
        """
        with self.db.get_session() as session:
            invitation = self._get_valid_invitation(session, token)

            if user_id and session.get(User, user_id) is None:
                # Cookie points at a user that no longer exists
                user_id = None

            if invitation.linked_user_id and invitation.linked_user_id != user_id:
                raise BadRequestError("This invitation has already been claimed")

            already_claimed = invitation.claimed_at is not None and invitation.linked_user_id == user_id

            user_created = False
            if not user_id:
                guest = User(role=Role.GUEST.value)
                session.add(guest)
                session.flush()
                user_id = guest.id
                user_created = True

            newly_linked = invitation.linked_user_id is None
            if newly_linked:
                invitation.linked_user_id = user_id
                invitation.claimed_at = utcnow()

            conversation = None
            if already_claimed:
                conversation = (
                    session.query(ConversationSession)
                    .filter(
                        ConversationSession.user_id == user_id,
                        ConversationSession.invitation_id == invitation.id,
                    )
                    .order_by(ConversationSession.started_at.desc(), ConversationSession.id.desc())
                    .first()
                )

            session_created = conversation is None
            if session_created:
                if invitation.scenario_id is None:
                    raise BadRequestError("Invitation has no scenario assigned")
                conversation = ConversationSession(
                    user_id=user_id,
                    invitation_id=invitation.id,
                    scenario_id=invitation.scenario_id,
                    status=SessionStatus.ACTIVE.value,
                )
                session.add(conversation)
            session.flush()

            user = session.get(User, user_id)
            scenario = invitation.scenario
            result = ClaimResult(
                invitation={
                    "id": invitation.id,
                    "scenario": _scenario_preview(scenario),
                    "allow_custom_scenario": invitation.allow_custom_scenario,
                    "quota": _quota_view(session, invitation),
                },
                user={
                    "id": user.id,
                    "name": user.name,
                    "role": user.role,
                    "avatar_url": user.avatar_url,
                },
                session_id=conversation.id,
                already_claimed=already_claimed,
                user_created=user_created,
            )
            telemetry = {
                "invitationId": invitation.id,
                "scenarioId": scenario.id if scenario else None,
                "scenarioSlug": scenario.slug if scenario else None,
            }

        logger.info(
            f"Invitation claimed: invitation={result.invitation['id']}, "
            f"session={result.session_id}, already_claimed={already_claimed}"
        )
        if newly_linked:
            track(self.db, TelemetryEvents.INVITATION_CLAIMED, telemetry, user_id=user_id)
        if session_created:
            track(
                self.db,
                TelemetryEvents.CONVERSATION_STARTED,
                telemetry,
                user_id=user_id,
                session_id=result.session_id,
            )
        return result

    def create(
        self,
        created_by_id: str,
        preset_name: str,
        scenario_id: Optional[int] = None,
        label: Optional[str] = None,
        expires_in_days: int = DEFAULT_EXPIRY_DAYS,
    ) -> Dict[str, Any]:
        """
        Issue a new invitation with a quota snapshot from a preset.

        Raises:
            BadRequestError: expires_in_days outside 1..365, or no scenario
            NotFoundError: Unknown preset or scenario
        """
        if not 1 <= expires_in_days <= MAX_EXPIRY_DAYS:
            raise BadRequestError(
                f"expires_in_days must be between 1 and {MAX_EXPIRY_DAYS}",
                field="expires_in_days",
            )
        if scenario_id is None:
            raise BadRequestError("A scenario is required", field="scenario_id")

        with self.db.get_session() as session:
            preset = session.query(QuotaPreset).filter(QuotaPreset.name == preset_name).first()
            if preset is None:
                raise NotFoundError("Quota preset not found")

            scenario = session.get(Scenario, scenario_id)
            if scenario is None:
                raise NotFoundError("Scenario not found")

            quota = parse_quota(preset.quota)
            invitation = Invitation(
                token=generate_token(),
                label=label,
                scenario_id=scenario.id,
                quota={"tokens": quota.tokens, "label": preset.label},
                expires_at=utcnow() + timedelta(days=expires_in_days),
                created_by_id=created_by_id,
            )
            session.add(invitation)
            session.flush()

            created = {
                "id": invitation.id,
                "token": invitation.token,
                "label": invitation.label,
                "scenario": {"id": scenario.id, "name": scenario.name, "slug": scenario.slug},
                "allow_custom_scenario": invitation.allow_custom_scenario,
                "quota": invitation.quota,
                "expires_at": invitation.expires_at,
            }

        logger.info(f"Invitation created: invitation={created['id']}, preset={preset_name}")
        track(
            self.db,
            TelemetryEvents.INVITATION_CREATED,
            {"invitationId": created["id"], "presetName": preset_name, "scenarioId": scenario_id},
            user_id=created_by_id,
        )
        return created

    def list_created_by(self, user_id: str) -> List[Dict[str, Any]]:
        """Invitations the caller issued, newest first, with session counts."""
        with self.db.get_session() as session:
            session_counts = (
                session.query(
                    ConversationSession.invitation_id,
                    func.count(ConversationSession.id).label("count"),
                )
                .group_by(ConversationSession.invitation_id)
                .subquery()
            )
            rows = (
                session.query(Invitation, session_counts.c.count)
                .outerjoin(session_counts, session_counts.c.invitation_id == Invitation.id)
                .filter(Invitation.created_by_id == user_id)
                .order_by(Invitation.created_at.desc())
                .all()
            )

            return [
                {
                    "id": inv.id,
                    "token": inv.token,
                    "label": inv.label,
                    "scenario": (
                        {"id": inv.scenario.id, "name": inv.scenario.name, "slug": inv.scenario.slug}
                        if inv.scenario else None
                    ),
                    "allow_custom_scenario": inv.allow_custom_scenario,
                    "quota": parse_quota(inv.quota).to_dict(),
                    "claimed_at": inv.claimed_at,
                    "linked_user": (
                        {"id": inv.linked_user.id, "name": inv.linked_user.name}
                        if inv.linked_user else None
                    ),
                    "session_count": count or 0,
                    "expires_at": inv.expires_at,
                    "created_at": inv.created_at,
                }
                for inv, count in rows
            ]

    def presets(self) -> List[Dict[str, Any]]:
        """Quota presets in display order."""
        with self.db.get_session() as session:
            presets = session.query(QuotaPreset).order_by(QuotaPreset.sort_order.asc()).all()
            return [
                {
                    "name": p.name,
                    "label": p.label,
                    "description": p.description,
                    "quota": parse_quota(p.quota).to_dict(),
                    "is_default": p.is_default,
                }
                for p in presets
            ]


_invitation_service: Optional[InvitationService] = None


def get_invitation_service() -> InvitationService:
    """Get or create the invitation service instance."""
    global _invitation_service
    if _invitation_service is None:
        _invitation_service = InvitationService()
    return _invitation_service

"""
User Service - Admin view of users and role management.

Role changes follow two rules: an admin cannot change their own role, and
the last ADMIN cannot be demoted. GUEST -> USER happens automatically on
sign-in; manual changes are meant for STAFF and ADMIN.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from coach.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from coach.core.logging_config import get_logger
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import (
    ConversationSession,
    ExternalIdentity,
    Invitation,
    Role,
    User,
)
from coach.services.telemetry import TelemetryEvents, track

logger = get_logger(__name__)

RECENT_SESSIONS = 10
RECENT_INVITATIONS = 5


@dataclass
class UserPage:
    users: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None


def _parse_role(role: str) -> Role:
    try:
        return Role(role)
    except ValueError:
        raise BadRequestError(f"Unknown role: {role}", field="role")


def _session_count(session: Session, user_id: str) -> int:
    return (
        session.query(func.count(ConversationSession.id))
        .filter(ConversationSession.user_id == user_id)
        .scalar()
    ) or 0


class UserService:
    def __init__(self, db: Optional[DatabaseConnection] = None):
        self._db = db

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database()

    def list_users(
        self,
        cursor: Optional[str] = None,
        limit: int = 50,
        role: Optional[str] = None,
        search: Optional[str] = None,
    ) -> UserPage:
        """
        Newest-first user listing.

        Args:
            cursor: Id of the first user of the page (from next_cursor)
            limit: Page size
            role: Only users with this role
            search: Case-insensitive match on name or identity email
        """
        with self.db.get_session() as session:
            query = session.query(User)
            if role:
                query = query.filter(User.role == _parse_role(role).value)
            if search:
                pattern = f"%{search.lower()}%"
                query = query.filter(or_(
                    func.lower(User.name).like(pattern),
                    User.external_identities.any(func.lower(ExternalIdentity.email).like(pattern)),
                ))
            if cursor:
                anchor = session.get(User, cursor)
                if anchor is not None:
                    query = query.filter(or_(
                        User.created_at < anchor.created_at,
                        and_(User.created_at == anchor.created_at, User.id <= anchor.id),
                    ))

            users = query.order_by(User.created_at.desc(), User.id.desc()).limit(limit + 1).all()

            next_cursor = None
            if len(users) > limit:
                next_cursor = users[limit].id
                users = users[:limit]

            items = []
            for user in users:
                identity = user.external_identities[0] if user.external_identities else None
                items.append({
                    "id": user.id,
                    "name": user.name,
                    "avatar_url": user.avatar_url,
                    "role": user.role,
                    "created_at": user.created_at,
                    "last_login_at": user.last_login_at,
                    "session_count": _session_count(session, user.id),
                    "email": identity.email if identity else None,
                    "provider": identity.provider if identity else None,
                    "has_identity": identity is not None,
                })

        return UserPage(users=items, next_cursor=next_cursor)

    def get_user(self, user_id: str) -> Dict[str, Any]:
        with self.db.get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")

            sessions = (
                session.query(ConversationSession)
                .filter(ConversationSession.user_id == user_id)
                .order_by(ConversationSession.started_at.desc())
                .limit(RECENT_SESSIONS)
                .all()
            )
            linked = (
                session.query(Invitation)
                .filter(Invitation.linked_user_id == user_id)
                .order_by(Invitation.created_at.desc())
                .limit(RECENT_INVITATIONS)
                .all()
            )
            invitations_created = (
                session.query(func.count(Invitation.id))
                .filter(Invitation.created_by_id == user_id)
                .scalar()
            )

            return {
                "id": user.id,
                "name": user.name,
                "avatar_url": user.avatar_url,
                "role": user.role,
                "created_at": user.created_at,
                "updated_at": user.updated_at,
                "last_login_at": user.last_login_at,
                "external_identities": [
                    {"id": i.id, "provider": i.provider, "email": i.email, "created_at": i.created_at}
                    for i in user.external_identities
                ],
                "sessions": [
                    {
                        "id": s.id,
                        "status": s.status,
                        "started_at": s.started_at,
                        "total_messages": s.total_messages,
                        "scenario": {"name": s.scenario.name, "slug": s.scenario.slug},
                    }
                    for s in sessions
                ],
                "invitations_linked": [
                    {
                        "id": inv.id,
                        "token": inv.token,
                        "label": inv.label,
                        "claimed_at": inv.claimed_at,
                        "scenario": {"name": inv.scenario.name} if inv.scenario else None,
                    }
                    for inv in linked
                ],
                "session_count": _session_count(session, user_id),
                "invitations_created_count": invitations_created or 0,
                "has_identity": bool(user.external_identities),
            }

    def update_role(self, actor_id: str, user_id: str, role: str) -> Dict[str, Any]:
        """
        Change a user's role.

        Raises:
            ForbiddenError: Changing your own role, or demoting the last admin
            NotFoundError: Unknown user
        """
        new_role = _parse_role(role)
        if user_id == actor_id:
            raise ForbiddenError("Cannot change your own role")

        with self.db.get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")

            old_role = user.role
            if old_role == Role.ADMIN.value and new_role != Role.ADMIN:
                admins = session.query(func.count(User.id)).filter(User.role == Role.ADMIN.value).scalar()
                if admins <= 1:
                    raise ForbiddenError("Cannot demote the last admin")

            user.role = new_role.value
            updated = {"id": user.id, "name": user.name, "role": user.role}

        logger.info(f"Role changed: user={user_id}, {old_role} -> {new_role.value}, by={actor_id}")
        track(
            self.db,
            TelemetryEvents.USER_ROLE_CHANGED,
            {
                "targetUserId": user_id,
                "oldRole": old_role,
                "newRole": new_role.value,
                "changedBy": actor_id,
            },
            user_id=actor_id,
        )
        return updated


_user_service: Optional[UserService] = None


def get_user_service() -> UserService:
    """Get or create the user service instance."""
    global _user_service
    if _user_service is None:
        _user_service = UserService()
    return _user_service

"""
Auth Service - Reconcile Google sign-ins with existing users.

Visitors who claim an invitation get an anonymous GUEST user before they ever
sign in. When they later authenticate with Google, the anonymous account is
either upgraded in place or merged into the account that already owns the
Google identity. Everything for one sign-in happens in one transaction.

Flow of handle_google_auth():
1. Google identity known -> log in as its user, merging an anonymous
   session user into it
2. Unknown identity, live session user -> attach the identity to that user
3. Unknown identity, no session user, an anonymous user owns the email ->
   attach the identity to that user
4. Otherwise create a new USER
5. Upsert the email as a verified, primary contact method
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from coach.core.logging_config import get_logger
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import (
    ContactMethod,
    ConversationSession,
    ExternalIdentity,
    Invitation,
    ObservationNote,
    Role,
    UsageLog,
    User,
    utcnow,
)
from coach.services.telemetry import TelemetryEvents, track

logger = get_logger(__name__)

GOOGLE_PROVIDER = "google"


@dataclass(frozen=True)
class GoogleUserInfo:
    """Subset of the OpenID Connect userinfo response."""
    sub: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GoogleUserInfo":
        return cls(
            sub=data["sub"],
            email=data["email"],
            name=data.get("name"),
            picture=data.get("picture"),
        )


@dataclass(frozen=True)
class AuthResult:
    user: Dict[str, Any]
    merged_from: Optional[str] = None


def merge_users(source_user_id: str, target_user_id: str, session: Session) -> None:
    """
    Move everything owned by source into target, then delete source.

    Contact methods move only when target has no method with the same
    (type, value); moved ones are demoted to non-primary. Leftovers and the
    source's external identities go with the source user via ON DELETE
    CASCADE. Runs inside the caller's transaction. Merging a user into itself
    does nothing.
    """
    if source_user_id == target_user_id:
        return

    def move(column, model):
        session.query(model).filter(column == source_user_id).update(
            {column: target_user_id}, synchronize_session=False
        )

    move(ConversationSession.user_id, ConversationSession)
    move(Invitation.linked_user_id, Invitation)
    move(Invitation.created_by_id, Invitation)
    move(ObservationNote.researcher_id, ObservationNote)
    move(UsageLog.user_id, UsageLog)

    target_keys = {
        (c.type, c.value)
        for c in session.query(ContactMethod.type, ContactMethod.value)
        .filter(ContactMethod.user_id == target_user_id)
    }
    transferable = [
        c.id
        for c in session.query(ContactMethod.id, ContactMethod.type, ContactMethod.value)
        .filter(ContactMethod.user_id == source_user_id)
        if (c.type, c.value) not in target_keys
    ]
    if transferable:
        session.query(ContactMethod).filter(ContactMethod.id.in_(transferable)).update(
            {ContactMethod.user_id: target_user_id, ContactMethod.primary: False},
            synchronize_session=False,
        )

    session.query(User).filter(User.id == source_user_id).delete(synchronize_session=False)
    logger.info(f"Merged user {source_user_id} into {target_user_id}")


def _attach_google_identity(user: User, info: GoogleUserInfo, session: Session) -> None:
    user.name = user.name or info.name
    user.avatar_url = info.picture
    if user.role == Role.GUEST.value:
        user.role = Role.USER.value
    user.last_login_at = utcnow()
    session.add(ExternalIdentity(
        user_id=user.id,
        provider=GOOGLE_PROVIDER,
        external_id=info.sub,
        email=info.email,
    ))


def _create_google_user(info: GoogleUserInfo, session: Session) -> User:
    user = User(
        name=info.name,
        avatar_url=info.picture,
        role=Role.USER.value,
        last_login_at=utcnow(),
    )
    session.add(user)
    session.flush()
    session.add(ExternalIdentity(
        user_id=user.id,
        provider=GOOGLE_PROVIDER,
        external_id=info.sub,
        email=info.email,
    ))
    return user


def _has_external_identity(user_id: str, session: Session) -> bool:
    count = (
        session.query(func.count(ExternalIdentity.id))
        .filter(ExternalIdentity.user_id == user_id)
        .scalar()
    )
    return bool(count)


def handle_google_auth(
    info: GoogleUserInfo,
    session_user_id: Optional[str],
    session: Session,
) -> AuthResult:
    """
    Resolve a Google sign-in to a user record.

    Args:
        info: Profile returned by Google
        session_user_id: User id from the session cookie, if any
        session: Open unit of work; the caller commits

    Returns:
        AuthResult with the signed-in user and, when an anonymous account
        was folded into it, the id it had.
    """
    merged_from = None

    identity = (
        session.query(ExternalIdentity)
        .filter(
            ExternalIdentity.provider == GOOGLE_PROVIDER,
            ExternalIdentity.external_id == info.sub,
        )
        .first()
    )

    if identity is not None:
        user = session.get(User, identity.user_id)

        if session_user_id and session_user_id != user.id:
            session_user = session.get(User, session_user_id)
            if session_user is not None and not _has_external_identity(session_user_id, session):
                merge_users(session_user_id, user.id, session)
                session.expunge(session_user)
                merged_from = session_user_id

        user.last_login_at = utcnow()
        user.name = user.name or info.name
        user.avatar_url = info.picture

    else:
        session_user = session.get(User, session_user_id) if session_user_id else None

        if session_user is not None:
            user = session_user
            _attach_google_identity(user, info, session)

        elif session_user_id:
            # Stale cookie: the session user no longer exists
            user = _create_google_user(info, session)

        else:
            contact = (
                session.query(ContactMethod)
                .filter(ContactMethod.type == "email", ContactMethod.value == info.email)
                .first()
            )
            if contact is not None and not _has_external_identity(contact.user_id, session):
                user = session.get(User, contact.user_id)
                _attach_google_identity(user, info, session)
            else:
                user = _create_google_user(info, session)

    session.flush()

    # Google is authoritative for the address, so it moves to this user
    contact = (
        session.query(ContactMethod)
        .filter(ContactMethod.type == "email", ContactMethod.value == info.email)
        .first()
    )
    if contact is None:
        session.add(ContactMethod(
            user_id=user.id,
            type="email",
            value=info.email,
            verified=True,
            primary=True,
        ))
    else:
        contact.user_id = user.id
        contact.verified = True
        contact.primary = True
    session.flush()

    return AuthResult(
        user={"id": user.id, "name": user.name, "role": user.role},
        merged_from=merged_from,
    )


class AuthService:
    """Runs sign-ins in their own transaction and reads the current user."""

    def __init__(self, db: Optional[DatabaseConnection] = None):
        self._db = db

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database()

    def authenticate_google(self, info: GoogleUserInfo, session_user_id: Optional[str]) -> AuthResult:
        with self.db.get_session() as session:
            result = handle_google_auth(info, session_user_id, session)

        logger.info(f"User logged in via Google: user={result.user['id']}, merged={bool(result.merged_from)}")
        track(
            self.db,
            TelemetryEvents.USER_AUTHENTICATED,
            {"provider": GOOGLE_PROVIDER},
            user_id=result.user["id"],
        )
        if result.merged_from:
            track(
                self.db,
                TelemetryEvents.USER_MERGED,
                {"mergedFrom": result.merged_from},
                user_id=result.user["id"],
            )
        return result

    def merge(self, source_user_id: str, target_user_id: str) -> None:
        """merge_users() in its own transaction."""
        with self.db.get_session() as session:
            merge_users(source_user_id, target_user_id, session)

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Current-user view for /auth/me, or None if the user is gone."""
        with self.db.get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                return None

            session_count = (
                session.query(func.count(ConversationSession.id))
                .filter(ConversationSession.user_id == user_id)
                .scalar()
            )
            return {
                "id": user.id,
                "name": user.name,
                "avatar_url": user.avatar_url,
                "role": user.role,
                "external_identities": [
                    {"provider": i.provider, "email": i.email}
                    for i in user.external_identities
                ],
                "contact_methods": [
                    {"type": c.type, "value": c.value, "verified": c.verified, "primary": c.primary}
                    for c in user.contact_methods
                ],
                "session_count": session_count or 0,
            }


_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """Get or create the auth service instance."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service

"""
Database Models - SQLAlchemy ORM models.

This module defines the schema for:
- Users and how they sign in (external identities, contact methods)
- Scenarios and quota presets
- Invitations, conversation sessions and their messages
- Token usage, observation notes and telemetry events

Timestamps are naive UTC.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

DEFAULT_MODEL = "claude-sonnet-4-20250514"


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    GUEST = "GUEST"
    USER = "USER"
    STAFF = "STAFF"
    ADMIN = "ADMIN"


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class User(Base):
    """
    A person using the app.

    Anonymous visitors who claim an invitation become GUEST users; signing in
    with Google upgrades them to USER or merges them into an existing account.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    role = Column(String(20), default=Role.GUEST.value, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    contact_methods = relationship(
        "ContactMethod",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    external_identities = relationship(
        "ExternalIdentity",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_anonymous(self) -> bool:
        return not self.external_identities

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "role": self.role}


class ContactMethod(Base):
    __tablename__ = "contact_methods"
    __table_args__ = (UniqueConstraint("type", "value", name="uq_contact_type_value"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # 'email', 'phone'
    value = Column(String(255), nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    primary = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="contact_methods")


class ExternalIdentity(Base):
    __tablename__ = "external_identities"
    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_identity_provider_external_id"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(50), nullable=False)
    external_id = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="external_identities")


class Scenario(Base):
    """A conversation setup: who the partner is and how the coach advises."""
    __tablename__ = "scenarios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    partner_persona = Column(Text, nullable=False)
    partner_system_prompt = Column(Text, nullable=False)
    coach_system_prompt = Column(Text, nullable=False)
    partner_model = Column(String(255), default=DEFAULT_MODEL, nullable=False)
    coach_model = Column(String(255), default=DEFAULT_MODEL, nullable=False)
    partner_use_web_search = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "slug": self.slug,
            "partner_persona": self.partner_persona,
        }


class QuotaPreset(Base):
    __tablename__ = "quota_presets"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False, unique=True)
    label = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quota = Column(JSON, nullable=False)  # {"tokens": int}
    is_default = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Invitation(Base):
    """
    A token-bearing access grant for one scenario with a quota snapshot.

    Claimed at most once: claimed_at and linked_user_id are set together.
    """
    __tablename__ = "invitations"

    id = Column(String(36), primary_key=True, default=_uuid)
    token = Column(String(64), nullable=False, unique=True)
    label = Column(String(255), nullable=True)
    scenario_id = Column(Integer, ForeignKey("scenarios.id", ondelete="SET NULL"), nullable=True)
    allow_custom_scenario = Column(Boolean, default=False, nullable=False)
    quota = Column(JSON, nullable=False)  # {"tokens": int, "label": str}
    expires_at = Column(DateTime, nullable=False, index=True)
    claimed_at = Column(DateTime, nullable=True)
    linked_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    scenario = relationship("Scenario")
    linked_user = relationship("User", foreign_keys=[linked_user_id])


class ConversationSession(Base):
    __tablename__ = "conversation_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    invitation_id = Column(String(36), ForeignKey("invitations.id", ondelete="SET NULL"), nullable=True, index=True)
    scenario_id = Column(Integer, ForeignKey("scenarios.id"), nullable=False)
    status = Column(String(20), default=SessionStatus.ACTIVE.value, nullable=False, index=True)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    total_messages = Column(Integer, default=0, nullable=False)

    scenario = relationship("Scenario")
    invitation = relationship("Invitation")
    messages = relationship(
        "Message",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.id",
    )


class Message(Base):
    """One utterance in a session: role is 'user', 'partner' or 'coach'."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("conversation_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    extra_data = Column(JSON, nullable=True)

    session = relationship("ConversationSession", back_populates="messages")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


class UsageLog(Base):
    __tablename__ = "usage_logs"
    __table_args__ = (
        Index("ix_usage_invitation_timestamp", "invitation_id", "timestamp"),
        Index("ix_usage_user_timestamp", "user_id", "timestamp"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=True)
    invitation_id = Column(String(36), nullable=True)
    session_id = Column(Integer, ForeignKey("conversation_sessions.id", ondelete="SET NULL"), nullable=True)
    model = Column(String(255), nullable=False)
    stream_type = Column(String(20), nullable=False)  # 'partner' or 'coach'
    input_tokens = Column(Integer, nullable=False)
    output_tokens = Column(Integer, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)


class ObservationNote(Base):
    """A researcher's note on an invitation, optionally pinned to a session."""
    __tablename__ = "observation_notes"

    id = Column(String(36), primary_key=True, default=_uuid)
    invitation_id = Column(String(36), ForeignKey("invitations.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("conversation_sessions.id", ondelete="SET NULL"), nullable=True)
    researcher_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    researcher = relationship("User")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "invitation_id": self.invitation_id,
            "session_id": self.session_id,
            "researcher_id": self.researcher_id,
            "content": self.content,
            "timestamp": self.timestamp,
        }


class TelemetryEvent(Base):
    """Append-only analytics event with a free-form property bag."""
    __tablename__ = "telemetry_events"
    __table_args__ = (Index("ix_telemetry_name_created", "name", "created_at"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False, index=True)
    properties = Column(JSON, nullable=False, default=dict)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    session_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    user = relationship("User")

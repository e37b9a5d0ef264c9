"""
Database module - SQLAlchemy access layer.

This module handles:
- Engine and session lifecycle
- ORM models
- Table creation and reference-data seeding
"""
from coach.database.connection import DatabaseConnection, get_database, set_database
from coach.database.models import (
    Base,
    ContactMethod,
    ConversationSession,
    ExternalIdentity,
    Invitation,
    Message,
    ObservationNote,
    QuotaPreset,
    Role,
    Scenario,
    SessionStatus,
    TelemetryEvent,
    UsageLog,
    User,
    utcnow,
)
from coach.database.init_db import init_tables, seed_if_empty

__all__ = [
    # Connection
    "DatabaseConnection",
    "get_database",
    "set_database",
    # Models
    "Base",
    "ContactMethod",
    "ConversationSession",
    "ExternalIdentity",
    "Invitation",
    "Message",
    "ObservationNote",
    "QuotaPreset",
    "Role",
    "Scenario",
    "SessionStatus",
    "TelemetryEvent",
    "UsageLog",
    "User",
    "utcnow",
    # Init
    "init_tables",
    "seed_if_empty",
]

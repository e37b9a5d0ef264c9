"""
Conversation coach API package.

This package contains all application source code organized by responsibility:
- api/       : FastAPI routes, authorization tiers and HTTP handling
- core/      : Configuration, logging, errors and cross-cutting utilities
- services/  : Business logic (sessions, invitations, telemetry, auth, turns)
- llm/       : Streaming LLM provider adapters and the provider registry
- database/  : SQLAlchemy engine, session scope and ORM models
- models/    : Pydantic models for request/response schemas
"""

__version__ = "1.0.0"

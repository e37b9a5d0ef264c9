"""
FastAPI Application Entry Point.

This module creates and configures the FastAPI application instance.
It handles:
1. Startup diagnostics (a missing SESSION_KEY stops the process)
2. Provider registry and conversation service construction
3. Router registration
4. Middleware configuration (session cookie, audit, security headers, CORS)
5. Exception handlers

Run with: uvicorn coach.api.main:app --reload
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from coach import __version__
from coach.api.routes import (
    auth_router,
    conversation_router,
    health_router,
    invitation_router,
    observation_router,
    scenario_router,
    session_router,
    telemetry_router,
    user_router,
)
from coach.core.audit import AuditMiddleware, SecurityHeadersMiddleware
from coach.core.config import Settings, get_settings
from coach.core.exceptions import CoachException, RateLimitExceeded
from coach.core.logging_config import get_logger, setup_logging
from coach.core.startup_checks import ai_provider_summary, log_startup_diagnostics
from coach.database.init_db import init_tables, seed_if_empty
from coach.database.models import utcnow
from coach.llm.registry import ProviderRegistry, build_registry
from coach.services.conversation_service import ConversationService

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup creates missing tables and seeds scenarios and quota presets on
    an empty database.
    """
    settings: Settings = app.state.settings
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")
    logger.info(f"AI providers: {ai_provider_summary(settings)}")
    logger.info(f"Rate Limit: {settings.rate_limit_per_minute} req/min")
    logger.info(f"Audit Logging: {settings.enable_audit_logging}")

    init_tables()
    if seed_if_empty():
        logger.info("Seeded reference data on empty database")

    yield

    logger.info(f"Shutting down {settings.app_name}")


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ProviderRegistry] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Defaults to ``get_settings()``
        registry: Provider registry; built from settings when omitted

    Raises:
        ConfigurationError: If SESSION_KEY is not set
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    log_startup_diagnostics(settings)

    app = FastAPI(
        title="Conversation Coach API",
        description="""
        Practice difficult conversations with an AI partner while a coach
        comments on every turn.

        ## Features

        - **Invitations**: Token-metered links that start a coaching session
        - **Streaming turns**: Partner and coach replies over Server-Sent Events
        - **Multiple providers**: Anthropic, OpenAI and Google models per scenario
        - **Google sign-in**: Guest accounts merge into the signed-in account
        - **Research tools**: Observation notes and a telemetry dashboard
        """,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.registry = registry or build_registry(settings)
    app.state.conversation_service = ConversationService(app.state.registry)

    # ============================================================
    # Middleware Configuration (last added runs first)
    # ============================================================

    app.add_middleware(SecurityHeadersMiddleware)

    if settings.enable_audit_logging:
        app.add_middleware(AuditMiddleware)
        logger.info("Audit logging middleware enabled")

    if settings.is_development():
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[settings.frontend_url],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        logger.warning(f"CORS configured for development (origin {settings.frontend_url})")

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_key,
        max_age=settings.session_max_age_seconds,
        same_site="lax",
        https_only=settings.is_production(),
    )

    # ============================================================
    # Exception Handlers
    # ============================================================

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        """Handle rate limit exceeded errors."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers={"Retry-After": str(exc.retry_after)}
        )

    @app.exception_handler(CoachException)
    async def coach_exception_handler(request: Request, exc: CoachException):
        """Handle all application exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict()
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Handle uncaught exceptions globally.

        Detailed error information is only included in development mode.
        """
        logger.exception(f"Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": str(exc) if settings.is_development() else None,
                "timestamp": utcnow().isoformat()
            }
        )

    # ============================================================
    # Routers
    # ============================================================

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(session_router)
    app.include_router(invitation_router)
    app.include_router(conversation_router)
    app.include_router(scenario_router)
    app.include_router(observation_router)
    app.include_router(telemetry_router)
    app.include_router(user_router)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": "Conversation Coach API",
            "version": __version__,
            "documentation": "/docs",
            "health": "/health"
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "coach.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().is_development()
    )

"""
Health Check Routes - System health and monitoring endpoints.

These endpoints are used for:
1. Load balancer health checks
2. Container liveness/readiness probes
3. Quick system status verification
"""
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from coach import __version__
from coach.core.config import get_settings
from coach.core.logging_config import get_logger
from coach.core.startup_checks import configured_providers
from coach.database.connection import get_database
from coach.models.schemas import HealthResponse

logger = get_logger(__name__)

router = APIRouter(
    prefix="/health",
    tags=["Health"],
)


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check endpoint",
    description="""
    Returns 200 OK while the process is up.

    Does not touch the database or the LLM providers; see /health/ready.
    """
)
async def health_check() -> HealthResponse:
    logger.debug("Health check requested")
    return HealthResponse(status="healthy", version=__version__)


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness check endpoint",
    description="""
    Returns whether the service is ready to accept requests.

    Verifies database connectivity and lists the AI providers that have an
    API key. Responds 503 when the database is unreachable.
    """
)
async def readiness_check():
    """
    Perform a readiness check.

    Provider keys are only listed, not exercised: a missing key fails the
    requests that need that provider, not the whole service.
    """
    logger.debug("Readiness check requested")

    database_ok = get_database().check_connection()
    response = HealthResponse(
        status="ready" if database_ok else "unavailable",
        version=__version__,
        database="ok" if database_ok else "unreachable",
        ai_providers=configured_providers(get_settings()),
    )
    if not database_ok:
        return JSONResponse(status_code=503, content=response.model_dump(mode="json"))
    return response

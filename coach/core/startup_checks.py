"""
Startup validation and diagnostic logging.

Configuration problems are reported once, in a framed block, when the API
starts. Only a missing SESSION_KEY stops the process; everything else
degrades the dependent subsystem.
"""
from dataclasses import dataclass, field
from typing import List

from coach.core.config import Settings
from coach.core.exceptions import ConfigurationError
from coach.core.logging_config import get_logger

logger = get_logger(__name__)

DIVIDER = "-" * 60


@dataclass
class DiagnosticResult:
    """Outcome of the configuration checks."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def can_start(self) -> bool:
        return not self.errors


def configured_providers(settings: Settings) -> List[str]:
    """Names of the LLM providers that have an API key."""
    keys = {
        "anthropic": settings.anthropic_api_key,
        "openai": settings.openai_api_key,
        "google": settings.google_ai_api_key,
    }
    return [name for name, key in keys.items() if key]


def run_startup_checks(settings: Settings) -> DiagnosticResult:
    """Inspect settings and collect errors and warnings."""
    result = DiagnosticResult()

    if not settings.session_key:
        result.errors.append(
            "SESSION_KEY is required.\n"
            "  Generate one with: openssl rand -hex 32"
        )

    google_values = {
        "GOOGLE_CLIENT_ID": settings.google_client_id,
        "GOOGLE_CLIENT_SECRET": settings.google_client_secret,
        "GOOGLE_CALLBACK_URL": settings.google_callback_url,
    }
    missing_google = [name for name, value in google_values.items() if not value]
    if 0 < len(missing_google) < len(google_values):
        result.warnings.append(
            f"Incomplete Google OAuth config: missing {', '.join(missing_google)}.\n"
            "  OAuth login will not work. Set all three or remove all."
        )
    elif missing_google:
        result.warnings.append(
            "Google OAuth not configured.\n"
            "  Users won't be able to sign in."
        )

    providers = configured_providers(settings)
    if not providers:
        result.warnings.append(
            "No AI API keys configured. Conversations will fail until one of\n"
            "  ANTHROPIC_API_KEY, OPENAI_API_KEY or GOOGLE_AI_API_KEY is set."
        )
    elif "anthropic" not in providers:
        result.warnings.append(
            "ANTHROPIC_API_KEY not set.\n"
            f"  Configured providers: {', '.join(providers)}\n"
            "  Scenarios with bare model names default to Anthropic and will fail."
        )

    if not settings.database_url:
        result.errors.append("DATABASE_URL not set.")

    return result


def log_startup_diagnostics(settings: Settings) -> DiagnosticResult:
    """
    Log the diagnostics and raise if the app cannot start.

    Raises:
        ConfigurationError: If a fatal setting is missing
    """
    result = run_startup_checks(settings)

    if result.errors:
        logger.error(DIVIDER)
        logger.error("CONFIGURATION ERRORS")
        for error in result.errors:
            logger.error(error)
        logger.error(DIVIDER)

    if result.warnings:
        logger.warning(DIVIDER)
        logger.warning("CONFIGURATION WARNINGS")
        for warning in result.warnings:
            logger.warning(warning)
        logger.warning(DIVIDER)

    if not result.can_start:
        raise ConfigurationError("; ".join(e.splitlines()[0] for e in result.errors))

    if not result.warnings:
        logger.info("Environment configuration OK")

    return result


def ai_provider_summary(settings: Settings) -> str:
    """Human readable list of configured AI providers for logging."""
    providers = configured_providers(settings)
    return ", ".join(providers) if providers else "None configured"

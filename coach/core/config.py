"""
Configuration management via environment variables.

This module loads configuration from .env file using python-dotenv.
All configuration values are accessed through the Settings class.

Secrets are optional at this layer. Each subsystem decides what a missing
value means:
- SESSION_KEY      : required, checked when the app is created
- Google OAuth     : warns at startup and disables the OAuth routes
- LLM provider keys: fail on first use of that provider only
"""
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


# Load .env file from project root
# This must happen before accessing os.environ
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    frozen=True makes the dataclass immutable, preventing accidental
    modification of settings at runtime.

    Attributes:
        app_name: Application identifier for logging
        app_env: Environment name (development, staging, production)
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        database_url: SQLAlchemy connection string
        session_key: Secret used to sign the session cookie
        anthropic_api_key: API key for Anthropic (optional)
        openai_api_key: API key for OpenAI (optional)
        google_ai_api_key: API key for Google Gemini (optional)
        google_client_id: Google OAuth client id (optional)
        google_client_secret: Google OAuth client secret (optional)
        google_callback_url: Google OAuth redirect URI (optional)
        frontend_url: Where OAuth callbacks redirect the browser
    """
    # Application settings
    app_name: str
    app_env: str
    log_level: str

    # Database settings
    database_url: Optional[str]

    # Session cookie
    session_key: Optional[str]
    session_max_age_seconds: int

    # LLM settings
    anthropic_api_key: Optional[str]
    openai_api_key: Optional[str]
    google_ai_api_key: Optional[str]

    # OAuth settings
    google_client_id: Optional[str]
    google_client_secret: Optional[str]
    google_callback_url: Optional[str]
    frontend_url: str

    # Safety settings
    rate_limit_per_minute: int
    enable_audit_logging: bool

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env.lower() == "development"

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    def oauth_configured(self) -> bool:
        """All three Google OAuth values are present."""
        return bool(
            self.google_client_id
            and self.google_client_secret
            and self.google_callback_url
        )


def _get_env(key: str, default: Optional[str] = None) -> str:
    """
    Get environment variable with optional default.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Environment variable value

    Raises:
        ValueError: If required variable is not set and no default provided
    """
    value = os.environ.get(key, default)
    if value is None:
        raise ValueError(
            f"Required environment variable '{key}' is not set. "
            f"Please check your .env file."
        )
    return value


def _get_optional(key: str) -> Optional[str]:
    """Get an environment variable, treating empty strings as unset."""
    value = os.environ.get(key, "").strip()
    return value or None


def normalize_database_url(database_url: Optional[str]) -> Optional[str]:
    """
    Fix URL dialects that SQLAlchemy does not accept as-is.

    Hosted Postgres providers hand out ``postgres://`` URLs, and some append
    ``ssl-mode`` which the Python drivers reject.
    """
    if not database_url:
        return None
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    if "ssl-mode=" in database_url:
        database_url = re.sub(r"[?&]ssl-mode=[^&]+", "", database_url)
        if "?" not in database_url and "&" in database_url:
            database_url = database_url.replace("&", "?", 1)
    return database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are read once per process; tests call
    ``get_settings.cache_clear()`` after changing the environment.

    Returns:
        Settings instance with all configuration values
    """
    return Settings(
        # Application
        app_name=_get_env("APP_NAME", "ConversationCoach"),
        app_env=_get_env("APP_ENV", "development"),
        log_level=_get_env("LOG_LEVEL", "INFO"),

        # Database
        database_url=normalize_database_url(_get_optional("DATABASE_URL")),

        # Session
        session_key=_get_optional("SESSION_KEY"),
        session_max_age_seconds=int(_get_env("SESSION_MAX_AGE_SECONDS", str(7 * 24 * 60 * 60))),

        # LLM
        anthropic_api_key=_get_optional("ANTHROPIC_API_KEY"),
        openai_api_key=_get_optional("OPENAI_API_KEY"),
        google_ai_api_key=_get_optional("GOOGLE_AI_API_KEY"),

        # OAuth
        google_client_id=_get_optional("GOOGLE_CLIENT_ID"),
        google_client_secret=_get_optional("GOOGLE_CLIENT_SECRET"),
        google_callback_url=_get_optional("GOOGLE_CALLBACK_URL"),
        frontend_url=_get_env("FRONTEND_URL", "http://localhost:5173"),

        # Safety
        rate_limit_per_minute=int(_get_env("RATE_LIMIT_PER_MINUTE", "30")),
        enable_audit_logging=_get_env("ENABLE_AUDIT_LOGGING", "true").lower() == "true",
    )

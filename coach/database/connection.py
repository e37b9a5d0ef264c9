"""
Database Connection Management.

This module owns the SQLAlchemy engine and the unit-of-work session scope.
Every service function receives a Session from get_session(); the context
manager commits on success and rolls back on error, so a multi-statement
operation run inside one scope is atomic.
"""
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from coach.core.config import get_settings
from coach.core.exceptions import ConfigurationError, DatabaseError
from coach.core.logging_config import get_logger

logger = get_logger(__name__)


def _engine_kwargs(db_url: str) -> dict:
    """Pool settings per dialect."""
    if db_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in db_url or db_url in ("sqlite://", "sqlite+pysqlite://"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


class DatabaseConnection:
    """
    Manages database connections and session lifecycle.

    Example:
        >>> db = DatabaseConnection("sqlite://")
        >>> with db.get_session() as session:
        ...     session.execute(text("SELECT 1"))
    """

    def __init__(self, connection_url: Optional[str] = None):
        """
        Initialize database engine with connection pooling.

        Args:
            connection_url: Optional connection URL. If not provided, uses settings.

        Raises:
            ConfigurationError: If no URL is given and DATABASE_URL is unset
        """
        db_url = connection_url or get_settings().database_url
        if not db_url:
            raise ConfigurationError("DATABASE_URL environment variable is required")

        self.engine = create_engine(db_url, echo=False, **_engine_kwargs(db_url))

        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

        logger.info(f"Database connection initialized: {db_url.split('@')[-1] if '@' in db_url else db_url.split(':')[0]}")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic cleanup.

        The session is committed when the block exits normally and rolled
        back on any exception, then closed.

        Yields:
            SQLAlchemy Session object

        Raises:
            DatabaseError: A statement or the commit failed in the driver
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error, rolling back: {e}")
            raise DatabaseError() from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self) -> bool:
        """
        Test database connectivity.

        Returns:
            True if connection is healthy, False otherwise.
        """
        try:
            with self.get_session() as session:
                session.execute(text("SELECT 1"))
            logger.debug("Database connection check: OK")
            return True
        except (DatabaseError, SQLAlchemyError) as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    def close(self) -> None:
        """Close all connections in the pool."""
        self.engine.dispose()
        logger.info("Database connections closed")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Module-level instance (singleton pattern)
_db_connection: Optional[DatabaseConnection] = None


def get_database() -> DatabaseConnection:
    """
    Get or create the database connection instance.

    This lazy initialization prevents connection before app startup.
    """
    global _db_connection
    if _db_connection is None:
        _db_connection = DatabaseConnection()
    return _db_connection


def set_database(db: Optional[DatabaseConnection]) -> None:
    """Replace the process-wide connection (tests inject an in-memory one)."""
    global _db_connection
    _db_connection = db

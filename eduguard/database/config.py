"""
Database configuration and session management

Environment:
- DATABASE_URL: SQLAlchemy URL (default sqlite:///./eduguard.db)
- DB_ECHO: "true" to log every SQL statement
"""
import logging
import os
import threading
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .base import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./eduguard.db"


class DatabaseConfig:
    """Owns the engine and the session factory for one database URL"""

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        self.database_url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
        if echo is None:
            echo = os.getenv("DB_ECHO", "false").lower() == "true"
        self.echo = echo

        engine_kwargs = {"echo": self.echo, "future": True}
        if self.database_url.startswith("sqlite"):
            # Background detection runs use their own session on another thread
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs.update(pool_size=5, max_overflow=10, pool_pre_ping=True)

        self.engine: Engine = create_engine(self.database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info(
            "Database configured",
            extra={"database_url": _mask_url(self.database_url), "echo": self.echo}
        )

    def create_all(self) -> None:
        from . import models  # noqa: F401  registers tables on Base.metadata
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        return self.SessionLocal()


def _mask_url(url: str) -> str:
    """Hide the password part of a database URL for logs"""
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


_db_config: Optional[DatabaseConfig] = None
_db_config_lock = threading.Lock()


def init_database(database_url: Optional[str] = None, echo: Optional[bool] = None,
                  create_tables: bool = True) -> DatabaseConfig:
    """
    (Re)initialize the global database configuration.

    Args:
        database_url: Overrides DATABASE_URL
        echo: Overrides DB_ECHO
        create_tables: Run create_all() on the new engine

    Returns:
        The active DatabaseConfig
    """
    global _db_config
    with _db_config_lock:
        _db_config = DatabaseConfig(database_url, echo)
        if create_tables:
            _db_config.create_all()
    return _db_config


def get_db_config() -> DatabaseConfig:
    """Global DatabaseConfig, created from the environment on first use"""
    global _db_config
    if _db_config is None:
        with _db_config_lock:
            if _db_config is None:
                _db_config = DatabaseConfig()
                _db_config.create_all()
    return _db_config


def get_session_factory() -> sessionmaker:
    return get_db_config().SessionLocal


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Transactional scope for scripts and background jobs.

    Repositories commit their own writes; this only guarantees rollback
    on error and that the session is closed.
    """
    session = get_db_config().get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request"""
    session = get_db_config().get_session()
    try:
        yield session
    finally:
        session.close()

"""Database connection and session management."""

import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from config.monitoring_config import MonitoringSettings, monitoring_settings
from .models import Base

# Configure logging
logger = logging.getLogger(__name__)


def build_engine(settings: Optional[MonitoringSettings] = None) -> Engine:
    """Create the metrics store engine from settings."""
    settings = settings or monitoring_settings

    if settings.is_sqlite:
        return create_engine(
            settings.metrics_database_url,
            echo=settings.db_echo,
            connect_args={"check_same_thread": False}
        )

    return create_engine(
        settings.metrics_database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,  # Verify connections before using
        echo=settings.db_echo
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    """Configure a session factory for the given engine."""
    return sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False
    )


@contextmanager
def session_scope(session_factory: sessionmaker):
    """
    Context manager for database sessions.

    Usage:
        with session_scope(factory) as db:
            # Use db session
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine) -> None:
    """Initialize database tables."""
    try:
        Base.metadata.create_all(bind=bind)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Error creating database tables: {e}")
        raise


def check_database_connection(bind: Engine) -> bool:
    """
    Check if database connection is working.

    Returns:
        True if connection is successful, False otherwise
    """
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False

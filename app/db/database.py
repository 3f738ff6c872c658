"""
Database connection and session management.
Provides SQLAlchemy engine, session factory, and base class.
"""
import logging
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from core.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite (local development and tests) gets a thread-agnostic connection and
    foreign-key enforcement; server databases get a pre-pinged pool.
    """
    if database_url.startswith("sqlite"):
        sqlite_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=settings.log_level == "DEBUG"
        )

        @event.listens_for(sqlite_engine, "connect")
        def enable_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return sqlite_engine

    return create_engine(
        database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.log_level == "DEBUG"
    )


engine = build_engine(settings.database_url)

# Create SessionLocal class for database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()


def init_db() -> None:
    """
    Create all tables that do not exist yet.
    Called once from the application lifespan.
    """
    from db import models  # Import models to register them with Base
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")

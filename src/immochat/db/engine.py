"""
Database engine and session management
PostgreSQL in production; SQLite is accepted for development and tests
"""
import logging
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from ..config import config

logger = logging.getLogger(__name__)


def create_database_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for the configured backend"""
    if database_url.startswith("postgresql"):
        engine = create_engine(
            database_url,
            pool_pre_ping=True,  # Verify connections before using (reconnects if needed)
            pool_size=5,
            max_overflow=10,
            pool_recycle=1800,
            pool_timeout=10,
            connect_args={
                "connect_timeout": 5,
                "application_name": "immochat_auth",
            }
        )
        logger.info("PostgreSQL engine created")
    else:
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
        logger.info("SQLite engine created")

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on"""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


engine = create_database_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None) -> None:
    """Create all tables that do not exist yet (Alembic owns migrations for existing databases)"""
    from .base import Base
    from . import models  # noqa: F401  (register every table on Base.metadata)

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info("Database tables ensured")

"""
Database connection and setup
SQLAlchemy engine + session factory for the cache tables
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from clanboard.models import Base
from config.settings import settings

logger = logging.getLogger("db")


def make_engine(database_url: str) -> Engine:
    """Create an engine; SQLite needs cross-thread access for the worker pools."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=False  # Set to True to see SQL queries
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


engine = make_engine(settings.database_url)

# Session factory
SessionLocal = make_session_factory(engine)


def init_db(bind: Engine = None):
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"Database initialized at: {bind.url!r}")


def get_db():
    """
    Get database session - use in FastAPI dependencies
    Yields a session and closes it when done
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session():
    """
    Get a database session for scripts
    Remember to close() when done
    """
    return SessionLocal()

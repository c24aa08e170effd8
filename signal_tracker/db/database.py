"""Database engine and session factory"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """
    Create a database engine.

    SQLite connections are shared across threads (the HTTP layer and the
    background services run on different threads); in-memory SQLite uses
    a single static connection so every session sees the same database.

    Args:
        database_url: SQLAlchemy connection URL

    Returns:
        Engine
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session maker bound to an engine"""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine
    )


def create_all_tables(engine: Engine) -> None:
    """Create all tables that do not exist yet"""
    # Register models on Base.metadata
    from signal_tracker.db import models  # noqa: F401
    Base.metadata.create_all(bind=engine)

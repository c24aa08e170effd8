"""Database session utilities"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session, sessionmaker


@contextmanager
def get_db_session(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_session(factory) as db:
            # Use db session
            pass
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

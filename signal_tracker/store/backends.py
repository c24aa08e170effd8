"""Key/value backends behind the signal store"""
import logging
import threading
from typing import Dict, List, Optional, Protocol

from sqlalchemy import select, text

from signal_tracker.db.database import create_all_tables, create_db_engine, create_session_factory
from signal_tracker.db.models.kv_entry import KeyValueEntry
from signal_tracker.db.session import get_db_session

logger = logging.getLogger(__name__)


class KeyValueBackend(Protocol):
    """Protocol for durable string key/value storage"""

    def get(self, key: str) -> Optional[str]:
        """Stored value, or None when the key is absent"""
        ...

    def set(self, key: str, value: str) -> None:
        """Replace the whole value stored under a key"""
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> List[str]:
        ...

    def ping(self) -> bool:
        """True when the backend is reachable"""
        ...


class InMemoryBackend:
    """Process-local backend, used for tests and STORE__URL=memory"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def ping(self) -> bool:
        return True


class SqlAlchemyBackend:
    """
    Backend storing each key as one row of the kv_entries table.

    Every call runs in its own short session, so a value is always
    replaced as a whole.
    """

    def __init__(self, database_url: str):
        """
        Initialize backend and create the table if needed.

        Args:
            database_url: SQLAlchemy connection URL
        """
        self.database_url = database_url
        self.engine = create_db_engine(database_url)
        self._session_factory = create_session_factory(self.engine)
        create_all_tables(self.engine)
        logger.info(f"SQL store ready ({self.engine.url.get_backend_name()})")

    def get(self, key: str) -> Optional[str]:
        with get_db_session(self._session_factory) as db:
            entry = db.get(KeyValueEntry, key)
            return entry.value if entry is not None else None

    def set(self, key: str, value: str) -> None:
        with get_db_session(self._session_factory) as db:
            entry = db.get(KeyValueEntry, key)
            if entry is None:
                db.add(KeyValueEntry(key=key, value=value))
            else:
                entry.value = value

    def delete(self, key: str) -> None:
        with get_db_session(self._session_factory) as db:
            entry = db.get(KeyValueEntry, key)
            if entry is not None:
                db.delete(entry)

    def keys(self, prefix: str = "") -> List[str]:
        with get_db_session(self._session_factory) as db:
            stmt = select(KeyValueEntry.key).where(KeyValueEntry.key.startswith(prefix)).order_by(KeyValueEntry.key)
            return list(db.scalars(stmt))

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        self.engine.dispose()


def create_backend(url: str) -> KeyValueBackend:
    """Backend for a STORE__URL value ("memory" or an SQLAlchemy URL)"""
    if url == "memory":
        return InMemoryBackend()
    return SqlAlchemyBackend(url)

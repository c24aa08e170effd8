"""Key/value entry database model"""
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, DateTime
from signal_tracker.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyValueEntry(Base):
    """
    One logical store key (an active partition, the completed archive or
    an auto-generation preference) holding a JSON document.
    """
    __tablename__ = "kv_entries"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<KeyValueEntry(key={self.key}, updated_at={self.updated_at})>"

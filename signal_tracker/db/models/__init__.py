"""Database models"""
from signal_tracker.db.models.kv_entry import KeyValueEntry

__all__ = [
    "KeyValueEntry",
]

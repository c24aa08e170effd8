"""Signal store: active partitions, completed archive and auto-generation preferences"""
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from signal_tracker.config.timezone import utc_now
from signal_tracker.core.domain.signal import Signal, SignalCategory, SignalStatus, normalize_record
from signal_tracker.core.state_machine.signal_state_machine import realized_pnl
from signal_tracker.store.backends import KeyValueBackend
from signal_tracker.utils.errors import CorruptRecordError

logger = logging.getLogger(__name__)

ACTIVE_PREFIX = "active:"
COMPLETED_KEY = "completed"
AUTOGEN_PREFIX = "autogen:"


@dataclass
class AutoGenPreference:
    """Per-category auto-generation preference"""
    enabled: bool = False
    last_run: Optional[datetime] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
        }

    @classmethod
    def from_record(cls, raw: Any) -> "AutoGenPreference":
        if not isinstance(raw, dict):
            raise CorruptRecordError(f"Expected an object, got {type(raw).__name__}")
        last_run = raw.get("last_run")
        if isinstance(last_run, (int, float)):
            # Legacy epoch milliseconds; 0 means never
            last_run = datetime.fromtimestamp(last_run / 1000, tz=timezone.utc) if last_run else None
        elif isinstance(last_run, str):
            last_run = datetime.fromisoformat(last_run)
        return cls(enabled=bool(raw.get("enabled", False)), last_run=last_run)


def _as_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def dedupe(signals: Iterable[Signal]) -> List[Signal]:
    """Drop repeated ids, keeping the first occurrence"""
    seen = set()
    unique = []
    for signal in signals:
        if signal.id in seen:
            continue
        seen.add(signal.id)
        unique.append(signal)
    return unique


class SignalStore:
    """
    Logical persistence for signals over a key/value backend.

    Each category's active set lives under its own key and is always
    read, modified and written back whole while holding that key's lock,
    so writers on one category never disturb another and never merge a
    partial partition.
    """

    def __init__(self, backend: KeyValueBackend, clock: Callable[[], datetime] = utc_now):
        """
        Initialize store.

        Args:
            backend: Key/value backend
            clock: Source of "now" for archival timestamps
        """
        self.backend = backend
        self.clock = clock
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, key: str) -> threading.RLock:
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    @staticmethod
    def _active_key(category: SignalCategory) -> str:
        return f"{ACTIVE_PREFIX}{SignalCategory(category).value}"

    def _read_json(self, key: str, default: Any) -> Any:
        raw = self.backend.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Corrupt JSON under {key!r}, ignoring it: {e}", extra={'component': 'SignalStore'})
            return default

    def _load_signals(self, key: str) -> List[Signal]:
        records = self._read_json(key, [])
        if not isinstance(records, list):
            logger.error(f"Expected a list under {key!r}, got {type(records).__name__}")
            return []

        signals = []
        for raw in records:
            try:
                signals.append(normalize_record(raw))
            except CorruptRecordError as e:
                logger.warning(f"Skipping unreadable record under {key!r}: {e}", extra={'component': 'SignalStore'})
        return dedupe(signals)

    def _save_signals(self, key: str, signals: Iterable[Signal]) -> None:
        self.backend.set(key, json.dumps([s.to_record() for s in signals]))

    # Active partitions

    def get_active(self, category: Optional[SignalCategory] = None) -> List[Signal]:
        """
        Active signals for one category, or for all categories.

        Args:
            category: Category to read (None for all)

        Returns:
            Signals, deduplicated by id
        """
        if category is not None:
            key = self._active_key(category)
            with self._lock(key):
                return self._load_signals(key)

        signals: List[Signal] = []
        for cat in SignalCategory:
            signals.extend(self.get_active(cat))
        return signals

    def replace_active(self, category: SignalCategory, signals: Iterable[Signal]) -> None:
        """Replace a category's whole active set"""
        key = self._active_key(category)
        signals = dedupe(signals)
        with self._lock(key):
            self._save_signals(key, signals)
        logger.info(f"Active set for {SignalCategory(category).value} replaced with {len(signals)} signals")

    def upsert_one(self, signal: Signal, category: SignalCategory, create_missing: bool = True) -> bool:
        """
        Replace one signal in a category's active set by id.

        Args:
            signal: Updated signal
            category: Category partition
            create_missing: Append the signal when its id is not present

        Returns:
            True if the partition was written
        """
        key = self._active_key(category)
        with self._lock(key):
            signals = self._load_signals(key)
            for i, existing in enumerate(signals):
                if existing.id == signal.id:
                    signals[i] = signal
                    break
            else:
                if not create_missing:
                    return False
                signals.append(signal)
            self._save_signals(key, signals)
            return True

    def archive(
        self,
        signal_id: str,
        category: SignalCategory,
        final: Optional[Signal] = None,
    ) -> Optional[Signal]:
        """
        Move one signal from its active partition to the completed archive.

        Realized P/L is recomputed from the level actually reached (TP3 if
        hit, else TP2; the stop-loss for STOPPED signals). A signal still
        ACTIVE is closed as COMPLETED at its current price.

        Args:
            signal_id: Signal id
            category: Category partition holding the signal
            final: Latest state of the signal, when the caller has a newer
                snapshot than the stored one

        Returns:
            The archived signal, or None if the id was not active or was
            already in the archive
        """
        category = SignalCategory(category)
        key = self._active_key(category)
        with self._lock(key):
            signals = self._load_signals(key)
            index = next((i for i, s in enumerate(signals) if s.id == signal_id), None)
            if index is None:
                logger.debug(f"Signal {signal_id} not active in {category.value}; nothing to archive")
                return None

            record = final if final is not None and final.id == signal_id else signals[index]
            if record.status == SignalStatus.ACTIVE:
                record = record.model_copy(update={"status": SignalStatus.COMPLETED})

            archived = record.model_copy(update={
                "profit_loss_percentage": realized_pnl(record),
                "completed_at": self.clock(),
                "archived_category": category,
            })

            with self._lock(COMPLETED_KEY):
                completed = self._load_signals(COMPLETED_KEY)
                duplicate = any(s.id == signal_id for s in completed)
                if not duplicate:
                    completed.append(archived)
                    self._save_signals(COMPLETED_KEY, completed)

            del signals[index]
            self._save_signals(key, signals)

        if duplicate:
            logger.warning(
                f"Signal {signal_id} already archived; keeping the first entry",
                extra={'category': category.value, 'signal_id': signal_id},
            )
            return None

        logger.info(
            f"Archived {archived.status.value} signal {signal_id} ({archived.pair}) "
            f"with P/L {archived.profit_loss_percentage:+.2f}%",
            extra={'category': category.value, 'pair': archived.pair},
        )
        return archived

    def get_completed(self) -> List[Signal]:
        """Completed archive in archival order, deduplicated by id"""
        with self._lock(COMPLETED_KEY):
            return self._load_signals(COMPLETED_KEY)

    def clear_expired(self, max_age_hours: float = 24) -> int:
        """
        Remove terminal signals older than the threshold from active partitions.

        Returns:
            Number of signals removed
        """
        cutoff = _as_utc(self.clock()) - timedelta(hours=max_age_hours)
        removed = 0
        for category in SignalCategory:
            key = self._active_key(category)
            with self._lock(key):
                signals = self._load_signals(key)
                kept = [
                    s for s in signals
                    if not (s.status.is_terminal and _as_utc(s.created_at) < cutoff)
                ]
                if len(kept) != len(signals):
                    removed += len(signals) - len(kept)
                    self._save_signals(key, kept)
        if removed:
            logger.info(f"Cleared {removed} expired terminal signals")
        return removed

    def clear_all(self) -> None:
        """Empty every active partition (the archive is kept)"""
        for category in SignalCategory:
            self.replace_active(category, [])

    @staticmethod
    def category_of(signal: Signal) -> SignalCategory:
        return signal.archived_category or signal.category

    # Auto-generation preferences

    def get_autogen_preferences(self, category: SignalCategory) -> AutoGenPreference:
        key = f"{AUTOGEN_PREFIX}{SignalCategory(category).value}"
        with self._lock(key):
            raw = self._read_json(key, None)
            if raw is None:
                return AutoGenPreference()
            try:
                return AutoGenPreference.from_record(raw)
            except (CorruptRecordError, ValueError) as e:
                logger.warning(f"Unreadable preferences under {key!r}: {e}")
                return AutoGenPreference()

    def _update_autogen(self, category: SignalCategory, **changes) -> AutoGenPreference:
        key = f"{AUTOGEN_PREFIX}{SignalCategory(category).value}"
        with self._lock(key):
            prefs = self.get_autogen_preferences(category)
            for name, value in changes.items():
                setattr(prefs, name, value)
            self.backend.set(key, json.dumps(prefs.to_record()))
            return prefs

    def set_autogen_enabled(self, category: SignalCategory, enabled: bool) -> AutoGenPreference:
        return self._update_autogen(category, enabled=enabled)

    def touch_last_run(self, category: SignalCategory, when: Optional[datetime] = None) -> AutoGenPreference:
        """Record the start of a generation run"""
        return self._update_autogen(category, last_run=when or self.clock())


def accuracy_report(signals: Iterable[Signal]) -> Dict[str, Any]:
    """
    Success statistics over a set of signals.

    A COMPLETED signal with positive P/L counts as a success; STOPPED
    signals and non-positive completions count as failures.
    """
    signals = list(signals)
    completed = [s for s in signals if s.status == SignalStatus.COMPLETED]
    stopped = [s for s in signals if s.status == SignalStatus.STOPPED]
    active = [s for s in signals if s.status == SignalStatus.ACTIVE]

    successes = sum(1 for s in completed if s.profit_loss_percentage > 0)
    closed = len(completed) + len(stopped)
    failures = closed - successes
    pnl_values = [s.profit_loss_percentage for s in completed + stopped]

    return {
        "total": len(signals),
        "successes": successes,
        "failures": failures,
        "active": len(active),
        "accuracy_rate": round(successes / closed * 100, 2) if closed else 0.0,
        "average_pnl": round(sum(pnl_values) / len(pnl_values), 4) if pnl_values else 0.0,
    }

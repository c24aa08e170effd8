"""Property-based tests for the signal store"""
import json
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings, strategies as st

from signal_tracker.core.domain.signal import (
    MarketKind,
    SignalCategory,
    SignalDirection,
    SignalStatus,
    VenueKind,
    normalize_record,
)
from signal_tracker.core.state_machine.signal_state_machine import advance
from signal_tracker.store.backends import InMemoryBackend, SqlAlchemyBackend, create_backend
from signal_tracker.store.signal_store import (
    AutoGenPreference,
    SignalStore,
    accuracy_report,
)
from signal_tracker.utils.errors import CorruptRecordError

from conftest import NOW, build_signal


# Feature: signal-tracker, Property 14: Deduplication on read
@given(ids=st.lists(st.sampled_from(["A", "B", "C", "D"]), min_size=1, max_size=12))
@settings(max_examples=100)
def test_active_reads_are_deduplicated(ids):
    """
    Feature: signal-tracker, Property 14: Deduplication on read

    An active set holding repeated ids reads back with one entry per id,
    keeping the first occurrence.
    """
    backend = InMemoryBackend()
    records = [build_signal(signal_id=i, confidence=n).to_record() for n, i in enumerate(ids)]
    backend.set("active:standard", json.dumps(records))
    store = SignalStore(backend)

    signals = store.get_active(SignalCategory.STANDARD)

    assert [s.id for s in signals] == list(dict.fromkeys(ids))
    first_confidence = {i: n for n, i in reversed(list(enumerate(ids)))}
    for signal in signals:
        assert signal.confidence == first_confidence[signal.id]


def test_replace_active_deduplicates(store):
    store.replace_active(SignalCategory.FAST, [build_signal("X"), build_signal("X", confidence=10)])
    signals = store.get_active(SignalCategory.FAST)
    assert len(signals) == 1
    assert signals[0].confidence == 75


# Feature: signal-tracker, Property 15: Archive round-trip
def test_archive_round_trip_realizes_tp2(store):
    """
    Feature: signal-tracker, Property 15: Archive round-trip

    Archiving a signal completed through TP2 yields exactly one completed
    entry whose realized P/L is taken at TP2 (6.5%).
    """
    signal = build_signal("SIG-TP2")
    store.replace_active(SignalCategory.STANDARD, [signal])
    completed = advance(signal, 107.0, now=NOW)

    archived = store.archive("SIG-TP2", SignalCategory.STANDARD, final=completed)

    assert archived.profit_loss_percentage == pytest.approx(6.5)
    assert archived.completed_at == NOW
    assert archived.archived_category == SignalCategory.STANDARD
    assert store.get_active(SignalCategory.STANDARD) == []

    history = store.get_completed()
    assert [s.id for s in history] == ["SIG-TP2"]
    assert history[0].profit_loss_percentage == pytest.approx(6.5)
    assert history[0].status == SignalStatus.COMPLETED


def test_archive_without_snapshot_uses_stored_state(store):
    stored = advance(build_signal("SIG-TP3"), 110.0, now=NOW)
    store.replace_active(SignalCategory.FLOW, [stored])

    archived = store.archive("SIG-TP3", SignalCategory.FLOW)

    assert archived.profit_loss_percentage == pytest.approx(8.5)
    assert store.category_of(archived) == SignalCategory.FLOW


def test_archive_active_signal_closes_it(store):
    store.replace_active(SignalCategory.STANDARD, [build_signal("OPEN", current_price=101.0)])
    archived = store.archive("OPEN", SignalCategory.STANDARD)
    assert archived.status == SignalStatus.COMPLETED
    assert archived.profit_loss_percentage == pytest.approx(1.0)


def test_archive_is_idempotent(store):
    signal = build_signal("ONCE")
    store.replace_active(SignalCategory.STANDARD, [signal])
    assert store.archive("ONCE", SignalCategory.STANDARD) is not None
    assert store.archive("ONCE", SignalCategory.STANDARD) is None

    # Re-activated duplicate id is not appended twice and is reported as None
    store.replace_active(SignalCategory.STANDARD, [signal])
    assert store.archive("ONCE", SignalCategory.STANDARD) is None
    assert [s.id for s in store.get_completed()] == ["ONCE"]
    assert store.get_active(SignalCategory.STANDARD) == []


# Feature: signal-tracker, Property 16: Sibling category isolation
@given(
    category=st.sampled_from(list(SignalCategory)),
    count=st.integers(min_value=0, max_value=5),
)
@settings(max_examples=50)
def test_category_operations_do_not_touch_siblings(category, count):
    """
    Feature: signal-tracker, Property 16: Sibling category isolation

    Replacing, upserting or archiving in one category leaves every other
    category byte-for-byte unchanged.
    """
    backend = InMemoryBackend()
    store = SignalStore(backend, clock=lambda: NOW)
    for cat in SignalCategory:
        store.replace_active(cat, [build_signal(f"{cat.value}-seed", category=cat)])
    siblings = {c: backend.get(f"active:{c.value}") for c in SignalCategory if c != category}

    store.replace_active(category, [build_signal(f"{category.value}-{n}", category=category) for n in range(count)])
    store.upsert_one(build_signal(f"{category.value}-new", category=category), category)
    store.archive(f"{category.value}-new", category)

    for cat, raw in siblings.items():
        assert backend.get(f"active:{cat.value}") == raw
    assert len(store.get_active(category)) == count


def test_upsert_one_replaces_by_id(store):
    store.replace_active(SignalCategory.STANDARD, [build_signal("A"), build_signal("B")])

    assert store.upsert_one(build_signal("B", current_price=105.0), SignalCategory.STANDARD)
    assert not store.upsert_one(build_signal("C"), SignalCategory.STANDARD, create_missing=False)
    assert store.upsert_one(build_signal("C"), SignalCategory.STANDARD)

    signals = store.get_active(SignalCategory.STANDARD)
    assert [s.id for s in signals] == ["A", "B", "C"]
    assert signals[1].current_price == 105.0


def test_get_active_all_categories(store):
    store.replace_active(SignalCategory.STANDARD, [build_signal("S")])
    store.replace_active(SignalCategory.FAST, [build_signal("F", category=SignalCategory.FAST)])
    assert {s.id for s in store.get_active()} == {"S", "F"}


def test_corrupt_records_are_skipped():
    backend = InMemoryBackend({
        "active:standard": json.dumps([
            build_signal("GOOD").to_record(),
            {"id": "BROKEN", "pair": "ETH/USDT"},
            "not an object",
        ]),
        "active:fast": "{not json",
        "completed": json.dumps({"unexpected": "shape"}),
    })
    store = SignalStore(backend)

    assert [s.id for s in store.get_active(SignalCategory.STANDARD)] == ["GOOD"]
    assert store.get_active(SignalCategory.FAST) == []
    assert store.get_completed() == []


def test_clear_expired_removes_old_terminal_signals(store):
    old = NOW - timedelta(hours=30)
    store.replace_active(SignalCategory.STANDARD, [
        build_signal("OLD-STOPPED", created_at=old, status=SignalStatus.STOPPED),
        build_signal("OLD-ACTIVE", created_at=old),
        build_signal("NEW-COMPLETED", status=SignalStatus.COMPLETED),
    ])

    assert store.clear_expired(24) == 1
    assert {s.id for s in store.get_active(SignalCategory.STANDARD)} == {"OLD-ACTIVE", "NEW-COMPLETED"}


def test_clear_all_keeps_archive(store):
    store.replace_active(SignalCategory.STANDARD, [build_signal("A"), build_signal("B")])
    store.archive("A", SignalCategory.STANDARD)
    store.clear_all()
    assert store.get_active() == []
    assert [s.id for s in store.get_completed()] == ["A"]


def test_autogen_preferences(store):
    assert store.get_autogen_preferences(SignalCategory.FAST) == AutoGenPreference()

    store.set_autogen_enabled(SignalCategory.FAST, True)
    store.touch_last_run(SignalCategory.FAST)
    prefs = store.get_autogen_preferences(SignalCategory.FAST)
    assert prefs.enabled
    assert prefs.last_run == NOW
    assert store.get_autogen_preferences(SignalCategory.STANDARD).enabled is False


def test_legacy_autogen_preferences():
    backend = InMemoryBackend({
        "autogen:standard": json.dumps({"enabled": True, "last_run": 1717243200000}),
        "autogen:flow": json.dumps(["garbage"]),
    })
    store = SignalStore(backend)
    prefs = store.get_autogen_preferences(SignalCategory.STANDARD)
    assert prefs.enabled
    assert prefs.last_run == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    assert store.get_autogen_preferences(SignalCategory.FLOW) == AutoGenPreference()


def test_normalize_legacy_record():
    """camelCase records from older clients migrate into the current model"""
    legacy = {
        "id": "LEGACY-1",
        "pair": "BTC/USDT",
        "direction": "long",
        "entryPrice": 100,
        "stopLoss": 97,
        "takeProfit": 110,
        "marketType": "FUTURES",
        "exchangeType": "crypto",
        "timestamp": "2024-06-01T12:00:00Z",
        "rationalePoints": ["Whale outflow from exchange"],
        "status": "active",
    }

    signal = normalize_record(legacy)

    assert signal.direction == SignalDirection.LONG
    assert signal.market_kind == MarketKind.DERIVATIVE
    assert signal.venue == VenueKind.CRYPTO
    assert signal.category == SignalCategory.FLOW
    assert signal.current_price == signal.highest_price == signal.lowest_price == 100
    assert signal.take_profit_1 == pytest.approx(102.5)
    assert signal.take_profit_2 == pytest.approx(106.5)
    assert signal.take_profit_3 == pytest.approx(108.5)
    assert not signal.tp1_hit


def test_normalize_infers_fast_category():
    record = build_signal("SC").to_record()
    del record["category"]
    record["isScalping"] = True
    assert normalize_record(record).category == SignalCategory.FAST


def test_normalize_rejects_garbage():
    with pytest.raises(CorruptRecordError):
        normalize_record(["not", "a", "dict"])
    with pytest.raises(CorruptRecordError):
        normalize_record({"id": "X", "entryPrice": "abc"})


def test_sql_backend_round_trip():
    backend = create_backend("sqlite:///:memory:")
    assert isinstance(backend, SqlAlchemyBackend)
    assert backend.ping()

    store = SignalStore(backend, clock=lambda: NOW)
    store.replace_active(SignalCategory.STANDARD, [build_signal("SQL-1"), build_signal("SQL-2")])
    store.archive("SQL-1", SignalCategory.STANDARD, final=advance(build_signal("SQL-1"), 107.0, now=NOW))

    assert [s.id for s in store.get_active(SignalCategory.STANDARD)] == ["SQL-2"]
    assert store.get_completed()[0].profit_loss_percentage == pytest.approx(6.5)
    assert backend.keys("active:") == ["active:standard"]

    backend.delete("active:standard")
    assert backend.get("active:standard") is None
    backend.close()


def test_accuracy_report():
    signals = [
        build_signal("W1", status=SignalStatus.COMPLETED, profit_loss_percentage=6.5),
        build_signal("W2", status=SignalStatus.COMPLETED, profit_loss_percentage=8.5),
        build_signal("L1", status=SignalStatus.STOPPED, profit_loss_percentage=-3.0),
        build_signal("A1"),
    ]
    report = accuracy_report(signals)
    assert report["total"] == 4
    assert report["successes"] == 2
    assert report["failures"] == 1
    assert report["active"] == 1
    assert report["accuracy_rate"] == pytest.approx(66.67)
    assert report["average_pnl"] == pytest.approx(4.0)
    assert accuracy_report([])["accuracy_rate"] == 0.0

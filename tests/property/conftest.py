"""Shared fixtures for property tests"""
from datetime import datetime, timedelta, timezone

import pytest

from signal_tracker.core.domain.signal import (
    MarketKind,
    Signal,
    SignalCategory,
    SignalDirection,
)
from signal_tracker.store.backends import InMemoryBackend
from signal_tracker.store.signal_store import SignalStore


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def build_signal(
    signal_id: str = "SIG-1",
    pair: str = "BTC/USDT",
    direction: SignalDirection = SignalDirection.BUY,
    entry: float = 100.0,
    category: SignalCategory = SignalCategory.STANDARD,
    created_at: datetime = NOW,
    expires_in: timedelta = timedelta(hours=24),
    **overrides,
) -> Signal:
    """
    Signal with the reference ladder: entry 100, TP1 102.5, TP2 106.5,
    TP3 108.5, SL 97 (mirrored for short directions).
    """
    is_long = direction.is_long
    sign = 1 if is_long else -1
    fields = dict(
        id=signal_id,
        pair=pair,
        category=category,
        market_kind=MarketKind.SPOT if direction in (SignalDirection.BUY, SignalDirection.SELL) else MarketKind.DERIVATIVE,
        direction=direction,
        entry_price=entry,
        stop_loss=entry - sign * 3.0,
        take_profit=entry + sign * 10.0,
        take_profit_1=entry + sign * 2.5,
        take_profit_2=entry + sign * 6.5,
        take_profit_3=entry + sign * 8.5,
        current_price=entry,
        highest_price=entry,
        lowest_price=entry,
        confidence=75,
        created_at=created_at,
        expires_at=created_at + expires_in,
    )
    fields.update(overrides)
    return Signal(**fields)


@pytest.fixture
def make_signal():
    return build_signal


@pytest.fixture
def store():
    return SignalStore(InMemoryBackend(), clock=lambda: NOW)

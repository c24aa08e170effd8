"""Property-based tests for the signal lifecycle state machine"""
from datetime import timedelta

import pytest
from hypothesis import given, settings, strategies as st

from signal_tracker.core.domain.signal import SignalDirection, SignalStatus
from signal_tracker.core.state_machine.signal_state_machine import (
    advance,
    check_ladder,
    realized_exit_price,
    realized_pnl,
    reconcile,
)
from signal_tracker.utils.errors import LadderInvariantError

from conftest import NOW, build_signal


def run_path(signal, prices, now=NOW):
    states = []
    for price in prices:
        signal = advance(signal, price, now=now)
        states.append(signal)
    return states


# Feature: signal-tracker, Property 8: Partial progress scenario
def test_long_path_partial_progress():
    """
    Feature: signal-tracker, Property 8: Partial progress scenario

    Entry 100, TP 102.5/106.5/108.5, SL 97; path [101, 103, 99]: TP1 is hit
    after tick 2 and the signal stays ACTIVE after tick 3.
    """
    states = run_path(build_signal(), [101.0, 103.0, 99.0])

    assert not states[0].tp1_hit
    assert states[1].tp1_hit and not states[1].tp2_hit
    assert states[1].tp1_hit_time == NOW

    final = states[2]
    assert final.status == SignalStatus.ACTIVE
    assert final.tp1_hit and not final.tp2_hit
    assert final.lowest_price == 99.0
    assert final.highest_price == 103.0
    assert final.current_price == 99.0
    assert final.profit_loss_percentage == pytest.approx(-1.0)


# Feature: signal-tracker, Property 9: TP2 completion scenario
def test_long_path_completes_at_tp2():
    """
    Feature: signal-tracker, Property 9: TP2 completion scenario

    A single tick at 107 sets TP1 and TP2 and completes; the realized P/L is
    taken at TP2: (106.5 - 100) / 100 = 6.5%.
    """
    final = advance(build_signal(), 107.0, now=NOW)

    assert final.tp1_hit and final.tp2_hit and not final.tp3_hit
    assert final.status == SignalStatus.COMPLETED
    assert realized_exit_price(final) == 106.5
    assert realized_pnl(final) == pytest.approx(6.5)


def test_tp3_realizes_at_tp3():
    final = advance(build_signal(), 110.0, now=NOW)
    assert final.tp3_hit
    assert realized_pnl(final) == pytest.approx(8.5)


# Feature: signal-tracker, Property 10: Short stop scenario
def test_short_path_stops_out():
    """
    Feature: signal-tracker, Property 10: Short stop scenario

    Short entry 100 with SL 103; a tick at 104 stops the signal with no TP flags.
    """
    signal = build_signal(direction=SignalDirection.SHORT)
    assert signal.stop_loss == 103.0

    final = advance(signal, 104.0, now=NOW)

    assert final.status == SignalStatus.STOPPED
    assert not (final.tp1_hit or final.tp2_hit or final.tp3_hit)
    assert realized_exit_price(final) == 103.0
    assert realized_pnl(final) == pytest.approx(-3.0)


def test_short_path_completes_on_the_way_down():
    signal = build_signal(direction=SignalDirection.SHORT)
    final = advance(signal, 93.0, now=NOW)
    assert final.tp1_hit and final.tp2_hit and not final.tp3_hit
    assert final.status == SignalStatus.COMPLETED
    assert realized_pnl(final) == pytest.approx(6.5)


def test_stop_loss_wins_over_same_tick_completion():
    """An extremum beyond TP2 and a tick beyond the stop resolve to STOPPED"""
    signal = build_signal(highest_price=107.0)

    final = advance(signal, 96.0, now=NOW)

    assert final.tp2_hit
    assert final.status == SignalStatus.STOPPED


def test_tp1_alone_does_not_complete():
    final = advance(build_signal(), 103.0, now=NOW)
    assert final.tp1_hit
    assert final.status == SignalStatus.ACTIVE


def test_expiry_completes_regardless_of_price():
    signal = build_signal(expires_in=timedelta(hours=1))
    final = advance(signal, 100.5, now=NOW + timedelta(hours=2))
    assert final.status == SignalStatus.COMPLETED
    assert not final.tp1_hit
    # Expired signals realize at the current price
    assert realized_pnl(final) == pytest.approx(0.5)


def test_expiry_with_naive_timestamps():
    signal = build_signal(expires_at=NOW.replace(tzinfo=None) + timedelta(minutes=5))
    assert advance(signal, 100.0, now=NOW + timedelta(minutes=10)).status == SignalStatus.COMPLETED


def test_terminal_signals_are_unchanged():
    stopped = advance(build_signal(), 96.0, now=NOW)
    assert stopped.status == SignalStatus.STOPPED
    assert advance(stopped, 120.0, now=NOW) is stopped
    assert reconcile(stopped, 120.0, now=NOW) is stopped


def test_advance_does_not_mutate_input():
    signal = build_signal()
    advance(signal, 107.0, now=NOW)
    assert signal.status == SignalStatus.ACTIVE
    assert not signal.tp1_hit
    assert signal.current_price == 100.0


price_paths = st.lists(st.floats(min_value=90.0, max_value=112.0, allow_nan=False), min_size=1, max_size=40)


# Feature: signal-tracker, Property 11: Monotonic hit flags
@given(prices=price_paths, is_long=st.booleans())
@settings(max_examples=200)
def test_hit_flags_are_monotonic(prices, is_long):
    """
    Feature: signal-tracker, Property 11: Monotonic hit flags

    Once a TP flag is set it is never cleared, flags are set in ladder order,
    and a terminal status never changes.
    """
    direction = SignalDirection.BUY if is_long else SignalDirection.SHORT
    signal = build_signal(direction=direction)
    previous = signal

    for price in prices:
        current = advance(previous, price, now=NOW)
        for level in (1, 2, 3):
            if getattr(previous, f"tp{level}_hit"):
                assert getattr(current, f"tp{level}_hit")
        if previous.status.is_terminal:
            assert current == previous
        check_ladder(current)
        previous = current


# Feature: signal-tracker, Property 12: Status reasons
@given(prices=price_paths, is_long=st.booleans())
@settings(max_examples=200)
def test_terminal_status_has_a_reason(prices, is_long):
    """
    Feature: signal-tracker, Property 12: Status reasons

    COMPLETED (before expiry) only with TP2 or TP3 hit; STOPPED only when
    the adverse extremum crossed the stop.
    """
    direction = SignalDirection.BUY if is_long else SignalDirection.SHORT
    final = run_path(build_signal(direction=direction), prices)[-1]

    if final.status == SignalStatus.COMPLETED:
        assert final.tp2_hit or final.tp3_hit
    if final.status == SignalStatus.STOPPED:
        if is_long:
            assert final.lowest_price <= final.stop_loss
        else:
            assert final.highest_price >= final.stop_loss


# Feature: signal-tracker, Property 13: Idempotent non-crossing ticks
@given(
    first=st.floats(min_value=98.0, max_value=102.0),
    second=st.floats(min_value=98.0, max_value=102.0),
)
@settings(max_examples=100)
def test_non_crossing_tick_is_idempotent(first, second):
    """
    Feature: signal-tracker, Property 13: Idempotent non-crossing ticks

    A tick inside the already-seen range that crosses nothing changes only
    the current price and P/L.
    """
    widened = advance(build_signal(), 98.0, now=NOW)
    widened = advance(widened, 102.0, now=NOW)

    a = advance(widened, first, now=NOW)
    b = advance(a, second, now=NOW)

    ignore = {"current_price", "profit_loss_percentage"}
    assert a.model_dump(exclude=ignore) == widened.model_dump(exclude=ignore)
    assert b.model_dump(exclude=ignore) == a.model_dump(exclude=ignore)
    assert b.current_price == second


def test_reconcile_tp3_sets_every_flag():
    final = reconcile(build_signal(), 109.0, now=NOW)
    assert final.tp1_hit and final.tp2_hit and final.tp3_hit
    assert final.tp1_hit_time == final.tp3_hit_time == NOW
    assert final.status == SignalStatus.COMPLETED
    assert realized_pnl(final) == pytest.approx(8.5)


def test_reconcile_tp2_and_tp1():
    tp2 = reconcile(build_signal(), 107.0, now=NOW)
    assert tp2.tp1_hit and tp2.tp2_hit and not tp2.tp3_hit
    assert tp2.status == SignalStatus.COMPLETED

    tp1 = reconcile(build_signal(), 103.0, now=NOW)
    assert tp1.tp1_hit and not tp1.tp2_hit
    assert tp1.status == SignalStatus.ACTIVE


def test_reconcile_stop_and_expiry():
    assert reconcile(build_signal(), 96.0, now=NOW).status == SignalStatus.STOPPED

    expired = reconcile(build_signal(expires_in=timedelta(hours=1)), 100.0, now=NOW + timedelta(hours=3))
    assert expired.status == SignalStatus.COMPLETED
    assert not expired.tp1_hit


def test_check_ladder_rejects_inconsistent_signals():
    with pytest.raises(LadderInvariantError):
        check_ladder(build_signal(take_profit_2=101.0))
    with pytest.raises(LadderInvariantError):
        check_ladder(build_signal(stop_loss=100.5))
    with pytest.raises(LadderInvariantError):
        check_ladder(build_signal(tp2_hit=True))
    with pytest.raises(LadderInvariantError):
        check_ladder(build_signal(direction=SignalDirection.SELL))

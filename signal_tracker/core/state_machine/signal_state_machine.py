"""Signal lifecycle state machine"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from signal_tracker.config.timezone import utc_now
from signal_tracker.core.domain.signal import Signal, SignalStatus
from signal_tracker.utils.errors import LadderInvariantError

logger = logging.getLogger(__name__)

TP_LEVELS = (1, 2, 3)


def _crossed(signal: Signal, level: Optional[float], extremum: float) -> bool:
    """Whether an extremum has reached a level in the signal's profit direction"""
    if level is None:
        return False
    return extremum >= level if signal.is_long else extremum <= level


def _stop_crossed(signal: Signal, extremum: float) -> bool:
    return extremum <= signal.stop_loss if signal.is_long else extremum >= signal.stop_loss


def _expired(signal: Signal, now: datetime) -> bool:
    if signal.expires_at is None:
        return False
    # Naive timestamps are UTC
    return _as_utc(now) >= _as_utc(signal.expires_at)


def _as_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def advance(signal: Signal, new_price: float, now: Optional[datetime] = None) -> Signal:
    """
    Apply one price tick to an ACTIVE signal.

    State transition rules:
    - ACTIVE -> STOPPED: the adverse extremum crossed the stop-loss
      (checked before completion, so it wins on a tick that crosses both)
    - ACTIVE -> COMPLETED: TP2 or TP3 hit, or the expiry deadline passed
    - COMPLETED / STOPPED are terminal; the signal comes back unchanged

    Hit flags are monotonic: once set they are never cleared.

    Args:
        signal: Current signal
        new_price: Latest price
        now: Tick time (defaults to current UTC time)

    Returns:
        Updated copy of the signal
    """
    if signal.status.is_terminal:
        return signal

    now = now or utc_now()
    highest = max(signal.highest_price, new_price)
    lowest = min(signal.lowest_price, new_price)
    favourable = highest if signal.is_long else lowest
    adverse = lowest if signal.is_long else highest

    update: Dict[str, Any] = {
        "current_price": new_price,
        "highest_price": highest,
        "lowest_price": lowest,
    }

    hits = {}
    for level in TP_LEVELS:
        already = getattr(signal, f"tp{level}_hit")
        target = getattr(signal, f"take_profit_{level}")
        hit = already or _crossed(signal, target, favourable)
        hits[level] = hit
        if hit and not already:
            update[f"tp{level}_hit"] = True
            update[f"tp{level}_hit_time"] = now
            logger.info(f"Signal {signal.id} ({signal.pair}): TP{level} hit at {target}")

    status = SignalStatus.ACTIVE
    if _stop_crossed(signal, adverse):
        status = SignalStatus.STOPPED
        logger.info(f"Signal {signal.id} ({signal.pair}): stop-loss hit at {signal.stop_loss}")
    elif hits[2] or hits[3]:
        status = SignalStatus.COMPLETED

    if status == SignalStatus.ACTIVE and _expired(signal, now):
        status = SignalStatus.COMPLETED
        logger.info(f"Signal {signal.id} ({signal.pair}): expired")

    update["status"] = status
    update["profit_loss_percentage"] = signal.pnl_at(new_price)
    return signal.model_copy(update=update)


def reconcile(signal: Signal, price: float, now: Optional[datetime] = None) -> Signal:
    """
    Catch-up transition after a monitoring gap.

    There is no extremum history for the gap, so only the current price is
    compared against the ladder: stop-loss first, then the farthest take
    profit reached. Crossing TP3 sets all three flags at once; TP2 sets
    TP1 and TP2. Expiry is applied last.

    Args:
        signal: Current signal
        price: Current price
        now: Reconciliation time (defaults to current UTC time)

    Returns:
        Updated copy of the signal
    """
    if signal.status.is_terminal:
        return signal

    now = now or utc_now()
    update: Dict[str, Any] = {
        "current_price": price,
        "highest_price": max(signal.highest_price, price),
        "lowest_price": min(signal.lowest_price, price),
    }

    status = SignalStatus.ACTIVE
    if _stop_crossed(signal, price):
        status = SignalStatus.STOPPED
    else:
        reached = 0
        for level in reversed(TP_LEVELS):
            if _crossed(signal, getattr(signal, f"take_profit_{level}"), price):
                reached = level
                break
        for level in range(1, reached + 1):
            if not getattr(signal, f"tp{level}_hit"):
                update[f"tp{level}_hit"] = True
                update[f"tp{level}_hit_time"] = now
        if reached >= 2 or signal.tp2_hit or signal.tp3_hit:
            status = SignalStatus.COMPLETED

    if status == SignalStatus.ACTIVE and _expired(signal, now):
        status = SignalStatus.COMPLETED

    update["status"] = status
    update["profit_loss_percentage"] = signal.pnl_at(price)
    return signal.model_copy(update=update)


def realized_exit_price(signal: Signal) -> float:
    """
    Price the signal is considered closed at.

    COMPLETED: TP3 if hit, else TP2 if hit, else the current price (expiry).
    STOPPED: the stop-loss. ACTIVE: the current price.
    """
    if signal.status == SignalStatus.STOPPED:
        return signal.stop_loss
    if signal.status == SignalStatus.COMPLETED:
        if signal.tp3_hit and signal.take_profit_3 is not None:
            return signal.take_profit_3
        if signal.tp2_hit and signal.take_profit_2 is not None:
            return signal.take_profit_2
    return signal.current_price


def realized_pnl(signal: Signal) -> float:
    """Signed P/L percentage at the realized exit price"""
    return signal.pnl_at(realized_exit_price(signal))


def check_ladder(signal: Signal) -> None:
    """
    Raise if the signal's ladder is inconsistent.

    Raises:
        LadderInvariantError: On an unordered ladder or misplaced stop
    """
    signal.validate_ladder()
    for level in TP_LEVELS[1:]:
        if getattr(signal, f"tp{level}_hit") and not getattr(signal, f"tp{level - 1}_hit"):
            raise LadderInvariantError(
                f"Signal {signal.id}: TP{level} hit without TP{level - 1}"
            )

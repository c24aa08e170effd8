"""Stop-loss / take-profit ladder estimation"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from signal_tracker.core.domain.signal import TP_LADDER_FRACTIONS
from signal_tracker.core.indicators.technical import BollingerBands

logger = logging.getLogger(__name__)

# Primary target never closer than this fraction of entry
MIN_TP_DISTANCE_PCT = 0.005
# Stop never closer than this fraction of entry
MIN_SL_DISTANCE_PCT = 0.002


@dataclass(frozen=True)
class PriceLadder:
    """Stop-loss and the take-profit ladder for one signal"""
    stop_loss: float
    take_profit: float
    take_profit_1: float
    take_profit_2: float
    take_profit_3: float


def _split_ladder(entry: float, take_profit: float, is_long: bool) -> Tuple[float, float, float, float]:
    """Apply the minimum distance, then subdivide entry -> target into TP1..TP3"""
    sign = 1 if is_long else -1
    distance = (take_profit - entry) * sign
    min_distance = entry * MIN_TP_DISTANCE_PCT
    if distance < min_distance:
        distance = min_distance
    tps = tuple(entry + sign * distance * f for f in TP_LADDER_FRACTIONS)
    return (entry + sign * distance,) + tps


def estimate_atr_ladder(
    entry: float,
    is_long: bool,
    atr_value: float,
    confidence: float,
    sentiment: float = 0.0,
    bands: Optional[BollingerBands] = None,
) -> PriceLadder:
    """
    Volatility-based ladder for the standard profile.

    Higher confidence means a tighter stop and a wider target; sentiment
    agreeing beyond +/-30 widens the target further.

    Args:
        entry: Entry price
        is_long: Long-equivalent direction
        atr_value: Volatility unit (ATR)
        confidence: Confidence 0-100
        sentiment: Sentiment score -100..100
        bands: Bollinger bands; the stop is pushed beyond them

    Returns:
        PriceLadder
    """
    conf = confidence / 100
    sentiment_adj = abs(sentiment) / 100
    sl_multiplier = 1.5 - conf * 0.3
    tp_multiplier = 3.5 + conf * 2.5

    if is_long:
        if sentiment > 30:
            tp_multiplier += sentiment_adj * 2
        stop_loss = entry - atr_value * sl_multiplier
        take_profit = entry + atr_value * tp_multiplier
        if bands is not None:
            stop_loss = min(stop_loss, bands.lower * 0.995)
            if sentiment > 50:
                take_profit = max(take_profit, bands.upper * 0.98)
        stop_loss = min(stop_loss, entry * (1 - MIN_SL_DISTANCE_PCT))
    else:
        if sentiment < -30:
            tp_multiplier += sentiment_adj * 2
        stop_loss = entry + atr_value * sl_multiplier
        take_profit = entry - atr_value * tp_multiplier
        if bands is not None:
            stop_loss = max(stop_loss, bands.upper * 1.005)
            if sentiment < -50:
                take_profit = min(take_profit, bands.lower * 1.02)
        stop_loss = max(stop_loss, entry * (1 + MIN_SL_DISTANCE_PCT))

    primary, tp1, tp2, tp3 = _split_ladder(entry, take_profit, is_long)

    logger.debug(
        f"ATR ladder: entry={entry:.6f}, atr={atr_value:.6f}, SL={stop_loss:.6f}, "
        f"TP1={tp1:.6f}, TP2={tp2:.6f}, TP3={tp3:.6f}"
    )
    return PriceLadder(stop_loss, primary, tp1, tp2, tp3)


def estimate_fixed_ladder(
    entry: float,
    is_long: bool,
    tp_pcts: Tuple[float, float, float],
    sl_pct: float,
) -> PriceLadder:
    """
    Fixed-percentage ladder for the fast and flow profiles.

    Args:
        entry: Entry price
        is_long: Long-equivalent direction
        tp_pcts: TP1/TP2/TP3 distances as fractions of entry (ascending)
        sl_pct: Stop distance as a fraction of entry

    Returns:
        PriceLadder whose primary target is TP3
    """
    sign = 1 if is_long else -1
    tp1, tp2, tp3 = (entry * (1 + sign * pct) for pct in tp_pcts)
    stop_loss = entry * (1 - sign * sl_pct)
    return PriceLadder(stop_loss, tp3, tp1, tp2, tp3)

"""Candlestick pattern detection on close-price candles"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candle:
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def bullish(self) -> bool:
        return self.close > self.open

    @property
    def bearish(self) -> bool:
        return self.close < self.open


@dataclass(frozen=True)
class Pattern:
    """Detected candlestick pattern"""
    name: str
    sentiment: str  # "BULLISH", "BEARISH" or "NEUTRAL"
    strength: float
    reliability: float


def build_candles(prices: Sequence[float], volumes: Sequence[float], period: int = 3) -> List[Candle]:
    """
    Group consecutive closes into non-overlapping synthetic candles.

    Args:
        prices: Close prices, oldest first
        volumes: Volumes aligned with prices
        period: Closes per candle

    Returns:
        Candles, oldest first
    """
    if not prices or period <= 0:
        return []

    df = pd.DataFrame({
        'close': list(prices),
        'volume': list(volumes)[:len(prices)] + [0.0] * max(0, len(prices) - len(volumes)),
    })
    # Align groups so the newest close ends the last candle
    offset = len(df) % period
    df = df.iloc[offset:].reset_index(drop=True)
    groups = df.groupby(df.index // period)

    candles = []
    for _, group in groups:
        candles.append(Candle(
            open=float(group['close'].iloc[0]),
            high=float(group['close'].max()),
            low=float(group['close'].min()),
            close=float(group['close'].iloc[-1]),
            volume=float(group['volume'].mean()),
        ))
    return candles


def _engulfing(prev: Candle, cur: Candle) -> Optional[Pattern]:
    if prev.bearish and cur.bullish and cur.open <= prev.close and cur.close >= prev.open:
        strength = min(100.0, cur.body / prev.body * 50) if prev.body else 75.0
        return Pattern("Bullish Engulfing", "BULLISH", strength, 75)
    if prev.bullish and cur.bearish and cur.open >= prev.close and cur.close <= prev.open:
        strength = min(100.0, cur.body / prev.body * 50) if prev.body else 75.0
        return Pattern("Bearish Engulfing", "BEARISH", strength, 75)
    return None


def _hammer_or_star(candle: Candle) -> Optional[Pattern]:
    if candle.range <= 0 or candle.body <= 0:
        return None
    lower = min(candle.open, candle.close) - candle.low
    upper = candle.high - max(candle.open, candle.close)
    small_body = candle.body / candle.range < 0.3

    if small_body and lower >= candle.body * 2 and upper < candle.body * 0.3:
        return Pattern("Hammer", "BULLISH", min(100.0, lower / candle.body * 20), 70)
    if small_body and upper >= candle.body * 2 and lower < candle.body * 0.3:
        return Pattern("Shooting Star", "BEARISH", min(100.0, upper / candle.body * 20), 70)
    return None


def _doji(candle: Candle) -> Optional[Pattern]:
    if candle.range > 0 and candle.body / candle.range < 0.1:
        return Pattern("Doji", "NEUTRAL", 65, 60)
    return None


def _three_candles(c1: Candle, c2: Candle, c3: Candle) -> Optional[Pattern]:
    if (c1.bullish and c2.bullish and c3.bullish
            and c2.close > c1.close and c3.close > c2.close):
        return Pattern("Three White Soldiers", "BULLISH", 85, 80)
    if (c1.bearish and c2.bearish and c3.bearish
            and c2.close < c1.close and c3.close < c2.close):
        return Pattern("Three Black Crows", "BEARISH", 85, 80)

    small_middle = c2.body < c1.body * 0.3
    if c1.bearish and small_middle and c3.bullish and c3.close > (c1.open + c1.close) / 2:
        return Pattern("Morning Star", "BULLISH", 80, 78)
    if c1.bullish and small_middle and c3.bearish and c3.close < (c1.open + c1.close) / 2:
        return Pattern("Evening Star", "BEARISH", 80, 78)
    return None


def detect_patterns(prices: Sequence[float], volumes: Sequence[float], period: int = 3) -> List[Pattern]:
    """Detect patterns completed by the most recent candle"""
    candles = build_candles(prices, volumes, period)
    if len(candles) < 3:
        return []

    c1, c2, c3 = candles[-3:]
    found = [
        _engulfing(c2, c3),
        _hammer_or_star(c3),
        _doji(c3),
        _three_candles(c1, c2, c3),
    ]
    return [p for p in found if p is not None]


def pattern_bias(patterns: Sequence[Pattern]) -> Optional[tuple]:
    """
    Reliability-weighted direction of the detected patterns.

    Returns:
        (direction, confidence) with direction "BULLISH" or "BEARISH",
        or None when the patterns carry no directional weight
    """
    bullish = sum(p.reliability * p.strength / 100 for p in patterns if p.sentiment == "BULLISH")
    bearish = sum(p.reliability * p.strength / 100 for p in patterns if p.sentiment == "BEARISH")
    if bullish == bearish:
        return None
    direction = "BULLISH" if bullish > bearish else "BEARISH"
    confidence = min(100.0, abs(bullish - bearish))
    return direction, confidence

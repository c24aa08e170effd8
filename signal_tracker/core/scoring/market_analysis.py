"""Broader market trend, risk score and market condition"""
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from signal_tracker.core.domain.signal import MarketCondition, MarketTrend, SignalDirection
from signal_tracker.core.indicators import technical

logger = logging.getLogger(__name__)


@dataclass
class MarketAnalysis:
    """
    Deterministic read of the broader market for one instrument.

    Attributes:
        composite_score: 0-100, 50 is neutral
        trend: Trend bucket derived from the composite score
        risk_score: 0-100, higher is riskier
        factors: Human-readable contributing factors
    """
    composite_score: float
    trend: MarketTrend
    risk_score: int
    factors: List[str] = field(default_factory=list)


def trend_from_score(score: float) -> MarketTrend:
    if score >= 70:
        return MarketTrend.STRONG_BULLISH
    if score >= 55:
        return MarketTrend.BULLISH
    if score >= 45:
        return MarketTrend.NEUTRAL
    if score >= 30:
        return MarketTrend.BEARISH
    return MarketTrend.STRONG_BEARISH


def risk_from_score(score: float) -> int:
    """Risk is highest when the composite score sits near neutral"""
    distance = abs(score - 50) / 50
    return round((1 - distance) * 60 + distance * 40)


def analyze_market(prices: Sequence[float], volumes: Sequence[float]) -> MarketAnalysis:
    """
    Score price structure, RSI, volume breakouts and the EMA stack.

    Args:
        prices: Close prices, oldest first
        volumes: Volumes aligned with prices

    Returns:
        MarketAnalysis
    """
    score = 50.0
    factors: List[str] = []

    if len(prices) < 2:
        return MarketAnalysis(score, MarketTrend.NEUTRAL, risk_from_score(score), factors)

    current, previous = prices[-1], prices[-2]
    recent = prices[-20:]
    recent_high, recent_low = max(recent), min(recent)

    if current > recent_high * 0.98:
        score += 10
        factors.append("Price near recent highs - bullish structure")
    elif current < recent_low * 1.02:
        score -= 10
        factors.append("Price near recent lows - bearish structure")

    rsi_value = technical.rsi(prices)
    if rsi_value < 35:
        score += 8
        factors.append(f"RSI oversold ({rsi_value:.1f}) - potential bounce")
    elif rsi_value > 65:
        score -= 8
        factors.append(f"RSI overbought ({rsi_value:.1f}) - correction risk")

    if volumes:
        avg_volume = sum(volumes) / len(volumes)
        if volumes[-1] > avg_volume * 1.5:
            if current > previous:
                score += 10
                factors.append("High volume breakout - strong bullish momentum")
            elif current < previous:
                score -= 10
                factors.append("High volume breakdown - strong bearish momentum")

    stack = technical.determine_trend(prices)
    if stack == "BULLISH":
        score += 10
        factors.append("EMA 9/21/50 stacked bullish")
    elif stack == "BEARISH":
        score -= 10
        factors.append("EMA 9/21/50 stacked bearish")

    score = max(0.0, min(100.0, score))
    return MarketAnalysis(
        composite_score=score,
        trend=trend_from_score(score),
        risk_score=risk_from_score(score),
        factors=factors,
    )


def is_counter_trend(direction: SignalDirection, trend: MarketTrend) -> bool:
    """Long into a bearish market, or short into a bullish one"""
    if direction.is_long:
        return trend in (MarketTrend.BEARISH, MarketTrend.STRONG_BEARISH)
    return trend in (MarketTrend.BULLISH, MarketTrend.STRONG_BULLISH)


def determine_market_condition(
    sentiment: float,
    current_volume: float,
    volume_avg: float,
    trend: MarketTrend,
) -> MarketCondition:
    """Classify the market regime used to size a signal's validity window"""
    if abs(sentiment) >= 60 and current_volume > volume_avg * 1.5:
        return MarketCondition.NEWS_DRIVEN
    if current_volume > volume_avg * 2:
        return MarketCondition.HIGH_VOLATILITY
    if trend in (MarketTrend.STRONG_BULLISH, MarketTrend.STRONG_BEARISH):
        return MarketCondition.TRENDING
    return MarketCondition.RANGING

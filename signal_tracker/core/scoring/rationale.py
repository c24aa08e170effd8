"""Human-readable rationale bullets attached to generated signals"""
from typing import List, Sequence

from signal_tracker.core.domain.signal import MarketTrend
from signal_tracker.core.indicators.technical import MacdResult
from signal_tracker.data.providers import FlowTransfer


def sentiment_label(sentiment: float) -> str:
    if sentiment > 50:
        return "strong bullish"
    if sentiment > 15:
        return "bullish"
    if sentiment < -50:
        return "strong bearish"
    if sentiment < -15:
        return "bearish"
    return "neutral"


def standard_rationale(
    sentiment: float,
    rsi: float,
    macd: MacdResult,
    current_volume: float,
    volume_avg: float,
    is_long: bool,
    trend: MarketTrend,
) -> List[str]:
    """Sentiment, technical and volume bullets for a standard signal"""
    trend_text = trend.value.replace("_", " ").lower()
    sentiment_text = f"Sentiment: {sentiment_label(sentiment)} ({sentiment:+.0f}) in a {trend_text} market"

    rsi_status = "overbought" if rsi > 65 else "oversold" if rsi < 35 else "neutral"
    macd_status = "bullish" if macd.macd > macd.signal else "bearish"
    technical_text = (
        f"Technical: RSI at {rsi:.1f} ({rsi_status}), MACD {macd_status} crossover - "
        f"{'buy' if is_long else 'sell'} signal"
    )

    volume_pct = round(current_volume / volume_avg * 100) if volume_avg else 100
    if volume_pct > 130:
        volume_text = "strong participation"
    elif volume_pct > 100:
        volume_text = "above-average"
    else:
        volume_text = "moderate"

    return [
        sentiment_text,
        technical_text,
        f"Volume: {volume_pct}% of average - {volume_text} supporting the move",
    ]


def fast_rationale(rsi: float, macd: MacdResult, volume_ratio: float, is_long: bool) -> List[str]:
    """Short reasons for a fast (scalping) signal"""
    reasons = []
    if is_long:
        if rsi < 40:
            reasons.append(f"RSI(7) oversold at {rsi:.1f}")
        if macd.histogram > 0:
            reasons.append("MACD bullish momentum")
        if volume_ratio >= 2:
            reasons.append("Strong buying volume")
    else:
        if rsi > 60:
            reasons.append(f"RSI(7) overbought at {rsi:.1f}")
        if macd.histogram < 0:
            reasons.append("MACD bearish momentum")
        if volume_ratio >= 2:
            reasons.append("Strong selling volume")
    reasons.append(f"Volume {volume_ratio:.1f}x average on 5m candles")
    return reasons


def flow_rationale(transfers: Sequence[FlowTransfer], rsi: float, is_long: bool) -> List[str]:
    """Reasons for a flow signal"""
    inflows = sum(1 for t in transfers if t.flow == "inflow")
    outflows = sum(1 for t in transfers if t.flow == "outflow")
    net_usd = sum(t.usd_value for t in transfers if t.flow == "outflow") - sum(
        t.usd_value for t in transfers if t.flow == "inflow"
    )

    reasons = [f"{len(transfers)} large on-chain transfers analyzed"]
    if is_long and outflows > inflows:
        reasons.append(f"{outflows} withdrawals from exchanges - accumulation")
    if not is_long and inflows > outflows:
        reasons.append(f"{inflows} deposits to exchanges - selling pressure")
    if is_long and rsi < 40:
        reasons.append(f"RSI oversold ({rsi:.0f})")
    if not is_long and rsi > 60:
        reasons.append(f"RSI overbought ({rsi:.0f})")
    reasons.append(f"Net exchange flow: ${net_usd / 1_000_000:+.1f}M")
    return reasons

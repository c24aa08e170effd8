"""Technical analysis indicators"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MacdResult:
    """MACD line, signal line and histogram for the latest bar"""
    macd: float
    signal: float
    histogram: float
    previous_histogram: float = 0.0


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _last(values: np.ndarray, default: float = 0.0) -> float:
    return float(values[-1]) if len(values) else default


def rsi(prices: Sequence[float], period: int = 14) -> float:
    """
    Relative Strength Index over the last ``period`` changes.

    Args:
        prices: Close prices, oldest first
        period: RSI period

    Returns:
        RSI in [0, 100]; 50 when the series is too short, 100 when there
        were no losses in the window
    """
    arr = _as_array(prices)
    if len(arr) < period + 1:
        return 50.0

    changes = np.diff(arr)[-period:]
    avg_gain = np.clip(changes, 0, None).sum() / period
    avg_loss = np.abs(np.clip(changes, None, 0)).sum() / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100 - 100 / (1 + rs))


def ema_series(prices: Sequence[float], period: int) -> np.ndarray:
    """
    EMA for every prefix of the series.

    The EMA is seeded with the SMA of the first ``period`` values, so
    entries before index ``period - 1`` are NaN.
    """
    arr = _as_array(prices)
    out = np.full(len(arr), np.nan)
    if period <= 0 or len(arr) < period:
        return out

    seeded = pd.Series(np.concatenate(([arr[:period].mean()], arr[period:])))
    out[period - 1:] = seeded.ewm(alpha=2 / (period + 1), adjust=False).mean().to_numpy()
    return out


def ema(prices: Sequence[float], period: int) -> float:
    """Exponential moving average; the last price when the series is short"""
    arr = _as_array(prices)
    if len(arr) == 0:
        return 0.0
    if len(arr) < period:
        return _last(arr)
    return float(ema_series(arr, period)[-1])


def sma(prices: Sequence[float], period: int) -> float:
    """Simple moving average; the last price when the series is short"""
    arr = _as_array(prices)
    if len(arr) == 0:
        return 0.0
    if len(arr) < period:
        return _last(arr)
    return float(arr[-period:].mean())


def macd(
    prices: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdResult:
    """
    MACD with a signal line that is a true EMA of the historical MACD line.

    Args:
        prices: Close prices, oldest first
        fast: Fast EMA period
        slow: Slow EMA period
        signal: Signal EMA period

    Returns:
        MacdResult; all zeros when fewer than ``slow`` prices exist. When
        fewer than ``signal`` MACD values exist the signal line equals the
        MACD line, so the histogram is 0.
    """
    arr = _as_array(prices)
    if len(arr) < slow:
        return MacdResult(0.0, 0.0, 0.0, 0.0)

    macd_line = (ema_series(arr, fast) - ema_series(arr, slow))[slow - 1:]

    if len(macd_line) < signal:
        current = float(macd_line[-1])
        return MacdResult(current, current, 0.0, 0.0)

    signal_line = ema_series(macd_line, signal)
    histogram = macd_line - signal_line

    previous = float(histogram[-2]) if len(histogram) >= 2 and not np.isnan(histogram[-2]) else 0.0
    return MacdResult(
        macd=float(macd_line[-1]),
        signal=float(signal_line[-1]),
        histogram=float(histogram[-1]),
        previous_histogram=previous,
    )


def bollinger_bands(prices: Sequence[float], period: int = 20, k: float = 2.0) -> BollingerBands:
    """
    Bollinger Bands using population std-dev over the last ``period`` prices.

    Below ``period`` prices the bands are flat at the last price.
    """
    arr = _as_array(prices)
    if len(arr) == 0:
        return BollingerBands(0.0, 0.0, 0.0)
    if len(arr) < period:
        last = _last(arr)
        return BollingerBands(upper=last, middle=last, lower=last)

    middle = sma(arr, period)
    window = arr[-period:]
    std = float(np.sqrt(((window - middle) ** 2).sum() / period))
    return BollingerBands(upper=middle + std * k, middle=middle, lower=middle - std * k)


def atr(
    prices: Sequence[float],
    period: int = 14,
    highs: Optional[Sequence[float]] = None,
    lows: Optional[Sequence[float]] = None,
) -> float:
    """
    Average True Range.

    Without highs/lows, the true range of a bar is the span between two
    consecutive closes. With them, the classic max(high-low, |high-prev|,
    |low-prev|) is used.

    Returns:
        ATR; 2% of the last price when the series is too short
    """
    arr = _as_array(prices)
    if len(arr) == 0:
        return 0.0
    if len(arr) < period + 1:
        return _last(arr) * 0.02

    close = pd.Series(arr)
    prev_close = close.shift()

    if highs is not None and lows is not None and len(highs) == len(arr) and len(lows) == len(arr):
        high = pd.Series(_as_array(highs))
        low = pd.Series(_as_array(lows))
        tr = pd.concat(
            [high - low, (high - prev_close).abs(), (low - prev_close).abs()],
            axis=1,
        ).max(axis=1)
    else:
        tr = (close - prev_close).abs()

    return float(tr.iloc[1:].tail(period).sum() / period)


def volume_average(volumes: Sequence[float], period: int = 20) -> float:
    """Mean volume over the last ``period`` bars; the last volume when short"""
    arr = _as_array(volumes)
    if len(arr) == 0:
        return 0.0
    if len(arr) < period:
        return _last(arr)
    return float(arr[-period:].mean())


def volatility(prices: Sequence[float]) -> float:
    """Standard deviation of simple returns"""
    arr = _as_array(prices)
    if len(arr) < 2:
        return 0.0
    returns = pd.Series(arr).pct_change().dropna()
    return float(returns.std(ddof=0))


def momentum(prices: Sequence[float], period: int = 10) -> float:
    """
    Average per-bar change over the last ``period`` prices as a percentage
    of the current price, scaled and clamped to [-5, 5].
    """
    arr = _as_array(prices)
    if len(arr) < period + 1 or arr[-1] == 0:
        return 0.0

    total_change = np.diff(arr[-period:]).sum()
    pct = (total_change / period) / arr[-1] * 100
    return float(max(-5.0, min(5.0, pct * 50)))


def rate_of_change(prices: Sequence[float], period: int = 10) -> float:
    """Percent change versus the price ``period`` bars ago"""
    arr = _as_array(prices)
    if len(arr) < period + 1 or arr[-period - 1] == 0:
        return 0.0
    old = arr[-period - 1]
    return float((arr[-1] - old) / old * 100)


def determine_trend(prices: Sequence[float]) -> str:
    """EMA 9/21/50 stack: 'BULLISH', 'BEARISH' or 'NEUTRAL'"""
    e9, e21, e50 = ema(prices, 9), ema(prices, 21), ema(prices, 50)
    if e9 > e21 > e50:
        return "BULLISH"
    if e9 < e21 < e50:
        return "BEARISH"
    return "NEUTRAL"


def support_resistance(prices: Sequence[float], lookback: int = 50) -> Dict[str, float]:
    """Lowest and highest price of the recent window"""
    arr = _as_array(prices)[-lookback:]
    if len(arr) == 0:
        return {"support": 0.0, "resistance": 0.0}
    return {"support": float(arr.min()), "resistance": float(arr.max())}


def fibonacci_levels(high: float, low: float) -> Dict[str, float]:
    """Retracement levels between a swing high and low"""
    diff = high - low
    return {
        "level_0": high,
        "level_236": high - diff * 0.236,
        "level_382": high - diff * 0.382,
        "level_500": high - diff * 0.5,
        "level_618": high - diff * 0.618,
        "level_786": high - diff * 0.786,
        "level_1000": low,
    }

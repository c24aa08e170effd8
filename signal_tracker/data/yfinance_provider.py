"""yfinance price feed implementation"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

import pandas as pd
import yfinance as yf
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from signal_tracker.core.domain.series import PriceSeries
from signal_tracker.core.domain.signal import MarketKind, VenueKind

logger = logging.getLogger(__name__)

# Quote currencies that trade at USD parity on yfinance crypto tickers
USD_STABLES = {"USDT", "USDC", "BUSD", "FDUSD", "USD"}

# Metals trade as futures on yfinance
SPECIAL_SYMBOLS = {
    "XAU/USD": "GC=F",
    "XAG/USD": "SI=F",
}

FOREX_CODES = {"EUR", "GBP", "JPY", "AUD", "NZD", "CAD", "CHF", "USD", "ZAR", "SEK", "NOK"}


def to_yf_symbol(pair: str) -> str:
    """
    Map an instrument pair to its yfinance ticker.

    Examples:
        BTC/USDT -> BTC-USD, EUR/USD -> EURUSD=X, XAU/USD -> GC=F
    """
    pair = pair.upper()
    if pair in SPECIAL_SYMBOLS:
        return SPECIAL_SYMBOLS[pair]

    base, _, quote = pair.partition("/")
    if not quote:
        return pair
    if base in FOREX_CODES and quote in FOREX_CODES:
        return f"{base}{quote}=X"
    if quote in USD_STABLES:
        quote = "USD"
    return f"{base}-{quote}"


def venue_of(pair: str) -> VenueKind:
    base, _, quote = pair.upper().partition("/")
    if pair.upper() in SPECIAL_SYMBOLS or (base in FOREX_CODES and quote in FOREX_CODES):
        return VenueKind.FOREX
    return VenueKind.CRYPTO


class YFinancePriceFeed:
    """
    Price feed using the yfinance library.

    Features:
    - Short-lived cache so a generation run does not refetch a frame
    - Blocking yfinance calls run in a worker thread
    - Retry logic with exponential backoff for connection errors
    """

    # Interval -> yfinance history period
    PERIOD_MAP = {
        "1m": "5d",
        "5m": "5d",
        "15m": "30d",
        "1h": "60d",
        "4h": "60d",
        "1d": "1y",
    }

    def __init__(self, cache_ttl: timedelta = timedelta(seconds=60)):
        """Initialize provider with empty cache"""
        self.cache_ttl = cache_ttl
        # Cache: (symbol, interval) -> DataFrame
        self._cache: Dict[Tuple[str, str], pd.DataFrame] = {}
        # Last fetch timestamp: (symbol, interval) -> datetime
        self._last_fetch: Dict[Tuple[str, str], datetime] = {}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((ConnectionError, TimeoutError))
    )
    async def _fetch_frame(self, symbol: str, interval: str) -> pd.DataFrame:
        """
        Fetch OHLCV candles from yfinance.

        Args:
            symbol: yfinance symbol
            interval: Bar interval

        Returns:
            DataFrame with columns: open, high, low, close, volume
        """
        cache_key = (symbol, interval)
        now = datetime.now(timezone.utc)
        if cache_key in self._cache and now - self._last_fetch[cache_key] < self.cache_ttl:
            return self._cache[cache_key]

        period = self.PERIOD_MAP.get(interval)
        if not period:
            raise ValueError(f"Unsupported interval: {interval}")

        def _download() -> pd.DataFrame:
            ticker = yf.Ticker(symbol)
            return ticker.history(period=period, interval=interval, auto_adjust=True, actions=False)

        df = await asyncio.to_thread(_download)
        if df.empty:
            logger.warning(f"No data returned for {symbol} {interval}")
            return pd.DataFrame()

        # Standardize column names
        df = df.rename(columns={
            'Open': 'open',
            'High': 'high',
            'Low': 'low',
            'Close': 'close',
            'Volume': 'volume'
        })
        df = df[['open', 'high', 'low', 'close', 'volume']].dropna(subset=['close'])
        df.index = pd.to_datetime(df.index)
        df.index.name = 'timestamp'

        self._cache[cache_key] = df
        self._last_fetch[cache_key] = now
        logger.debug(f"Fetched {len(df)} candles for {symbol} {interval}")
        return df

    async def history(
        self,
        pair: str,
        market_kind: MarketKind,
        points: int,
        interval: str = "1h",
    ) -> PriceSeries:
        symbol = to_yf_symbol(pair)
        df = await self._fetch_frame(symbol, interval)
        if df.empty:
            return PriceSeries(pair=pair, prices=[], volumes=[], market_kind=market_kind, venue=venue_of(pair))
        return PriceSeries.from_frame(pair, df.tail(points), market_kind, venue_of(pair))

    async def current_price(self, pair: str) -> Optional[float]:
        symbol = to_yf_symbol(pair)
        try:
            df = await self._fetch_frame(symbol, "1m")
        except Exception as e:
            logger.warning(f"Live price unavailable for {pair} ({symbol}): {e}")
            return None
        if df.empty:
            return None
        return float(df['close'].iloc[-1])

    def clear_cache(self) -> None:
        self._cache.clear()
        self._last_fetch.clear()
        logger.info("Cleared price cache")

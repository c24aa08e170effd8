"""Seeded random-walk price feed for demos and tests"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import numpy as np

from signal_tracker.core.domain.series import PriceSeries
from signal_tracker.core.domain.signal import MarketKind
from signal_tracker.data.yfinance_provider import venue_of

logger = logging.getLogger(__name__)

BASE_PRICES: Dict[str, float] = {
    "BTC/USDT": 65000.0,
    "ETH/USDT": 3200.0,
    "BNB/USDT": 580.0,
    "SOL/USDT": 150.0,
    "XRP/USDT": 0.55,
    "ADA/USDT": 0.45,
    "DOGE/USDT": 0.12,
    "LINK/USDT": 14.0,
    "EUR/USD": 1.08,
    "GBP/USD": 1.27,
    "USD/JPY": 151.0,
    "XAU/USD": 2350.0,
}

INTERVAL_MINUTES = {"1m": 1, "5m": 5, "15m": 15, "1h": 60, "4h": 240, "1d": 1440}


class SimulatedPriceFeed:
    """
    Price feed producing a reproducible random walk per pair.

    The same seed always yields the same histories and price sequence.
    """

    def __init__(self, seed: int = 42, volatility: float = 0.004, base_prices: Optional[Dict[str, float]] = None):
        """
        Initialize simulated feed.

        Args:
            seed: Random seed
            volatility: Per-bar standard deviation of returns
            base_prices: Starting price per pair
        """
        self._rng = np.random.default_rng(seed)
        self.volatility = volatility
        self.base_prices = dict(base_prices or BASE_PRICES)
        self._last: Dict[str, float] = {}

    def _base(self, pair: str) -> float:
        return self._last.get(pair) or self.base_prices.get(pair, 100.0)

    async def history(
        self,
        pair: str,
        market_kind: MarketKind,
        points: int,
        interval: str = "1h",
    ) -> PriceSeries:
        returns = self._rng.normal(0.0, self.volatility, points)
        prices = self._base(pair) * np.cumprod(1 + returns)
        volumes = self._rng.lognormal(mean=10.0, sigma=0.5, size=points)

        step = timedelta(minutes=INTERVAL_MINUTES.get(interval, 60))
        end = datetime.now(timezone.utc)
        timestamps = [end - step * (points - 1 - i) for i in range(points)]

        self._last[pair] = float(prices[-1]) if points else self._base(pair)
        return PriceSeries(
            pair=pair,
            prices=[float(p) for p in prices],
            volumes=[float(v) for v in volumes],
            timestamps=timestamps,
            market_kind=market_kind,
            venue=venue_of(pair),
        )

    async def current_price(self, pair: str) -> Optional[float]:
        price = self._base(pair) * (1 + self._rng.normal(0.0, self.volatility / 4))
        self._last[pair] = float(price)
        return float(price)

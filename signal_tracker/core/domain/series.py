"""Price series passed from the feed to the scoring engine"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import pandas as pd

from signal_tracker.core.domain.signal import MarketKind, VenueKind


@dataclass
class PriceSeries:
    """
    Ordered close/volume history for one instrument.

    Attributes:
        pair: Instrument pair (e.g., "BTC/USDT")
        prices: Close prices, oldest first
        volumes: Volumes aligned with prices
        timestamps: Bar timestamps aligned with prices
        market_kind: Spot or derivative market
        venue: Crypto or forex venue
        highs: Optional bar highs (enables classic true range)
        lows: Optional bar lows
    """
    pair: str
    prices: List[float]
    volumes: List[float]
    timestamps: List[datetime] = field(default_factory=list)
    market_kind: MarketKind = MarketKind.SPOT
    venue: VenueKind = VenueKind.CRYPTO
    highs: Optional[List[float]] = None
    lows: Optional[List[float]] = None

    @property
    def last_price(self) -> float:
        return self.prices[-1] if self.prices else 0.0

    def __len__(self) -> int:
        return len(self.prices)

    @classmethod
    def from_frame(
        cls,
        pair: str,
        df: pd.DataFrame,
        market_kind: MarketKind = MarketKind.SPOT,
        venue: VenueKind = VenueKind.CRYPTO,
    ) -> "PriceSeries":
        """Build from an OHLCV frame with lowercase columns and a datetime index"""
        return cls(
            pair=pair,
            prices=[float(v) for v in df['close']],
            volumes=[float(v) for v in df['volume']] if 'volume' in df else [0.0] * len(df),
            timestamps=[ts.to_pydatetime() for ts in pd.to_datetime(df.index)],
            market_kind=market_kind,
            venue=venue,
            highs=[float(v) for v in df['high']] if 'high' in df else None,
            lows=[float(v) for v in df['low']] if 'low' in df else None,
        )

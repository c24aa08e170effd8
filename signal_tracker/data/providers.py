"""Collaborator protocols consumed by the signal engine"""
from dataclasses import dataclass
from typing import List, Optional, Protocol

from signal_tracker.core.domain.series import PriceSeries
from signal_tracker.core.domain.signal import MarketKind


class PriceFeed(Protocol):
    """Protocol for live price and history sources"""

    async def current_price(self, pair: str) -> Optional[float]:
        """
        Latest traded price for a pair.

        Args:
            pair: Instrument pair (e.g., "BTC/USDT")

        Returns:
            Price, or None when unavailable
        """
        ...

    async def history(
        self,
        pair: str,
        market_kind: MarketKind,
        points: int,
        interval: str = "1h",
    ) -> PriceSeries:
        """
        Recent close/volume history, oldest first.

        Args:
            pair: Instrument pair
            market_kind: Spot or derivative market
            points: Number of bars wanted
            interval: Bar interval ("5m", "1h", ...)

        Returns:
            PriceSeries (possibly shorter than requested)
        """
        ...


class SentimentSource(Protocol):
    """Protocol for bounded sentiment scores"""

    async def score(self, pair: str) -> float:
        """Signed sentiment in [-100, 100]; 0 is neutral"""
        ...


class NeutralSentimentSource:
    """Sentiment source used when no news analysis is configured"""

    async def score(self, pair: str) -> float:
        return 0.0


@dataclass(frozen=True)
class Prediction:
    """Model output: direction is "BULLISH" or "BEARISH", confidence 0-100"""
    direction: str
    confidence: float


class DirectionPredictor(Protocol):
    """Protocol for optional ML direction predictors"""

    async def predict(self, series: PriceSeries) -> Optional[Prediction]:
        ...


@dataclass(frozen=True)
class FlowTransfer:
    """
    Large on-chain transfer relative to known exchange wallets.

    Attributes:
        tx_hash: Transaction hash
        flow: "inflow" (to an exchange), "outflow" (from an exchange) or "transfer"
        amount: Amount in the native coin
        usd_value: Approximate value in USD
    """
    tx_hash: str
    flow: str
    amount: float
    usd_value: float

    @property
    def sentiment(self) -> str:
        if self.flow == "outflow":
            return "BULLISH"
        if self.flow == "inflow":
            return "BEARISH"
        return "NEUTRAL"


class FlowSource(Protocol):
    """Protocol for on-chain flow readings"""

    async def transfers(self, pair: str) -> List[FlowTransfer]:
        ...

"""Signal record and store-boundary normalization"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from signal_tracker.utils.errors import CorruptRecordError, LadderInvariantError

logger = logging.getLogger(__name__)


class SignalCategory(str, Enum):
    """Generation profile; also the active-set partition key"""
    STANDARD = "standard"
    FAST = "fast"
    FLOW = "flow"


class MarketKind(str, Enum):
    SPOT = "SPOT"
    DERIVATIVE = "DERIVATIVE"


class VenueKind(str, Enum):
    CRYPTO = "CRYPTO"
    FOREX = "FOREX"


class SignalDirection(str, Enum):
    """Trade direction; spot uses BUY only, derivatives use LONG/SHORT"""
    BUY = "BUY"
    SELL = "SELL"
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def is_long(self) -> bool:
        return self in (SignalDirection.BUY, SignalDirection.LONG)

    @classmethod
    def for_market(cls, long: bool, market_kind: "MarketKind") -> "SignalDirection":
        if market_kind == MarketKind.SPOT:
            return cls.BUY if long else cls.SELL
        return cls.LONG if long else cls.SHORT


class SignalStatus(str, Enum):
    """Signal lifecycle state"""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"

    @property
    def is_terminal(self) -> bool:
        return self != SignalStatus.ACTIVE


class Timeframe(str, Enum):
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1D"


class MarketTrend(str, Enum):
    STRONG_BULLISH = "STRONG_BULLISH"
    BULLISH = "BULLISH"
    NEUTRAL = "NEUTRAL"
    BEARISH = "BEARISH"
    STRONG_BEARISH = "STRONG_BEARISH"


class MarketCondition(str, Enum):
    HIGH_VOLATILITY = "HIGH_VOLATILITY"
    NEWS_DRIVEN = "NEWS_DRIVEN"
    TRENDING = "TRENDING"
    RANGING = "RANGING"


# Fractions of the entry -> primary target distance for TP1/TP2/TP3
TP_LADDER_FRACTIONS = (0.25, 0.65, 0.85)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Signal(BaseModel):
    """
    Advisory directional trade recommendation.

    The record is treated as a value: the state machine and the store
    always hand back updated copies (``model_copy``) instead of mutating
    the instance they were given.
    """
    id: str
    pair: str
    category: SignalCategory = SignalCategory.STANDARD
    market_kind: MarketKind = MarketKind.SPOT
    venue: VenueKind = VenueKind.CRYPTO
    direction: SignalDirection

    entry_price: float
    stop_loss: float
    take_profit: float
    take_profit_1: Optional[float] = None
    take_profit_2: Optional[float] = None
    take_profit_3: Optional[float] = None
    current_price: float
    highest_price: float
    lowest_price: float

    tp1_hit: bool = False
    tp2_hit: bool = False
    tp3_hit: bool = False
    tp1_hit_time: Optional[datetime] = None
    tp2_hit_time: Optional[datetime] = None
    tp3_hit_time: Optional[datetime] = None

    status: SignalStatus = SignalStatus.ACTIVE
    confidence: float = 0.0
    risk_score: float = 50.0
    rationale: List[str] = Field(default_factory=list)
    timeframe: Timeframe = Timeframe.H1
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    profit_loss_percentage: float = 0.0

    sentiment_score: float = 0.0
    market_trend: MarketTrend = MarketTrend.NEUTRAL
    market_condition: Optional[MarketCondition] = None
    is_counter_trend: bool = False
    rsi: Optional[float] = None
    macd_value: Optional[float] = None
    macd_signal: Optional[float] = None
    volume_vs_average: Optional[float] = None
    model_direction: Optional[str] = None
    model_confidence: Optional[float] = None

    completed_at: Optional[datetime] = None
    archived_category: Optional[SignalCategory] = None

    @property
    def is_long(self) -> bool:
        return self.direction.is_long

    @property
    def ladder(self) -> List[float]:
        """TP1..TP3 price levels (missing levels are skipped)"""
        return [
            tp for tp in (self.take_profit_1, self.take_profit_2, self.take_profit_3)
            if tp is not None
        ]

    def pnl_at(self, price: float) -> float:
        """Signed P/L percentage of a move from entry to ``price``"""
        if self.entry_price == 0:
            return 0.0
        if self.is_long:
            return (price - self.entry_price) / self.entry_price * 100
        return (self.entry_price - price) / self.entry_price * 100

    def validate_ladder(self) -> None:
        """
        Check the price ladder is ordered in the direction of travel.

        Raises:
            LadderInvariantError: If any ladder invariant does not hold
        """
        problems = []
        tps = [self.take_profit_1, self.take_profit_2, self.take_profit_3]

        if any(tp is None for tp in tps):
            problems.append("TP1/TP2/TP3 are required")
        else:
            distances = [tp - self.entry_price for tp in tps]
            if not self.is_long:
                distances = [-d for d in distances]
            if not (0 < distances[0] < distances[1] < distances[2]):
                problems.append(
                    f"take-profits {tps} not strictly ordered away from entry {self.entry_price}"
                )

        sl_distance = self.entry_price - self.stop_loss
        if not self.is_long:
            sl_distance = -sl_distance
        if sl_distance <= 0:
            problems.append(
                f"stop-loss {self.stop_loss} is not opposite the targets from entry {self.entry_price}"
            )

        if not 0 <= self.confidence <= 100:
            problems.append(f"confidence {self.confidence} outside [0, 100]")

        if self.market_kind == MarketKind.SPOT and not self.is_long:
            problems.append("spot signals cannot be short")

        if problems:
            raise LadderInvariantError(f"Signal {self.id} ({self.pair}): " + "; ".join(problems))

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready dict for persistence"""
        return self.model_dump(mode="json")


# Legacy camelCase keys written by older clients
LEGACY_KEYS = {
    "entryPrice": "entry_price",
    "stopLoss": "stop_loss",
    "takeProfit": "take_profit",
    "takeProfit1": "take_profit_1",
    "takeProfit2": "take_profit_2",
    "takeProfit3": "take_profit_3",
    "currentPrice": "current_price",
    "highestPrice": "highest_price",
    "lowestPrice": "lowest_price",
    "tp1Hit": "tp1_hit",
    "tp2Hit": "tp2_hit",
    "tp3Hit": "tp3_hit",
    "tp1HitTime": "tp1_hit_time",
    "tp2HitTime": "tp2_hit_time",
    "tp3HitTime": "tp3_hit_time",
    "profitLossPercentage": "profit_loss_percentage",
    "riskScore": "risk_score",
    "marketType": "market_kind",
    "exchangeType": "venue",
    "timestamp": "created_at",
    "expiresAt": "expires_at",
    "validUntil": "valid_until",
    "completedAt": "completed_at",
    "sentimentScore": "sentiment_score",
    "marketTrend": "market_trend",
    "marketCondition": "market_condition",
    "isCounterTrend": "is_counter_trend",
}

# Old enum spellings
LEGACY_VALUES = {
    "market_kind": {"FUTURES": "DERIVATIVE", "FUTURE": "DERIVATIVE", "PERPETUAL": "DERIVATIVE"},
    "venue": {"FX": "FOREX"},
    "category": {"SCALPING": "fast", "ONCHAIN": "flow", "STANDARD": "standard"},
    "archived_category": {"SCALPING": "fast", "ONCHAIN": "flow", "STANDARD": "standard"},
}

ON_CHAIN_KEYWORDS = ("whale", "blockchain", "on-chain")


def infer_category(data: Dict[str, Any]) -> SignalCategory:
    """Category of a legacy record that predates the category field"""
    if data.get("isScalping") or data.get("timeframe") == Timeframe.M5.value:
        return SignalCategory.FAST
    rationale = " ".join(str(r) for r in data.get("rationale") or data.get("rationalePoints") or [])
    if data.get("isOnChain") or any(k in rationale.lower() for k in ON_CHAIN_KEYWORDS):
        return SignalCategory.FLOW
    return SignalCategory.STANDARD


def normalize_record(raw: Any) -> Signal:
    """
    Migrate a persisted record into a validated ``Signal``.

    Handles legacy camelCase keys, missing extrema and hit flags, and
    derives TP1..TP3 from the primary target when only it was stored.

    Args:
        raw: Decoded JSON object

    Returns:
        Normalized signal

    Raises:
        CorruptRecordError: If the record cannot be turned into a signal
    """
    if not isinstance(raw, dict):
        raise CorruptRecordError(f"Expected an object, got {type(raw).__name__}")

    data: Dict[str, Any] = {}
    for key, value in raw.items():
        data[LEGACY_KEYS.get(key, key)] = value

    if "category" not in data:
        data["category"] = infer_category(data)
    if data.get("completed_at") and "archived_category" not in data and (
        data.get("isScalping") or data.get("isOnChain")
    ):
        data["archived_category"] = data["category"]
    if "rationale" not in data and data.get("rationalePoints"):
        data["rationale"] = data["rationalePoints"]

    for field in ("direction", "status", "market_kind", "venue"):
        if isinstance(data.get(field), str):
            data[field] = data[field].upper()

    for field, mapping in LEGACY_VALUES.items():
        value = data.get(field)
        if isinstance(value, str) and value.upper() in mapping:
            data[field] = mapping[value.upper()]

    try:
        entry = float(data["entry_price"])
        if data.get("current_price") is None:
            data["current_price"] = entry
        data["highest_price"] = data.get("highest_price") or entry
        data["lowest_price"] = data.get("lowest_price") or entry
        for flag in ("tp1_hit", "tp2_hit", "tp3_hit"):
            data[flag] = bool(data.get(flag, False))

        primary = data.get("take_profit")
        if primary is None:
            primary = data.get("take_profit_3")
            data["take_profit"] = primary
        if primary is not None:
            distance = float(primary) - entry
            for level, fraction in zip((1, 2, 3), TP_LADDER_FRACTIONS):
                key = f"take_profit_{level}"
                if data.get(key) is None:
                    data[key] = entry + distance * fraction

        return Signal.model_validate(data)
    except (KeyError, ValidationError, TypeError, ValueError) as e:
        raise CorruptRecordError(f"Record {data.get('id')!r} failed validation: {e}") from e

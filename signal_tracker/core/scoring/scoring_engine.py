"""Scoring engine: turns price series into directional signals"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from signal_tracker.config.timezone import utc_now
from signal_tracker.core.domain.series import PriceSeries
from signal_tracker.core.domain.signal import (
    MarketCondition,
    MarketKind,
    MarketTrend,
    Signal,
    SignalCategory,
    SignalDirection,
    Timeframe,
)
from signal_tracker.core.indicators import technical
from signal_tracker.core.indicators.technical import BollingerBands, MacdResult
from signal_tracker.core.scoring import rationale
from signal_tracker.core.scoring.market_analysis import (
    analyze_market,
    determine_market_condition,
    is_counter_trend,
)
from signal_tracker.core.scoring.patterns import detect_patterns, pattern_bias
from signal_tracker.core.sl_tp.ladder_estimator import estimate_atr_ladder, estimate_fixed_ladder
from signal_tracker.data.providers import (
    DirectionPredictor,
    FlowSource,
    FlowTransfer,
    NeutralSentimentSource,
    Prediction,
    SentimentSource,
)
from signal_tracker.utils.errors import DataUnavailableError

logger = logging.getLogger(__name__)

MIN_TRADABLE_PRICE = 0.0001

# Standard profile
SCORE_THRESHOLD = 58
PULLBACK_MIN_PCT = 0.5
PULLBACK_MAX_PCT = 1.5
PULLBACK_LOOKBACK = 10
COUNTER_TREND_MIN_CONFIDENCE = 80
MIN_CONFIDENCE = {MarketKind.SPOT: 70, MarketKind.DERIVATIVE: 72}
EXPIRY_HOURS = {MarketKind.SPOT: 24, MarketKind.DERIVATIVE: 48}

# Fast profile
FAST_MIN_SCORE = 45
FAST_MIN_CONFIDENCE = 60
FAST_MIN_VOLUME_RATIO = 1.2
FAST_TP_PCTS = (0.002, 0.005, 0.008)
FAST_SL_PCT = 0.003
FAST_EXPIRY_HOURS = 2

# Flow profile
FLOW_MIN_SCORE = 10
FLOW_TP_PCTS = (0.05, 0.08, 0.12)
FLOW_SL_PCT = 0.03
FLOW_EXPIRY_HOURS = 48


@dataclass
class TechnicalReading:
    """Indicator values and accumulated side scores for the standard profile"""
    price: float
    buy_score: float
    sell_score: float
    rsi: float
    macd: MacdResult
    bands: BollingerBands
    ema9: float
    ema21: float
    trend: str
    volume_avg: float
    current_volume: float
    momentum: float
    roc: float


def score_standard(prices: Sequence[float], volumes: Sequence[float]) -> TechnicalReading:
    """
    Accumulate buy/sell scores from independent indicator rules.

    Args:
        prices: Close prices, oldest first
        volumes: Volumes aligned with prices

    Returns:
        TechnicalReading with the final buy/sell scores
    """
    price = prices[-1]
    rsi = technical.rsi(prices)
    macd = technical.macd(prices)
    bands = technical.bollinger_bands(prices)
    ema9 = technical.ema(prices, 9)
    ema21 = technical.ema(prices, 21)
    trend = technical.determine_trend(prices)
    volume_avg = technical.volume_average(volumes)
    current_volume = volumes[-1] if volumes else 0.0
    momentum = technical.momentum(prices, 10)
    roc = technical.rate_of_change(prices, 10)

    buy = 0.0
    sell = 0.0

    # Mean reversion, gated by momentum
    if rsi < 30 and momentum > -1.5:
        buy += 25
    elif rsi < 40 and momentum > 0:
        buy += 15
    elif rsi > 70:
        sell += 25
    elif rsi > 60 and momentum < 0:
        sell += 15

    # Trend following
    if momentum < -2 and roc < -3:
        sell += 25
    elif momentum < -1 and roc < -2:
        sell += 15
    if momentum > 2 and roc > 3:
        buy += 25
    elif momentum > 1 and roc > 2:
        buy += 15

    if macd.histogram > 0 and macd.macd > macd.signal:
        buy += 20
    elif macd.histogram < 0 and macd.macd < macd.signal:
        sell += 20

    if price <= bands.lower and momentum > -1:
        buy += 20
    elif price >= bands.upper:
        sell += 20

    if trend == "BULLISH":
        buy += 15
    elif trend == "BEARISH":
        sell += 15

    # Volume only confirms the side already leading
    if volume_avg and current_volume > volume_avg * 1.5:
        if buy > sell:
            buy += 10
        elif sell > buy:
            sell += 10

    if price > ema9 and price > ema21:
        buy += 10
    elif price < ema9 and price < ema21:
        sell += 10

    # Falling knife / rising rocket
    if momentum < -2.5 and roc < -4 and rsi < 40:
        buy = max(0.0, buy - 30)
    if momentum > 2.5 and roc > 4 and rsi > 60:
        sell = max(0.0, sell - 30)

    return TechnicalReading(
        price=price, buy_score=buy, sell_score=sell, rsi=rsi, macd=macd, bands=bands,
        ema9=ema9, ema21=ema21, trend=trend, volume_avg=volume_avg,
        current_volume=current_volume, momentum=momentum, roc=roc,
    )


def has_pullback(prices: Sequence[float]) -> bool:
    """True when the last price sits 0.5%-1.5% below the recent 10-bar high"""
    recent_high = max(prices[-PULLBACK_LOOKBACK:])
    if recent_high <= 0:
        return False
    pullback = (recent_high - prices[-1]) / recent_high * 100
    return PULLBACK_MIN_PCT <= pullback <= PULLBACK_MAX_PCT


def decide_direction(buy: float, sell: float, threshold: float) -> Optional[bool]:
    """True for long, False for short, None when neither side clearly wins"""
    if buy >= threshold and buy > sell:
        return True
    if sell >= threshold and sell > buy:
        return False
    return None


def blend_confidence(technical_score: float, sentiment: float, is_long: bool) -> float:
    """
    Blend technical score with sentiment.

    Sentiment confirms but never inverts: agreement beyond +/-30 boosts by
    15%, strong disagreement beyond 40 discounts by 15%.
    """
    confidence = min(technical_score, 100) * 0.6 + ((sentiment + 100) / 2) * 0.4
    agrees = (sentiment > 30 and is_long) or (sentiment < -30 and not is_long)
    disagrees = abs(sentiment) > 40 and ((sentiment > 0) != is_long)
    if agrees:
        confidence = min(confidence * 1.15, 100)
    elif disagrees:
        confidence *= 0.85
    return confidence


def apply_consensus(confidence: float, is_long: bool, votes: Sequence[Tuple[str, float]]) -> float:
    """
    Fold model/pattern votes into the confidence.

    Args:
        confidence: Confidence before consensus
        is_long: Direction of the candidate
        votes: (direction, confidence) pairs, direction "BULLISH"/"BEARISH"

    Returns:
        Adjusted confidence
    """
    if not votes:
        return confidence

    bullish = sum(c for d, c in votes if d == "BULLISH")
    bearish = sum(c for d, c in votes if d == "BEARISH")
    if bullish == bearish:
        return confidence

    consensus_long = bullish > bearish
    consensus_conf = max(bullish, bearish) / len(votes)

    if consensus_long == is_long:
        return max(confidence, confidence * 0.9 + consensus_conf * 0.1)
    if consensus_conf >= 60:
        return confidence * 0.95
    return confidence


def clamp_confidence(value: float) -> int:
    return int(round(max(0.0, min(100.0, value))))


def validity_hours(condition: MarketCondition) -> int:
    if condition == MarketCondition.NEWS_DRIVEN:
        return 2
    if condition == MarketCondition.HIGH_VOLATILITY:
        return 4
    return 12


def new_signal_id(pair: str, category: SignalCategory) -> str:
    prefix = {SignalCategory.FAST: "SCALP_", SignalCategory.FLOW: "FLOW_"}.get(category, "")
    return f"{prefix}{pair.replace('/', '')}-{uuid.uuid4().hex[:12]}"


class ScoringEngine:
    """
    Evaluates price series into signals for each category profile.

    Optional collaborators (sentiment, direction model, on-chain flow) are
    awaited under a timeout; when they fail the engine falls back to
    neutral sentiment, technical-only confidence, or no flow signal.
    """

    def __init__(
        self,
        sentiment_source: Optional[SentimentSource] = None,
        predictor: Optional[DirectionPredictor] = None,
        flow_source: Optional[FlowSource] = None,
        collaborator_timeout: float = 3.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize engine.

        Args:
            sentiment_source: Sentiment collaborator (neutral when None)
            predictor: Optional ML direction predictor
            flow_source: On-chain flow collaborator for the flow profile
            collaborator_timeout: Seconds to wait for any collaborator
            clock: Source of "now" for timestamps
        """
        self.sentiment_source = sentiment_source or NeutralSentimentSource()
        self.predictor = predictor
        self.flow_source = flow_source
        self.collaborator_timeout = collaborator_timeout
        self.clock = clock

    async def evaluate(
        self,
        series: PriceSeries,
        category: SignalCategory,
        market_kind: Optional[MarketKind] = None,
    ) -> Optional[Signal]:
        """
        Evaluate one instrument.

        Args:
            series: Price/volume history
            category: Category profile to apply
            market_kind: Overrides the series' market kind

        Returns:
            Validated Signal, or None when the candidate is rejected

        Raises:
            LadderInvariantError: If a generated ladder is inconsistent
        """
        market_kind = market_kind or series.market_kind
        category = SignalCategory(category)

        if not series.prices or series.last_price < MIN_TRADABLE_PRICE:
            return None

        if category == SignalCategory.FAST:
            signal = self._evaluate_fast(series, market_kind)
        elif category == SignalCategory.FLOW:
            signal = await self._evaluate_flow(series, market_kind)
        else:
            signal = await self._evaluate_standard(series, market_kind)

        if signal is not None:
            signal.validate_ladder()
            logger.info(
                f"Generated {category.value} {signal.direction.value} signal for {signal.pair} "
                f"(confidence {signal.confidence:.0f}%)",
                extra={'pair': signal.pair, 'category': category.value},
            )
        return signal

    async def evaluate_many(
        self,
        series_list: Sequence[PriceSeries],
        category: SignalCategory,
        market_kind: Optional[MarketKind] = None,
    ) -> List[Signal]:
        """Evaluate instruments concurrently, best confidence first"""
        results = await asyncio.gather(
            *(self._evaluate_isolated(s, category, market_kind) for s in series_list)
        )
        signals = [s for s in results if s is not None]
        signals.sort(key=lambda s: s.confidence, reverse=True)
        return signals

    async def _evaluate_isolated(
        self,
        series: PriceSeries,
        category: SignalCategory,
        market_kind: Optional[MarketKind],
    ) -> Optional[Signal]:
        try:
            return await self.evaluate(series, category, market_kind)
        except Exception as e:
            logger.error(
                f"Evaluation failed for {series.pair}: {e}",
                extra={'pair': series.pair, 'category': str(category)},
                exc_info=True,
            )
            return None

    async def _bounded(self, source: str, pair: str, call, fallback):
        """Await a collaborator call under the timeout, falling back on any failure"""
        try:
            return await asyncio.wait_for(call, timeout=self.collaborator_timeout)
        except Exception as e:
            error = DataUnavailableError(source, pair, str(e) or type(e).__name__)
            logger.warning(str(error), extra={'component': 'ScoringEngine', 'pair': pair})
            return fallback

    async def _sentiment(self, pair: str) -> float:
        value = await self._bounded("sentiment", pair, self.sentiment_source.score(pair), 0.0)
        try:
            return max(-100.0, min(100.0, float(value)))
        except (TypeError, ValueError):
            return 0.0

    async def _consensus_votes(self, series: PriceSeries) -> List[Tuple[str, float]]:
        votes: List[Tuple[str, float]] = []
        if self.predictor is not None:
            prediction: Optional[Prediction] = await self._bounded(
                "direction model", series.pair, self.predictor.predict(series), None
            )
            if prediction is not None and prediction.direction in ("BULLISH", "BEARISH"):
                votes.append((prediction.direction, float(prediction.confidence)))

        bias = pattern_bias(detect_patterns(series.prices, series.volumes))
        if bias is not None:
            votes.append(bias)
        return votes

    async def _evaluate_standard(self, series: PriceSeries, market_kind: MarketKind) -> Optional[Signal]:
        prices, volumes = series.prices, series.volumes
        reading = score_standard(prices, volumes)

        is_long = decide_direction(reading.buy_score, reading.sell_score, SCORE_THRESHOLD)
        if is_long is None:
            return None
        if not is_long and market_kind == MarketKind.SPOT:
            return None
        if is_long and not has_pullback(prices):
            logger.debug(f"{series.pair}: long candidate without pullback, skipped")
            return None

        direction = SignalDirection.for_market(is_long, market_kind)
        analysis = analyze_market(prices, volumes)
        counter_trend = is_counter_trend(direction, analysis.trend)

        sentiment = await self._sentiment(series.pair)
        technical_score = reading.buy_score if is_long else reading.sell_score
        confidence = blend_confidence(technical_score, sentiment, is_long)

        votes = await self._consensus_votes(series)
        confidence = clamp_confidence(apply_consensus(confidence, is_long, votes))

        if counter_trend and confidence < COUNTER_TREND_MIN_CONFIDENCE:
            logger.debug(f"{series.pair}: counter-trend candidate at {confidence}% rejected")
            return None
        if confidence < MIN_CONFIDENCE[market_kind]:
            return None

        atr_value = technical.atr(prices, 14, series.highs, series.lows)
        ladder = estimate_atr_ladder(
            entry=reading.price,
            is_long=is_long,
            atr_value=atr_value,
            confidence=confidence,
            sentiment=sentiment,
            bands=reading.bands,
        )

        now = self.clock()
        condition = determine_market_condition(
            sentiment, reading.current_volume, reading.volume_avg, analysis.trend
        )
        model_vote = votes[0] if votes and self.predictor is not None else None

        return Signal(
            id=new_signal_id(series.pair, SignalCategory.STANDARD),
            pair=series.pair,
            category=SignalCategory.STANDARD,
            market_kind=market_kind,
            venue=series.venue,
            direction=direction,
            entry_price=reading.price,
            stop_loss=ladder.stop_loss,
            take_profit=ladder.take_profit,
            take_profit_1=ladder.take_profit_1,
            take_profit_2=ladder.take_profit_2,
            take_profit_3=ladder.take_profit_3,
            current_price=reading.price,
            highest_price=reading.price,
            lowest_price=reading.price,
            confidence=confidence,
            risk_score=analysis.risk_score,
            rationale=rationale.standard_rationale(
                sentiment, reading.rsi, reading.macd, reading.current_volume,
                reading.volume_avg, is_long, analysis.trend,
            ),
            timeframe=Timeframe.H1,
            created_at=now,
            expires_at=now + timedelta(hours=EXPIRY_HOURS[market_kind]),
            valid_until=now + timedelta(hours=validity_hours(condition)),
            sentiment_score=sentiment,
            market_trend=analysis.trend,
            market_condition=condition,
            is_counter_trend=counter_trend,
            rsi=reading.rsi,
            macd_value=reading.macd.macd,
            macd_signal=reading.macd.signal,
            volume_vs_average=(reading.current_volume / reading.volume_avg) if reading.volume_avg else None,
            model_direction=model_vote[0] if model_vote else None,
            model_confidence=model_vote[1] if model_vote else None,
        )

    def _evaluate_fast(self, series: PriceSeries, market_kind: MarketKind) -> Optional[Signal]:
        prices, volumes = series.prices, series.volumes
        if len(prices) < 11 or not volumes:
            return None

        price = prices[-1]
        rsi = technical.rsi(prices, 7)
        macd = technical.macd(prices, 5, 13, 4)
        mean_volume = sum(volumes) / len(volumes)
        volume_ratio = volumes[-1] / mean_volume if mean_volume else 0.0

        if volume_ratio < FAST_MIN_VOLUME_RATIO:
            return None

        buy = 0.0
        sell = 0.0
        if rsi < 40:
            buy += 20
        elif rsi > 60:
            sell += 20

        if macd.histogram > 0 and macd.histogram > macd.previous_histogram:
            buy += 25
        elif macd.histogram < 0 and macd.histogram < macd.previous_histogram:
            sell += 25

        if volume_ratio >= 2.0:
            buy += 15
            sell += 15

        reference = prices[-10]
        short_momentum = (price - reference) / reference if reference else 0.0
        if short_momentum > 0.002:
            buy += 10
        if short_momentum < -0.002:
            sell += 10

        is_long = decide_direction(buy, sell, FAST_MIN_SCORE)
        if is_long is None:
            return None
        if not is_long and market_kind == MarketKind.SPOT:
            return None

        score = buy if is_long else sell
        confidence = clamp_confidence(min(score / 70 * 100, 95))
        if confidence < FAST_MIN_CONFIDENCE:
            return None

        ladder = estimate_fixed_ladder(price, is_long, FAST_TP_PCTS, FAST_SL_PCT)
        now = self.clock()
        analysis = analyze_market(prices, volumes)

        return Signal(
            id=new_signal_id(series.pair, SignalCategory.FAST),
            pair=series.pair,
            category=SignalCategory.FAST,
            market_kind=market_kind,
            venue=series.venue,
            direction=SignalDirection.for_market(is_long, market_kind),
            entry_price=price,
            stop_loss=ladder.stop_loss,
            take_profit=ladder.take_profit,
            take_profit_1=ladder.take_profit_1,
            take_profit_2=ladder.take_profit_2,
            take_profit_3=ladder.take_profit_3,
            current_price=price,
            highest_price=price,
            lowest_price=price,
            confidence=confidence,
            risk_score=analysis.risk_score,
            rationale=rationale.fast_rationale(rsi, macd, volume_ratio, is_long),
            timeframe=Timeframe.M5,
            created_at=now,
            expires_at=now + timedelta(hours=FAST_EXPIRY_HOURS),
            valid_until=now + timedelta(hours=FAST_EXPIRY_HOURS),
            market_trend=analysis.trend,
            rsi=rsi,
            macd_value=macd.macd,
            macd_signal=macd.signal,
            volume_vs_average=volume_ratio,
        )

    async def _evaluate_flow(self, series: PriceSeries, market_kind: MarketKind) -> Optional[Signal]:
        if self.flow_source is None:
            return None

        transfers: List[FlowTransfer] = await self._bounded(
            "on-chain flow", series.pair, self.flow_source.transfers(series.pair), []
        )
        if not transfers:
            logger.info(f"No on-chain flow readings for {series.pair}")
            return None

        prices = series.prices
        flow_score, technical_score, rsi, macd_line = score_flow(transfers, prices)
        total = flow_score * 0.5 + technical_score * 0.5

        if abs(total) < FLOW_MIN_SCORE:
            return None
        is_long = total > 0
        if not is_long and market_kind == MarketKind.SPOT:
            return None

        price = prices[-1]
        confidence = min(int(round(abs(total))), 95)
        ladder = estimate_fixed_ladder(price, is_long, FLOW_TP_PCTS, FLOW_SL_PCT)
        now = self.clock()
        trend = MarketTrend.BULLISH if flow_score > 0 else MarketTrend.BEARISH if flow_score < 0 else MarketTrend.NEUTRAL

        return Signal(
            id=new_signal_id(series.pair, SignalCategory.FLOW),
            pair=series.pair,
            category=SignalCategory.FLOW,
            market_kind=market_kind,
            venue=series.venue,
            direction=SignalDirection.for_market(is_long, market_kind),
            entry_price=price,
            stop_loss=ladder.stop_loss,
            take_profit=ladder.take_profit,
            take_profit_1=ladder.take_profit_1,
            take_profit_2=ladder.take_profit_2,
            take_profit_3=ladder.take_profit_3,
            current_price=price,
            highest_price=price,
            lowest_price=price,
            confidence=confidence,
            risk_score=max(0, 100 - confidence),
            rationale=rationale.flow_rationale(transfers, rsi, is_long),
            timeframe=Timeframe.H1,
            created_at=now,
            expires_at=now + timedelta(hours=FLOW_EXPIRY_HOURS),
            valid_until=now + timedelta(hours=FLOW_EXPIRY_HOURS),
            market_trend=trend,
            rsi=rsi,
            macd_value=macd_line,
        )


def score_flow(transfers: Sequence[FlowTransfer], prices: Sequence[float]) -> Tuple[float, float, float, float]:
    """
    Flow and technical scores for the flow profile.

    Returns:
        (flow_score, technical_score, rsi, macd_line)
    """
    flow_score = 0.0
    for transfer in transfers:
        if transfer.sentiment == "BULLISH":
            flow_score += 20
        elif transfer.sentiment == "BEARISH":
            flow_score -= 20

    rsi = technical.rsi(prices, 14)
    technical_score = 0.0
    if rsi < 30:
        technical_score += 30
    elif rsi > 70:
        technical_score -= 30
    elif rsi < 40:
        technical_score += 15
    elif rsi > 60:
        technical_score -= 15

    macd_line = technical.ema(prices, 12) - technical.ema(prices, 26)
    technical_score += 20 if macd_line > 0 else -20

    return flow_score, technical_score, rsi, macd_line

"""Per-category scheduled signal generation"""
import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import timedelta, timezone
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel

from signal_tracker.config.settings import GeneratorConfig
from signal_tracker.config.timezone import utc_now
from signal_tracker.core.domain.series import PriceSeries
from signal_tracker.core.domain.signal import MarketKind, Signal, SignalCategory, VenueKind
from signal_tracker.core.scoring.scoring_engine import ScoringEngine
from signal_tracker.data.providers import PriceFeed
from signal_tracker.notifications.notification_service import (
    BatchGeneratedEvent,
    NotificationSink,
    dispatch_notification,
)
from signal_tracker.store.signal_store import SignalStore

logger = logging.getLogger(__name__)

FLOW_PAIR = "BTC/USDT"

HISTORY_INTERVALS = {
    SignalCategory.STANDARD: "1h",
    SignalCategory.FAST: "5m",
    SignalCategory.FLOW: "1h",
}


class GenerationConfig(BaseModel):
    """Which slice of the universe a schedule generates for"""
    venue: VenueKind = VenueKind.CRYPTO
    market_kind: MarketKind = MarketKind.SPOT


@dataclass(frozen=True)
class UniverseEntry:
    pair: str
    venue: VenueKind


def parse_universe(pairs: Dict[str, str]) -> List[UniverseEntry]:
    """
    Build the instrument universe from ``alias -> "PAIR:VENUE"`` mappings.

    Entries without a venue default to CRYPTO; duplicates are dropped.
    """
    universe: List[UniverseEntry] = []
    seen = set()
    for spec in pairs.values():
        pair, _, venue = spec.partition(":")
        entry = UniverseEntry(pair=pair.strip().upper(), venue=VenueKind((venue or "CRYPTO").strip().upper()))
        if entry.pair and entry.pair not in seen:
            seen.add(entry.pair)
            universe.append(entry)
    return universe


class AutoGenerator:
    """
    Runs one generation schedule per category.

    Each schedule is a single task that generates immediately and then
    every category interval. Starting a category that already runs stops
    the previous task first, so there is never more than one timer per
    category.
    """

    def __init__(
        self,
        store: SignalStore,
        engine: ScoringEngine,
        price_feed: PriceFeed,
        notifier: Optional[NotificationSink] = None,
        config: Optional[GeneratorConfig] = None,
        universe: Optional[Iterable[UniverseEntry]] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize generator.

        Args:
            store: Signal store receiving each batch
            engine: Scoring engine
            price_feed: Source of price history
            notifier: Sink for batch events
            config: Generator configuration (intervals, history sizes, timeouts)
            universe: Instruments to evaluate (defaults to the configured pairs)
            rng: Random source for the fast-profile sample
        """
        self.store = store
        self.engine = engine
        self.price_feed = price_feed
        self.notifier = notifier
        self.config = config or GeneratorConfig()
        self.universe = list(universe) if universe is not None else parse_universe(self.config.pairs)
        self.rng = rng or random.Random()

        self._tasks: Dict[SignalCategory, asyncio.Task] = {}
        self._locks: Dict[SignalCategory, asyncio.Lock] = {}
        self._configs: Dict[SignalCategory, GenerationConfig] = {}
        self.runs: Dict[SignalCategory, int] = {c: 0 for c in SignalCategory}

    def interval(self, category: SignalCategory) -> float:
        return self.config.interval_for(SignalCategory(category).value)

    # Schedule control

    async def start(self, category: SignalCategory, generation: Optional[GenerationConfig] = None) -> None:
        """
        Start (or restart) the schedule for a category.

        Args:
            category: Category to generate
            generation: Universe slice to generate for
        """
        category = SignalCategory(category)
        generation = generation or GenerationConfig()
        async with self._lock(category):
            await self._cancel(category)

            self._configs[category] = generation
            # Recorded before the first run so a countdown never reads zero
            self.store.touch_last_run(category)
            self.store.set_autogen_enabled(category, True)

            self._tasks[category] = asyncio.get_running_loop().create_task(self._run(category, generation))
        logger.info(
            f"Auto-generation started for {category.value} (every {self.interval(category)}s)",
            extra={'category': category.value, 'component': 'AutoGenerator'},
        )

    async def stop(self, category: SignalCategory, disable: bool = True) -> None:
        """
        Stop a category's schedule; a no-op when it is not running.

        Args:
            category: Category to stop
            disable: Also persist the schedule as disabled
        """
        category = SignalCategory(category)
        async with self._lock(category):
            stopped = await self._cancel(category)
            if disable:
                self.store.set_autogen_enabled(category, False)
        if stopped:
            logger.info(f"Auto-generation stopped for {category.value}", extra={'category': category.value})

    async def stop_all(self, disable: bool = False) -> None:
        """Stop every schedule (preferences are kept unless ``disable``)"""
        for category in SignalCategory:
            await self.stop(category, disable=disable)

    def _lock(self, category: SignalCategory) -> asyncio.Lock:
        # Held across cancel and create so concurrent starts never leave two tasks
        return self._locks.setdefault(category, asyncio.Lock())

    async def _cancel(self, category: SignalCategory) -> bool:
        task = self._tasks.pop(category, None)
        if task is None:
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    def is_running(self, category: SignalCategory) -> bool:
        task = self._tasks.get(SignalCategory(category))
        return task is not None and not task.done()

    def is_enabled(self, category: SignalCategory) -> bool:
        return self.store.get_autogen_preferences(category).enabled

    def time_until_next(self, category: SignalCategory) -> int:
        """Whole seconds until the next scheduled run (0 when never run)"""
        last_run = self.store.get_autogen_preferences(category).last_run
        if last_run is None:
            return 0
        if last_run.tzinfo is None:
            last_run = last_run.replace(tzinfo=timezone.utc)
        remaining = timedelta(seconds=self.interval(category)) - (utc_now() - last_run)
        return max(0, int(remaining.total_seconds()))

    async def resume_from_preferences(
        self, configs: Optional[Dict[SignalCategory, GenerationConfig]] = None
    ) -> List[SignalCategory]:
        """
        Restart every schedule persisted as enabled.

        Args:
            configs: Generation config per category (defaults apply otherwise)

        Returns:
            Categories that were resumed
        """
        configs = configs or {}
        resumed = []
        for category in SignalCategory:
            if not self.is_enabled(category):
                continue
            generation = configs.get(category) or self._configs.get(category) or GenerationConfig()
            await self.start(category, generation)
            resumed.append(category)
        if resumed:
            logger.info(f"Resumed auto-generation for {', '.join(c.value for c in resumed)}")
        return resumed

    def status(self, category: SignalCategory) -> Dict[str, object]:
        category = SignalCategory(category)
        prefs = self.store.get_autogen_preferences(category)
        generation = self._configs.get(category)
        return {
            "category": category.value,
            "enabled": prefs.enabled,
            "running": self.is_running(category),
            "last_run": prefs.last_run.isoformat() if prefs.last_run else None,
            "interval_seconds": self.interval(category),
            "seconds_until_next": self.time_until_next(category),
            "config": generation.model_dump(mode="json") if generation else None,
        }

    async def _run(self, category: SignalCategory, generation: GenerationConfig) -> None:
        first = True
        while True:
            try:
                if not first:
                    self.store.touch_last_run(category)
                first = False
                await self.generate_now(category, generation)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Auto-generation run failed for {category.value}: {e}", exc_info=True)

            try:
                await asyncio.sleep(self.interval(category))
            except asyncio.CancelledError:
                break

    # Generation

    def select_pairs(self, category: SignalCategory, generation: GenerationConfig) -> List[UniverseEntry]:
        """Instruments a run evaluates"""
        category = SignalCategory(category)
        if category == SignalCategory.FLOW:
            return [UniverseEntry(pair=FLOW_PAIR, venue=VenueKind.CRYPTO)]

        entries = [e for e in self.universe if e.venue == generation.venue]
        if category == SignalCategory.FAST:
            self.rng.shuffle(entries)
            entries = entries[:self.config.fast_sample_size]
        return entries

    async def _fetch(self, entry: UniverseEntry, category: SignalCategory, market_kind: MarketKind) -> Optional[PriceSeries]:
        points = self.config.fast_history_points if category == SignalCategory.FAST else self.config.history_points
        try:
            return await asyncio.wait_for(
                self.price_feed.history(entry.pair, market_kind, points, HISTORY_INTERVALS[category]),
                timeout=self.config.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"History fetch timed out for {entry.pair}", extra={'pair': entry.pair})
        except Exception as e:
            logger.warning(f"History unavailable for {entry.pair}: {e}", extra={'pair': entry.pair})
        return None

    async def generate_now(
        self, category: SignalCategory, generation: Optional[GenerationConfig] = None
    ) -> List[Signal]:
        """
        Run one generation for a category.

        The category's active set is replaced wholesale when the batch is
        non-empty; an empty batch leaves it untouched.

        Returns:
            The generated signals
        """
        category = SignalCategory(category)
        generation = generation or self._configs.get(category) or GenerationConfig()
        market_kind = MarketKind.DERIVATIVE if category == SignalCategory.FLOW else generation.market_kind

        entries = self.select_pairs(category, generation)
        fetched = await asyncio.gather(*(self._fetch(e, category, market_kind) for e in entries))
        series_list = [s for s in fetched if s is not None and len(s) > 0]

        signals = await self.engine.evaluate_many(series_list, category, market_kind)
        self.runs[category] += 1

        if signals:
            self.store.replace_active(category, signals)
            logger.info(
                f"Generated {len(signals)} {category.value} signals from {len(entries)} instruments",
                extra={'category': category.value},
            )
        else:
            logger.info(f"No {category.value} signals generated", extra={'category': category.value})

        dispatch_notification(
            self.notifier,
            BatchGeneratedEvent(category=category, signals=signals, evaluated=len(entries)),
        )
        return signals

"""Active signal price monitor"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from signal_tracker.config.settings import MonitorConfig
from signal_tracker.config.timezone import utc_now
from signal_tracker.core.domain.signal import Signal, SignalCategory
from signal_tracker.core.state_machine.signal_state_machine import advance
from signal_tracker.data.providers import PriceFeed
from signal_tracker.notifications.notification_service import (
    NotificationSink,
    SignalCompletedEvent,
    dispatch_notification,
)
from signal_tracker.services.price_simulator import PriceSimulator
from signal_tracker.store.signal_store import SignalStore
from signal_tracker.utils.error_handler import ErrorHandler

logger = logging.getLogger(__name__)


class SignalMonitor:
    """
    Periodically reprices every active signal and retires finished ones.

    Responsibilities:
    - Fetch a price per signal (live feed, simulator as fallback)
    - Advance each signal through the lifecycle state machine
    - Write ACTIVE signals back and archive terminal ones
    - Emit a completion event per archived signal
    - Clear stale terminal records every N ticks
    """

    def __init__(
        self,
        store: SignalStore,
        price_feed: Optional[PriceFeed],
        notifier: Optional[NotificationSink] = None,
        config: Optional[MonitorConfig] = None,
        simulator: Optional[PriceSimulator] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        """
        Initialize monitor.

        Args:
            store: Signal store
            price_feed: Live price source (None to always simulate)
            notifier: Sink for completion events
            config: Monitor configuration
            simulator: Fallback price generator
            error_handler: Error handler for per-signal failures
        """
        self.store = store
        self.price_feed = price_feed
        self.notifier = notifier
        self.config = config or MonitorConfig()
        self.simulator = simulator or PriceSimulator()
        self.error_handler = error_handler or ErrorHandler(notifier)

        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.last_tick_at: Optional[datetime] = None
        self.signals_processed = 0
        self.signals_archived = 0
        self.simulated_prices = 0
        self.errors = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the monitor loop; a no-op when already running"""
        if self.is_running:
            logger.debug("Monitor already running")
            return
        self._task = asyncio.get_running_loop().create_task(self.run())
        logger.info(
            f"Monitor started (every {self.config.interval_seconds}s)",
            extra={'component': 'SignalMonitor'},
        )

    async def stop(self) -> None:
        """Stop the loop and wait until it has exited"""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Monitor stopped", extra={'component': 'SignalMonitor'})

    async def run(self) -> None:
        """Monitor loop"""
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.errors += 1
                logger.error(f"Monitor tick failed: {e}", exc_info=True)

            try:
                await asyncio.sleep(self.config.interval_seconds)
            except asyncio.CancelledError:
                break

    async def tick(self) -> None:
        """Process every category once"""
        self.ticks += 1
        self.last_tick_at = utc_now()

        for category in SignalCategory:
            signals = self.store.get_active(category)
            if not signals:
                continue
            await asyncio.gather(*(self._process(signal, category) for signal in signals))

        if self.ticks % self.config.cleanup_every_ticks == 0:
            self.store.clear_expired(self.config.max_age_hours)

    async def _price_for(self, signal: Signal) -> float:
        price = None
        if self.price_feed is not None:
            try:
                price = await asyncio.wait_for(
                    self.price_feed.current_price(signal.pair),
                    timeout=self.config.fetch_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.debug(f"Price fetch timed out for {signal.pair}")
            except Exception as e:
                await self.error_handler.handle_data_error(signal.pair, e)

        if price is None or price <= 0:
            self.simulated_prices += 1
            price = self.simulator.next_price(signal)
        return price

    async def _process(self, signal: Signal, category: SignalCategory) -> None:
        try:
            if signal.status.is_terminal:
                updated = signal
            else:
                price = await self._price_for(signal)
                updated = advance(signal, price, now=utc_now())
            self.signals_processed += 1

            if not updated.status.is_terminal:
                self.store.upsert_one(updated, category, create_missing=False)
                return

            archived = self.store.archive(updated.id, category, final=updated)
            if archived is None:
                return
            self.signals_archived += 1
            logger.info(
                f"Signal {archived.id} {archived.status.value} at {archived.current_price}",
                extra={'pair': archived.pair, 'category': category.value, 'signal_id': archived.id},
            )
            dispatch_notification(self.notifier, SignalCompletedEvent(signal=archived, category=category))

        except Exception as e:
            self.errors += 1
            await self.error_handler.handle_runtime_error("SignalMonitor", e, pair=signal.pair)

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "ticks": self.ticks,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "signals_processed": self.signals_processed,
            "signals_archived": self.signals_archived,
            "simulated_prices": self.simulated_prices,
            "errors": self.errors,
            "active": {c.value: len(self.store.get_active(c)) for c in SignalCategory},
        }

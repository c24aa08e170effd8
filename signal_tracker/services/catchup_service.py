"""Startup reconciliation of signals left active across downtime"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from signal_tracker.config.settings import MonitorConfig
from signal_tracker.config.timezone import utc_now
from signal_tracker.core.domain.signal import Signal, SignalCategory
from signal_tracker.core.state_machine.signal_state_machine import reconcile
from signal_tracker.data.providers import PriceFeed
from signal_tracker.notifications.notification_service import (
    NotificationSink,
    SignalCompletedEvent,
    dispatch_notification,
)
from signal_tracker.store.signal_store import SignalStore

logger = logging.getLogger(__name__)


@dataclass
class CatchUpReport:
    """Outcome of one reconciliation pass"""
    checked: int = 0
    updated: int = 0
    archived: int = 0
    failed: int = 0
    archived_ids: List[str] = field(default_factory=list)


class CatchUpService:
    """
    Reconciles every active signal against the current price once.

    Without price history for the gap only the present price is compared
    against the ladder; when no price is available the last known price is
    used, so only expiry can retire the signal.
    """

    def __init__(
        self,
        store: SignalStore,
        price_feed: Optional[PriceFeed],
        notifier: Optional[NotificationSink] = None,
        config: Optional[MonitorConfig] = None,
    ):
        self.store = store
        self.price_feed = price_feed
        self.notifier = notifier
        self.config = config or MonitorConfig()

    async def _price_for(self, signal: Signal) -> float:
        if self.price_feed is not None:
            try:
                price = await asyncio.wait_for(
                    self.price_feed.current_price(signal.pair),
                    timeout=self.config.fetch_timeout_seconds,
                )
                if price is not None and price > 0:
                    return price
            except Exception as e:
                logger.warning(f"Catch-up price unavailable for {signal.pair}: {e!r}")
        return signal.current_price

    async def run(self) -> CatchUpReport:
        """
        Run one pass over all categories.

        Returns:
            Counts of checked, updated, archived and failed signals
        """
        report = CatchUpReport()
        now = utc_now()

        for category in SignalCategory:
            for signal in self.store.get_active(category):
                report.checked += 1
                try:
                    price = await self._price_for(signal)
                    updated = reconcile(signal, price, now=now)

                    if not updated.status.is_terminal:
                        self.store.upsert_one(updated, category, create_missing=False)
                        report.updated += 1
                        continue

                    archived = self.store.archive(updated.id, category, final=updated)
                    if archived is not None:
                        report.archived += 1
                        report.archived_ids.append(archived.id)
                        dispatch_notification(
                            self.notifier, SignalCompletedEvent(signal=archived, category=category)
                        )
                except Exception as e:
                    report.failed += 1
                    logger.error(
                        f"Catch-up failed for signal {signal.id}: {e}",
                        extra={'pair': signal.pair, 'category': category.value, 'signal_id': signal.id},
                        exc_info=True,
                    )

        logger.info(
            f"Catch-up complete: {report.checked} checked, {report.archived} archived, "
            f"{report.updated} updated, {report.failed} failed",
            extra={'component': 'CatchUpService'},
        )
        return report

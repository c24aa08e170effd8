"""Notification sink protocol and events"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Optional, Protocol, Sequence, Set, Union

from signal_tracker.config.timezone import utc_now
from signal_tracker.core.domain.signal import Signal, SignalCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalCompletedEvent:
    """A signal left the active set (completed, stopped or expired)"""
    signal: Signal
    category: SignalCategory
    occurred_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class BatchGeneratedEvent:
    """A generation run replaced (or tried to replace) a category's active set"""
    category: SignalCategory
    signals: Sequence[Signal]
    evaluated: int
    occurred_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ErrorAlertEvent:
    """A component reported an error worth surfacing to operators"""
    component: str
    severity: str
    message: str
    exception_type: str
    pair: Optional[str] = None
    occurred_at: datetime = field(default_factory=utc_now)


NotificationEvent = Union[SignalCompletedEvent, BatchGeneratedEvent, ErrorAlertEvent]


class NotificationSink(Protocol):
    """Protocol for notification sinks"""

    async def notify(self, event: NotificationEvent) -> None:
        """Deliver an event"""
        ...


class LoggingNotificationSink:
    """
    Sink that writes events to the application log.

    The most recent ``history`` events are kept in ``events``; older ones
    are dropped.
    """

    def __init__(self, history: int = 100):
        self.events: Deque[NotificationEvent] = deque(maxlen=history)

    async def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)
        if isinstance(event, SignalCompletedEvent):
            s = event.signal
            logger.info(
                f"[CLOSE] {s.pair} {s.direction.value} {s.status.value} "
                f"P/L {s.profit_loss_percentage:+.2f}%",
                extra={'pair': s.pair, 'category': event.category.value, 'signal_id': s.id},
            )
        elif isinstance(event, BatchGeneratedEvent):
            logger.info(
                f"[BATCH] {event.category.value}: {len(event.signals)} signals "
                f"from {event.evaluated} instruments",
                extra={'category': event.category.value},
            )
        elif isinstance(event, ErrorAlertEvent):
            logger.warning(
                f"[{event.severity}] {event.component}: {event.message}",
                extra={'component': event.component, 'pair': event.pair},
            )


class CompositeNotificationSink:
    """Fans an event out to several sinks; one failing sink does not stop the rest"""

    def __init__(self, sinks: Sequence[NotificationSink]):
        self.sinks = list(sinks)

    async def notify(self, event: NotificationEvent) -> None:
        results = await asyncio.gather(
            *(sink.notify(event) for sink in self.sinks), return_exceptions=True
        )
        for sink, result in zip(self.sinks, results):
            if isinstance(result, Exception):
                logger.error(f"Notification sink {type(sink).__name__} failed: {result}")


# Strong references to in-flight notification tasks
_pending: Set[asyncio.Task] = set()


async def _deliver(sink: NotificationSink, event: NotificationEvent) -> None:
    try:
        await sink.notify(event)
    except Exception as e:
        logger.error(f"Failed to send notification: {e}")


def dispatch_notification(sink: Optional[NotificationSink], event: NotificationEvent) -> Optional[asyncio.Task]:
    """
    Fire-and-forget delivery of an event.

    Must be called from a running event loop. Failures are logged and
    never reach the caller.

    Returns:
        The delivery task, or None when there is no sink
    """
    if sink is None:
        return None
    task = asyncio.get_running_loop().create_task(_deliver(sink, event))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task

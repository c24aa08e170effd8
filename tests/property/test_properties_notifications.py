"""Property-based tests for notification services"""
import asyncio

import pytest

from signal_tracker.core.domain.signal import SignalCategory, SignalStatus
from signal_tracker.data.flow_provider import (
    EXCHANGE_ADDRESSES,
    BlockchainInfoFlowSource,
    classify_transactions,
)
from signal_tracker.data.providers import FlowTransfer
from signal_tracker.notifications.notification_service import (
    BatchGeneratedEvent,
    CompositeNotificationSink,
    ErrorAlertEvent,
    LoggingNotificationSink,
    SignalCompletedEvent,
    dispatch_notification,
)
from signal_tracker.notifications.telegram_service import TelegramNotificationService

from conftest import NOW, build_signal

EXCHANGE = sorted(EXCHANGE_ADDRESSES)[0]


class RecordingTelegram(TelegramNotificationService):
    """Telegram service that records messages instead of posting them"""

    def __init__(self, **kwargs):
        super().__init__(bot_token="test_token", chat_id="test_chat", **kwargs)
        self.sent = []

    async def _send_message(self, text: str) -> None:
        self.sent.append(text)


class BrokenSink:
    async def notify(self, event):
        raise RuntimeError("sink down")


def completed_event(**overrides):
    fields = dict(
        status=SignalStatus.COMPLETED,
        tp1_hit=True,
        tp2_hit=True,
        profit_loss_percentage=6.5,
        completed_at=NOW,
    )
    fields.update(overrides)
    signal = build_signal("SIG-CLOSE", **fields)
    return SignalCompletedEvent(signal=signal, category=SignalCategory.STANDARD, occurred_at=NOW)


def test_telegram_timezone_setup():
    service = TelegramNotificationService(bot_token="test_token", chat_id="test_chat", timezone="Africa/Johannesburg")
    assert service.tz_converter.timezone == "Africa/Johannesburg"
    assert service.api_url.endswith("/bottest_token/sendMessage")


# Feature: signal-tracker, Property 25: Close message content
def test_close_message_content():
    """
    Feature: signal-tracker, Property 25: Close message content

    A close message names the pair, outcome, ladder, reached targets and
    realized result, with the close time in the configured timezone.
    """
    service = RecordingTelegram(timezone="Africa/Johannesburg")

    text = service.format_completed(completed_event())

    assert "[CLOSE] BTC/USDT BUY" in text
    assert "TP2 HIT" in text
    assert "Targets reached: TP1, TP2" in text
    assert "Result: +6.50%" in text
    assert "2024-06-01 14:00:00 SAST" in text
    assert "ID: SIG-CLOSE" in text


def test_close_message_outcomes():
    service = RecordingTelegram()

    stopped = service.format_completed(completed_event(status=SignalStatus.STOPPED, tp2_hit=False, tp1_hit=False))
    assert "SL HIT" in stopped
    assert "Targets reached: none" in stopped

    expired = service.format_completed(completed_event(tp1_hit=False, tp2_hit=False))
    assert "EXPIRED" in expired


@pytest.mark.asyncio
async def test_telegram_skips_empty_batches():
    service = RecordingTelegram()

    await service.notify(BatchGeneratedEvent(category=SignalCategory.FAST, signals=[], evaluated=12))
    assert service.sent == []

    signals = [build_signal("A"), build_signal("B", pair="ETH/USDT")]
    await service.notify(BatchGeneratedEvent(category=SignalCategory.FAST, signals=signals, evaluated=12, occurred_at=NOW))
    [text] = service.sent
    assert "[SIGNALS] FAST – 2 new" in text
    assert "Instruments evaluated: 12" in text
    assert "ETH/USDT BUY @ 100.00" in text


@pytest.mark.asyncio
async def test_error_alert_message():
    service = RecordingTelegram()
    await service.notify(ErrorAlertEvent(
        component="SignalMonitor",
        severity="ERROR",
        message="boom",
        exception_type="RuntimeError",
        pair="BTC/USDT",
        occurred_at=NOW,
    ))
    [text] = service.sent
    assert "[ERROR] ERROR in SignalMonitor" in text
    assert "Pair: BTC/USDT" in text
    assert "Type: RuntimeError" in text


# Feature: signal-tracker, Property 26: Sink isolation
@pytest.mark.asyncio
async def test_composite_sink_isolates_failures():
    """
    Feature: signal-tracker, Property 26: Sink isolation

    A failing sink neither stops delivery to the others nor reaches the
    code that emitted the event.
    """
    first, second = LoggingNotificationSink(), LoggingNotificationSink()
    composite = CompositeNotificationSink([first, BrokenSink(), second])
    event = completed_event()

    await composite.notify(event)

    assert list(first.events) == [event]
    assert list(second.events) == [event]


@pytest.mark.asyncio
async def test_dispatch_is_fire_and_forget():
    sink = LoggingNotificationSink()
    event = completed_event()

    task = dispatch_notification(sink, event)
    assert list(sink.events) == []
    await task
    assert list(sink.events) == [event]

    assert dispatch_notification(None, event) is None

    failing = dispatch_notification(BrokenSink(), event)
    await failing
    assert failing.exception() is None


def tx(tx_hash, value_btc, senders=(), receivers=("1Someone",)):
    outputs = [{"addr": addr, "value": int(value_btc * 100_000_000 / len(receivers))} for addr in receivers]
    return {
        "hash": tx_hash,
        "inputs": [{"prev_out": {"addr": addr}} for addr in senders],
        "out": outputs,
    }


def test_classify_transactions():
    txs = [
        tx("in", 50, senders=("1Whale",), receivers=(EXCHANGE,)),
        tx("out", 50, senders=(EXCHANGE,), receivers=("1Cold",)),
        tx("between", 50, senders=(EXCHANGE,), receivers=(EXCHANGE,)),
        tx("small", 1, senders=(EXCHANGE,)),
    ]

    transfers = classify_transactions(txs, btc_price=60_000)

    assert [(t.tx_hash, t.flow) for t in transfers] == [
        ("in", "inflow"),
        ("out", "outflow"),
        ("between", "transfer"),
    ]
    assert transfers[0].amount == pytest.approx(50)
    assert transfers[0].usd_value == pytest.approx(3_000_000)
    assert [t.sentiment for t in transfers] == ["BEARISH", "BULLISH", "NEUTRAL"]


def test_classify_respects_limit():
    txs = [tx(str(n), 100) for n in range(30)]
    assert len(classify_transactions(txs, btc_price=60_000, limit=20)) == 20


@pytest.mark.asyncio
async def test_flow_source_ignores_non_btc_pairs():
    assert await BlockchainInfoFlowSource().transfers("ETH/USDT") == []


def test_flow_transfer_sentiment():
    assert FlowTransfer("h", "outflow", 1.0, 1.0).sentiment == "BULLISH"


@pytest.mark.asyncio
async def test_logging_sink_keeps_bounded_history():
    sink = LoggingNotificationSink(history=5)
    events = [completed_event(pair=f"P{i}/USDT") for i in range(50)]

    for event in events:
        await sink.notify(event)

    assert list(sink.events) == events[-5:]
    assert len(LoggingNotificationSink().events) == 0

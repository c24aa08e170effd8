"""Telegram notification service"""
import logging
import aiohttp
from signal_tracker.config.timezone import TimezoneConverter, utc_now
from signal_tracker.core.domain.signal import Signal, SignalStatus
from signal_tracker.notifications.notification_service import (
    BatchGeneratedEvent,
    ErrorAlertEvent,
    NotificationEvent,
    SignalCompletedEvent,
)

logger = logging.getLogger(__name__)


def _fmt(price: float | None) -> str:
    if price is None:
        return "-"
    return f"{price:.2f}" if price >= 100 else f"{price:.6g}"


class TelegramNotificationService:
    """
    Telegram notification sink using the Bot API.

    Sends formatted HTML messages to the configured chat.
    """

    def __init__(self, bot_token: str, chat_id: str, timezone: str = "UTC", timeout_seconds: float = 10.0):
        """
        Initialize Telegram service.

        Args:
            bot_token: Telegram bot token
            chat_id: Telegram chat ID
            timezone: Timezone for timestamp conversion
            timeout_seconds: HTTP request timeout
        """
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.tz_converter = TimezoneConverter(timezone)
        self.api_url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _send_message(self, text: str) -> None:
        """
        Send message to Telegram.

        Args:
            text: Message text
        """
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                payload = {
                    'chat_id': self.chat_id,
                    'text': text,
                    'parse_mode': 'HTML'
                }

                async with session.post(self.api_url, json=payload) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Telegram API error: {error_text}")
                    else:
                        logger.info("Telegram message sent successfully")

        except Exception as e:
            logger.error(f"Failed to send Telegram message: {e}")

    async def notify(self, event: NotificationEvent) -> None:
        if isinstance(event, SignalCompletedEvent):
            await self._send_message(self.format_completed(event))
        elif isinstance(event, BatchGeneratedEvent):
            if event.signals:
                await self._send_message(self.format_batch(event))
        elif isinstance(event, ErrorAlertEvent):
            await self._send_message(self.format_error(event))

    def format_error(self, event: ErrorAlertEvent) -> str:
        """[ERROR] message for an operator alert"""
        timestamp = self.tz_converter.format_local(event.occurred_at)
        pair_line = f"\n• Pair: {event.pair}" if event.pair else ""
        return f"""<b>[ERROR] {event.severity} in {event.component}</b>

• Time: {timestamp}{pair_line}
• Type: {event.exception_type}
• Message: {event.message}"""

    def format_completed(self, event: SignalCompletedEvent) -> str:
        """[CLOSE] message for a completed or stopped signal"""
        s: Signal = event.signal
        closed_at = self.tz_converter.format_local(s.completed_at or event.occurred_at)

        if s.status == SignalStatus.STOPPED:
            outcome = "SL HIT ❌"
        elif s.tp3_hit:
            outcome = "TP3 HIT 🎯"
        elif s.tp2_hit:
            outcome = "TP2 HIT 🎯"
        else:
            outcome = "EXPIRED ⏱"

        hits = ", ".join(f"TP{i}" for i, hit in enumerate((s.tp1_hit, s.tp2_hit, s.tp3_hit), 1) if hit) or "none"

        return f"""<b>[CLOSE] {s.pair} {s.direction.value} – {outcome}</b>

• Time: {closed_at}
• Category: {event.category.value}
• Entry: {_fmt(s.entry_price)}
• Stop Loss: {_fmt(s.stop_loss)}
• TP1/TP2/TP3: {_fmt(s.take_profit_1)} / {_fmt(s.take_profit_2)} / {_fmt(s.take_profit_3)}
• Targets reached: {hits}
• Result: {s.profit_loss_percentage:+.2f}%

ID: {s.id}"""

    def format_batch(self, event: BatchGeneratedEvent) -> str:
        """[SIGNALS] message summarizing a generation run"""
        generated_at = self.tz_converter.format_local(event.occurred_at or utc_now())
        lines = [
            f"<b>[SIGNALS] {event.category.value.upper()} – {len(event.signals)} new</b>",
            "",
            f"• Time: {generated_at}",
            f"• Instruments evaluated: {event.evaluated}",
        ]
        for s in list(event.signals)[:10]:
            lines.append(
                f"• {s.pair} {s.direction.value} @ {_fmt(s.entry_price)} "
                f"(SL {_fmt(s.stop_loss)}, TP2 {_fmt(s.take_profit_2)}, {s.confidence:.0f}%)"
            )
        return "\n".join(lines)

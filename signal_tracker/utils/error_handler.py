"""Centralized error handling"""
import logging
from typing import Optional

from signal_tracker.notifications.notification_service import (
    ErrorAlertEvent,
    NotificationSink,
    dispatch_notification,
)

logger = logging.getLogger(__name__)


class ErrorHandler:
    """
    Centralized error handling for the application.

    Handles different types of errors:
    - Startup errors (fatal)
    - Runtime errors (non-fatal)
    - Data errors (non-fatal)
    """

    def __init__(self, notification_service: Optional[NotificationSink] = None):
        """
        Initialize error handler.

        Args:
            notification_service: Notification sink for alerts
        """
        self.notification_service = notification_service
        self.runtime_errors = 0
        self.data_errors = 0

    def _alert(self, component: str, severity: str, error: Exception, pair: Optional[str] = None) -> None:
        event = ErrorAlertEvent(
            component=component,
            severity=severity,
            message=str(error),
            exception_type=type(error).__name__,
            pair=pair,
        )
        dispatch_notification(self.notification_service, event)

    async def handle_startup_error(
        self,
        component: str,
        error: Exception
    ) -> None:
        """
        Handle fatal startup errors.

        Actions:
        1. Log error with full stack trace
        2. Send error alert
        3. Raise exception to abort startup

        Args:
            component: Component where error occurred
            error: The exception
        """
        logger.critical(
            f"FATAL STARTUP ERROR in {component}: {error}",
            extra={'component': component},
            exc_info=error
        )

        if self.notification_service:
            try:
                await self.notification_service.notify(ErrorAlertEvent(
                    component=component,
                    severity="CRITICAL",
                    message=str(error),
                    exception_type=type(error).__name__,
                ))
            except Exception as e:
                logger.error(f"Failed to send error notification: {e}")

        # Abort startup
        raise error

    async def handle_runtime_error(
        self,
        component: str,
        error: Exception,
        pair: Optional[str] = None
    ) -> None:
        """
        Handle non-fatal runtime errors.

        The error is logged with its context and an alert is dispatched in
        the background; execution continues.

        Args:
            component: Component where error occurred
            error: The exception
            pair: Instrument being processed (if applicable)
        """
        self.runtime_errors += 1
        error_msg = f"RUNTIME ERROR in {component}: {error}"
        if pair:
            error_msg += f" (pair: {pair})"

        logger.error(
            error_msg,
            extra={'component': component, 'pair': pair},
            exc_info=error
        )
        self._alert(component, "ERROR", error, pair)

    async def handle_data_error(
        self,
        pair: str,
        error: Exception
    ) -> None:
        """
        Handle data-related errors.

        Logs a warning; the caller skips the current instrument.

        Args:
            pair: Instrument being processed
            error: The exception
        """
        self.data_errors += 1
        logger.warning(
            f"DATA ERROR for {pair}: {error}",
            extra={'component': 'PriceFeed', 'pair': pair}
        )

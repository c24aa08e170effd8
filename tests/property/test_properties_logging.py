"""Property-based tests for logging and error handling"""
import asyncio
import json
import logging
import sys

import pytest

from signal_tracker.notifications.notification_service import (
    ErrorAlertEvent,
    LoggingNotificationSink,
)
from signal_tracker.utils.error_handler import ErrorHandler
from signal_tracker.utils.logging_config import StructuredFormatter, setup_logging


def make_record(msg="Test message", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord(
        name="test",
        level=level,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# Feature: signal-tracker, Property 24: Structured log format
def test_structured_log_format():
    """
    Feature: signal-tracker, Property 24: Structured log format

    Every record renders as one JSON object with timestamp, level, logger
    and message, plus any signal context passed through ``extra``.
    """
    formatter = StructuredFormatter()

    log_data = json.loads(formatter.format(make_record(pair="BTC/USDT", category="fast", signal_id="SIG-1")))

    assert log_data['level'] == 'INFO'
    assert log_data['logger'] == 'test'
    assert log_data['message'] == 'Test message'
    assert 'timestamp' in log_data
    assert log_data['pair'] == 'BTC/USDT'
    assert log_data['category'] == 'fast'
    assert log_data['signal_id'] == 'SIG-1'
    assert 'component' not in log_data


def test_exception_logging():
    formatter = StructuredFormatter()
    try:
        raise ValueError("Test exception")
    except ValueError:
        record = make_record("Error occurred", logging.ERROR, sys.exc_info())

    log_data = json.loads(formatter.format(record))

    assert log_data['exception']['type'] == 'ValueError'
    assert log_data['exception']['message'] == 'Test exception'
    assert 'Traceback' in log_data['exception']['traceback']


def test_setup_logging_installs_one_handler():
    setup_logging("DEBUG", structured=True)
    setup_logging("WARNING", structured=False)

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert root.level == logging.WARNING
    assert not isinstance(root.handlers[0].formatter, StructuredFormatter)
    assert logging.getLogger('yfinance').level == logging.WARNING


@pytest.mark.asyncio
async def test_startup_error_is_reraised_after_alert():
    sink = LoggingNotificationSink()
    handler = ErrorHandler(sink)

    with pytest.raises(RuntimeError, match="db down"):
        await handler.handle_startup_error("SignalStore", RuntimeError("db down"))

    [event] = sink.events
    assert isinstance(event, ErrorAlertEvent)
    assert event.severity == "CRITICAL"
    assert event.exception_type == "RuntimeError"


@pytest.mark.asyncio
async def test_runtime_and_data_errors_are_counted(caplog):
    sink = LoggingNotificationSink()
    handler = ErrorHandler(sink)

    with caplog.at_level(logging.WARNING):
        await handler.handle_runtime_error("SignalMonitor", KeyError("x"), pair="ETH/USDT")
        await handler.handle_data_error("ETH/USDT", ConnectionError("timeout"))
        await asyncio.sleep(0)

    assert handler.runtime_errors == 1
    assert handler.data_errors == 1
    assert any("RUNTIME ERROR in SignalMonitor" in r.getMessage() for r in caplog.records)
    assert any("DATA ERROR for ETH/USDT" in r.getMessage() for r in caplog.records)
    assert [e.component for e in sink.events] == ["SignalMonitor"]
    assert sink.events[0].pair == "ETH/USDT"

"""Configuration module"""
from signal_tracker.config.settings import (
    AppConfig,
    TelegramConfig,
    MonitorConfig,
    GeneratorConfig,
    StoreConfig,
    get_config,
)
from signal_tracker.config.timezone import TimezoneConverter

__all__ = [
    "AppConfig",
    "TelegramConfig",
    "MonitorConfig",
    "GeneratorConfig",
    "StoreConfig",
    "get_config",
    "TimezoneConverter",
]

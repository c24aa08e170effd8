"""
Configuration management using Pydantic settings.
Loads configuration from environment variables.
"""
import os
from typing import Dict, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Pairs tracked when no GENERATOR__PAIRS__* variables are set.
DEFAULT_PAIRS: Dict[str, str] = {
    "BTCUSDT": "BTC/USDT:CRYPTO",
    "ETHUSDT": "ETH/USDT:CRYPTO",
    "BNBUSDT": "BNB/USDT:CRYPTO",
    "SOLUSDT": "SOL/USDT:CRYPTO",
    "XRPUSDT": "XRP/USDT:CRYPTO",
    "ADAUSDT": "ADA/USDT:CRYPTO",
    "DOGEUSDT": "DOGE/USDT:CRYPTO",
    "LINKUSDT": "LINK/USDT:CRYPTO",
    "EURUSD": "EUR/USD:FOREX",
    "GBPUSD": "GBP/USD:FOREX",
    "USDJPY": "USD/JPY:FOREX",
    "XAUUSD": "XAU/USD:FOREX",
}


class TelegramConfig(BaseSettings):
    """Telegram bot configuration (optional notification sink)"""
    bot_token: Optional[str] = Field(None, alias="TELEGRAM__BOT_TOKEN")
    chat_id: Optional[str] = Field(None, alias="TELEGRAM__CHAT_ID")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class MonitorConfig(BaseSettings):
    """Price monitor configuration"""
    interval_seconds: float = Field(3.0, alias="MONITOR__INTERVAL_SECONDS")
    fetch_timeout_seconds: float = Field(5.0, alias="MONITOR__FETCH_TIMEOUT_SECONDS")
    cleanup_every_ticks: int = Field(100, alias="MONITOR__CLEANUP_EVERY_TICKS")
    max_age_hours: float = Field(24.0, alias="MONITOR__MAX_AGE_HOURS")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class GeneratorConfig(BaseSettings):
    """Auto-generation schedule configuration"""
    pairs: Dict[str, str] = Field(default_factory=dict)
    standard_interval_seconds: float = Field(600, alias="GENERATOR__STANDARD_INTERVAL_SECONDS")
    fast_interval_seconds: float = Field(300, alias="GENERATOR__FAST_INTERVAL_SECONDS")
    flow_interval_seconds: float = Field(900, alias="GENERATOR__FLOW_INTERVAL_SECONDS")
    history_points: int = Field(100, alias="GENERATOR__HISTORY_POINTS")
    fast_history_points: int = Field(48, alias="GENERATOR__FAST_HISTORY_POINTS")
    fast_sample_size: int = Field(30, alias="GENERATOR__FAST_SAMPLE_SIZE")
    fetch_timeout_seconds: float = Field(10.0, alias="GENERATOR__FETCH_TIMEOUT_SECONDS")
    collaborator_timeout_seconds: float = Field(3.0, alias="GENERATOR__COLLABORATOR_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @classmethod
    def load_pairs_from_env(cls) -> Dict[str, str]:
        """Parse pair mappings from environment variables"""
        pairs = {}
        prefix = "GENERATOR__PAIRS__"

        for key, value in os.environ.items():
            if key.startswith(prefix):
                alias = key[len(prefix):]
                pairs[alias] = value

        return pairs

    def interval_for(self, category: str) -> float:
        """Generation interval in seconds for a category"""
        intervals = {
            "standard": self.standard_interval_seconds,
            "fast": self.fast_interval_seconds,
            "flow": self.flow_interval_seconds,
        }
        if category not in intervals:
            raise ValueError(f"Unknown category: {category}")
        return intervals[category]


class StoreConfig(BaseSettings):
    """Signal store configuration"""
    url: str = Field("sqlite:///signal_tracker.db", alias="STORE__URL")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def in_memory(self) -> bool:
        return self.url == "memory"


class AppConfig(BaseSettings):
    """Main application configuration"""
    timezone: str = Field("UTC", alias="APP_TIMEZONE")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_structured: bool = Field(True, alias="LOG_STRUCTURED")
    price_feed: str = Field("yfinance", alias="APP_PRICE_FEED")
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    generator: GeneratorConfig = Field(default_factory=GeneratorConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Load generator universe, falling back to the default pairs
        pairs = GeneratorConfig.load_pairs_from_env() or dict(DEFAULT_PAIRS)
        if not self.generator.pairs:
            generator_data = self.generator.model_dump(exclude={'pairs'})
            self.generator = GeneratorConfig(pairs=pairs, **generator_data)

    def validate_all(self) -> None:
        """Validate all configuration sections"""
        errors = []

        if bool(self.telegram.bot_token) != bool(self.telegram.chat_id):
            errors.append("TELEGRAM__BOT_TOKEN and TELEGRAM__CHAT_ID must be set together")

        if self.monitor.interval_seconds <= 0:
            errors.append("MONITOR__INTERVAL_SECONDS must be positive")
        if self.monitor.fetch_timeout_seconds <= 0:
            errors.append("MONITOR__FETCH_TIMEOUT_SECONDS must be positive")
        if self.monitor.cleanup_every_ticks <= 0:
            errors.append("MONITOR__CLEANUP_EVERY_TICKS must be positive")

        for category in ("standard", "fast", "flow"):
            if self.generator.interval_for(category) <= 0:
                errors.append(f"GENERATOR__{category.upper()}_INTERVAL_SECONDS must be positive")
        if self.generator.history_points < 30:
            errors.append("GENERATOR__HISTORY_POINTS must be at least 30")

        if not self.generator.pairs:
            errors.append("No pair mappings found. Set GENERATOR__PAIRS__* environment variables")
        for alias, spec in self.generator.pairs.items():
            pair, _, venue = spec.partition(":")
            if not pair or venue.upper() not in ("CRYPTO", "FOREX"):
                errors.append(f"GENERATOR__PAIRS__{alias} must look like 'BTC/USDT:CRYPTO'")

        if self.price_feed not in ("yfinance", "simulated"):
            errors.append("APP_PRICE_FEED must be 'yfinance' or 'simulated'")

        if not self.store.url:
            errors.append("STORE__URL is required")

        if errors:
            raise ValueError(f"Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))


# Process-wide config, only read by the entry point
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create global configuration instance"""
    global _config
    if _config is None:
        _config = AppConfig()
        _config.validate_all()
    return _config

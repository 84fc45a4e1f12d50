"""
Configuration module for the flowwatch trade-flow monitor.
Loads settings from environment variables with validation.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


@dataclass
class StreamConfig:
    """Exchange feed and reconnection settings."""
    symbols: List[str]

    ws_base_url: str = "wss://fstream.binance.com/ws"
    stream_suffix: str = "aggTrade"

    reconnect_base_seconds: float = 5.0
    reconnect_max_seconds: float = 60.0
    max_reconnect_attempts: int = 20
    connect_stagger_seconds: float = 0.5  # Delay between symbol connects


@dataclass
class WindowConfig:
    """Trailing trade window."""
    window_seconds: float = 60.0


@dataclass
class ExhaustionConfig:
    """Exhaustion confirmation parameters."""
    averaging_window: int = 5  # N samples averaged for the collapse test
    collapse_ratio: float = 0.5  # K: current must drop below K x average
    max_wait_ticks: int = 3
    tick_interval_seconds: float = 10.0


@dataclass
class ThresholdDefaults:
    """Default per-symbol thresholds; overridable per symbol."""
    min_volume_usd: float = 100_000.0
    min_dominance: float = 65.0  # Percent
    min_price_change: float = 0.5  # Percent
    cooldown_minutes: float = 15.0
    overrides: Dict[str, Dict[str, float]] = field(default_factory=dict)


@dataclass
class AlertConfig:
    """Outbound alert settings."""
    alert_format: str = "structured"  # "structured" or "human"


@dataclass
class TelegramConfig:
    """Telegram Bot API credentials."""
    bot_token: Optional[str]
    chat_id: Optional[str]
    commands_enabled: bool = True
    api_url: str = "https://api.telegram.org"


@dataclass
class LogConfig:
    """Logging configuration."""
    log_level: str
    json_logging: bool


@dataclass
class Config:
    """Main configuration container."""
    stream: StreamConfig
    window: WindowConfig
    exhaustion: ExhaustionConfig
    thresholds: ThresholdDefaults
    alerts: AlertConfig
    telegram: TelegramConfig
    logging: LogConfig


THRESHOLD_ENV_KEYS = {
    "min_volume_usd": "MIN_VOLUME_USD",
    "min_dominance": "MIN_DOMINANCE",
    "min_price_change": "MIN_PRICE_CHANGE",
    "cooldown_minutes": "COOLDOWN_MINUTES",
}


def get_env(key: str, default: Optional[str] = None, required: bool = True) -> str:
    """Get environment variable with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value or ""


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes")


def get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    value = os.getenv(key, str(default))
    return int(value)


def get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    value = os.getenv(key, str(default))
    return float(value)


def parse_symbols(raw: str) -> List[str]:
    """Split a comma separated symbol list, normalising case and dropping blanks."""
    symbols = []
    for part in raw.split(","):
        symbol = part.strip().upper()
        if symbol and symbol not in symbols:
            symbols.append(symbol)
    return symbols


def _load_overrides(symbols: List[str]) -> Dict[str, Dict[str, float]]:
    """Read <SYMBOL>_MIN_VOLUME_USD style per-symbol overrides."""
    overrides: Dict[str, Dict[str, float]] = {}
    for symbol in symbols:
        for param, suffix in THRESHOLD_ENV_KEYS.items():
            raw = os.getenv(f"{symbol}_{suffix}")
            if raw:
                overrides.setdefault(symbol, {})[param] = float(raw)
    return overrides


def validate_config(config: Config) -> None:
    """Raise ValueError on out-of-range settings."""
    if not config.stream.symbols:
        raise ValueError("SYMBOLS must list at least one symbol")
    if config.window.window_seconds <= 0:
        raise ValueError("WINDOW_SECONDS must be greater than 0")
    if config.exhaustion.averaging_window < 2:
        raise ValueError("EXHAUSTION_WINDOW must be at least 2")
    if not 0 < config.exhaustion.collapse_ratio <= 1:
        raise ValueError("EXHAUSTION_RATIO must be in (0, 1]")
    if config.exhaustion.max_wait_ticks < 1:
        raise ValueError("MAX_WAIT_TICKS must be at least 1")
    if config.exhaustion.tick_interval_seconds < 0:
        raise ValueError("TICK_INTERVAL_SECONDS must not be negative")
    if config.stream.reconnect_base_seconds <= 0:
        raise ValueError("RECONNECT_BASE_SECONDS must be greater than 0")
    if config.stream.reconnect_max_seconds < config.stream.reconnect_base_seconds:
        raise ValueError("RECONNECT_MAX_SECONDS must be >= RECONNECT_BASE_SECONDS")
    if config.stream.max_reconnect_attempts < 0:
        raise ValueError("MAX_RECONNECT_ATTEMPTS must not be negative")
    if config.alerts.alert_format not in ("structured", "human"):
        raise ValueError("ALERT_FORMAT must be 'structured' or 'human'")

    # Thresholds are range-checked by the runtime settings store itself
    from .runtime.settings import validate_param

    defaults = config.thresholds
    for param in THRESHOLD_ENV_KEYS:
        validate_param(param, getattr(defaults, param))
    for symbol, values in defaults.overrides.items():
        for param, value in values.items():
            validate_param(param, value)


def load_config() -> Config:
    """Load and validate configuration from environment."""
    symbols = parse_symbols(get_env("SYMBOLS", "BTCUSDT,ETHUSDT,SOLUSDT", required=False))

    config = Config(
        stream=StreamConfig(
            symbols=symbols,
            ws_base_url=get_env("WS_BASE_URL", "wss://fstream.binance.com/ws", required=False),
            reconnect_base_seconds=get_env_float("RECONNECT_BASE_SECONDS", 5.0),
            reconnect_max_seconds=get_env_float("RECONNECT_MAX_SECONDS", 60.0),
            max_reconnect_attempts=get_env_int("MAX_RECONNECT_ATTEMPTS", 20),
            connect_stagger_seconds=get_env_float("CONNECT_STAGGER_SECONDS", 0.5),
        ),
        window=WindowConfig(
            window_seconds=get_env_float("WINDOW_SECONDS", 60.0),
        ),
        exhaustion=ExhaustionConfig(
            averaging_window=get_env_int("EXHAUSTION_WINDOW", 5),
            collapse_ratio=get_env_float("EXHAUSTION_RATIO", 0.5),
            max_wait_ticks=get_env_int("MAX_WAIT_TICKS", 3),
            tick_interval_seconds=get_env_float("TICK_INTERVAL_SECONDS", 10.0),
        ),
        thresholds=ThresholdDefaults(
            min_volume_usd=get_env_float("MIN_VOLUME_USD", 100_000.0),
            min_dominance=get_env_float("MIN_DOMINANCE", 65.0),
            min_price_change=get_env_float("MIN_PRICE_CHANGE", 0.5),
            cooldown_minutes=get_env_float("COOLDOWN_MINUTES", 15.0),
            overrides=_load_overrides(symbols),
        ),
        alerts=AlertConfig(
            alert_format=get_env("ALERT_FORMAT", "structured", required=False).lower(),
        ),
        telegram=TelegramConfig(
            bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            chat_id=os.getenv("TELEGRAM_CHAT_ID"),
            commands_enabled=get_env_bool("TELEGRAM_COMMANDS", True),
        ),
        logging=LogConfig(
            log_level=get_env("LOG_LEVEL", "INFO", required=False),
            json_logging=get_env_bool("JSON_LOGGING", True),
        ),
    )

    validate_config(config)
    return config

# API clients
from .binance_stream import ConnectionSupervisor, SymbolConnection, FeedMessageError, parse_trade_message
from .telegram_client import TelegramClient, TelegramError

__all__ = [
    "ConnectionSupervisor",
    "SymbolConnection",
    "FeedMessageError",
    "parse_trade_message",
    "TelegramClient",
    "TelegramError",
]

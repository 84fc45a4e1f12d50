"""
Text commands that read and mutate RuntimeConfig.

    /config                      all symbols
    /config BTCUSDT              one symbol
    /set BTCUSDT minDominance 70
    /enable BTCUSDT
    /disable BTCUSDT
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List

from .settings import PARAM_FIELDS, ConfigChange, ConfigValidationError, RuntimeConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandReply:
    ok: bool
    text: str


def _format_config(symbol: str, values: Dict) -> str:
    status = "✅ enabled" if values["enabled"] else "⛔ disabled"
    return (
        f"<b>{symbol}</b> ({status})\n"
        f"  minVolumeUSD: {values['minVolumeUSD']:,.0f}\n"
        f"  minDominance: {values['minDominance']:g}\n"
        f"  minPriceChange: {values['minPriceChange']:g}\n"
        f"  cooldownMinutes: {values['cooldownMinutes']:g}"
    )


def _format_change(change: ConfigChange) -> str:
    return f"{change.symbol} {change.param}: {change.old_value} → {change.new_value}"


class CommandHandler:
    """Parses one command line and applies it to the runtime config."""

    def __init__(self, runtime_config: RuntimeConfig):
        self.runtime_config = runtime_config
        self._commands: Dict[str, Callable[[List[str]], CommandReply]] = {
            "config": self._config,
            "set": self._set,
            "enable": self._enable,
            "disable": self._disable,
            "help": self._help,
        }

    def handle(self, text: str) -> CommandReply:
        parts = text.strip().split()
        if not parts or not parts[0].startswith("/"):
            return CommandReply(False, "Commands start with '/'. Try /help")

        # Telegram appends @botname in group chats
        name = parts[0][1:].split("@", 1)[0].lower()
        command = self._commands.get(name)
        if command is None:
            return CommandReply(False, f"Unknown command: /{name}. Try /help")

        try:
            reply = command(parts[1:])
        except ConfigValidationError as e:
            logger.warning(f"[COMMAND] Rejected '{text.strip()}': {e}")
            return CommandReply(False, f"❌ {e}")

        logger.info(f"[COMMAND] {text.strip()}")
        return reply

    def _config(self, args: List[str]) -> CommandReply:
        configs = self.runtime_config.as_dict()
        if not args:
            if not configs:
                return CommandReply(True, "No symbols configured")
            return CommandReply(
                True, "\n\n".join(_format_config(s, v) for s, v in configs.items())
            )

        symbol = args[0].upper()
        if symbol not in configs:
            raise ConfigValidationError(f"Unknown symbol: {symbol}")
        return CommandReply(True, _format_config(symbol, configs[symbol]))

    def _set(self, args: List[str]) -> CommandReply:
        if len(args) != 3:
            raise ConfigValidationError("Usage: /set SYMBOL PARAM VALUE")
        symbol, param, value = args
        # Accept any capitalisation of the parameter name
        lookup = {name.lower(): name for name in PARAM_FIELDS}
        param = lookup.get(param.lower(), param)
        change = self.runtime_config.set(symbol, param, value)
        return CommandReply(True, f"✅ {_format_change(change)}")

    def _enable(self, args: List[str]) -> CommandReply:
        if len(args) != 1:
            raise ConfigValidationError("Usage: /enable SYMBOL")
        change = self.runtime_config.enable(args[0])
        return CommandReply(True, f"✅ {_format_change(change)}")

    def _disable(self, args: List[str]) -> CommandReply:
        if len(args) != 1:
            raise ConfigValidationError("Usage: /disable SYMBOL")
        change = self.runtime_config.disable(args[0])
        return CommandReply(True, f"✅ {_format_change(change)}")

    def _help(self, args: List[str]) -> CommandReply:
        return CommandReply(True, "\n".join([
            "/config [SYMBOL]",
            f"/set SYMBOL PARAM VALUE  (PARAM: {', '.join(PARAM_FIELDS)})",
            "/enable SYMBOL",
            "/disable SYMBOL",
        ]))

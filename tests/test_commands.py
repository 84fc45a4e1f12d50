"""
Tests for the runtime threshold store and the chat command handler.
"""

import threading
from unittest.mock import AsyncMock

import pytest

from flowwatch.clients.telegram_client import TelegramClient
from flowwatch.runtime.commands import CommandHandler
from flowwatch.runtime.settings import (
    ConfigValidationError,
    RuntimeConfig,
    SymbolRuntimeConfig,
    validate_param,
)


@pytest.fixture
def runtime_config():
    return RuntimeConfig(symbols=["btcusdt", "ETHUSDT"], defaults=SymbolRuntimeConfig())


@pytest.fixture
def handler(runtime_config):
    return CommandHandler(runtime_config)


class TestRuntimeConfig:
    """Tests for validation and atomic updates."""

    def test_symbols_normalised(self, runtime_config):
        assert runtime_config.symbols() == ["BTCUSDT", "ETHUSDT"]
        assert runtime_config.get("btcusdt") is runtime_config.get("BTCUSDT")

    def test_overrides_applied_per_symbol(self):
        config = RuntimeConfig(
            symbols=["BTCUSDT", "ETHUSDT"],
            overrides={"BTCUSDT": {"min_volume_usd": 500_000, "minDominance": 80}},
        )

        assert config.get("BTCUSDT").min_volume_usd == 500_000
        assert config.get("BTCUSDT").min_dominance == 80
        assert config.get("ETHUSDT").min_volume_usd == 100_000

    def test_invalid_override_rejected(self):
        with pytest.raises(ConfigValidationError):
            RuntimeConfig(symbols=["BTCUSDT"], overrides={"BTCUSDT": {"min_dominance": 101}})

    def test_set_returns_change(self, runtime_config):
        change = runtime_config.set("btcusdt", "minPriceChange", "0.8")

        assert change.symbol == "BTCUSDT"
        assert change.old_value == 0.5
        assert change.new_value == 0.8
        assert runtime_config.get("BTCUSDT").min_price_change == 0.8

    @pytest.mark.parametrize("param,value", [
        ("minDominance", 49.9),
        ("minDominance", 100.1),
        ("minVolumeUSD", -1),
        ("cooldownMinutes", -5),
        ("minPriceChange", "abc"),
        ("minPriceChange", "nan"),
        ("minVolumeUSD", float("inf")),
        ("leverage", 5),
    ])
    def test_rejected_changes_leave_state_untouched(self, runtime_config, param, value):
        before = runtime_config.get("BTCUSDT")

        with pytest.raises(ConfigValidationError):
            runtime_config.set("BTCUSDT", param, value)

        assert runtime_config.get("BTCUSDT") == before

    def test_unknown_symbol(self, runtime_config):
        with pytest.raises(ConfigValidationError):
            runtime_config.set("XRPUSDT", "minDominance", 70)
        with pytest.raises(ConfigValidationError):
            runtime_config.disable("XRPUSDT")

    def test_dominance_bounds_inclusive(self):
        assert validate_param("minDominance", 50) == 50.0
        assert validate_param("min_dominance", 100) == 100.0

    def test_enable_disable(self, runtime_config):
        runtime_config.disable("ETHUSDT")
        assert runtime_config.get("ETHUSDT").enabled is False

        runtime_config.enable("ETHUSDT")
        assert runtime_config.get("ETHUSDT").enabled is True

    def test_concurrent_updates_keep_every_field(self, runtime_config):
        """Writers on different fields never lose each other's change."""
        def set_volume():
            for i in range(200):
                runtime_config.set("BTCUSDT", "minVolumeUSD", 1_000 + i)

        def set_dominance():
            for i in range(200):
                runtime_config.set("BTCUSDT", "minDominance", 50 + i % 50)

        threads = [threading.Thread(target=set_volume), threading.Thread(target=set_dominance)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        cfg = runtime_config.get("BTCUSDT")
        assert cfg.min_volume_usd == 1_199
        assert cfg.min_dominance == 50 + 199 % 50


class TestCommandHandler:
    """Tests for command parsing and replies."""

    def test_config_all(self, handler):
        reply = handler.handle("/config")

        assert reply.ok
        assert "<b>BTCUSDT</b>" in reply.text
        assert "<b>ETHUSDT</b>" in reply.text

    def test_config_single(self, handler):
        reply = handler.handle("/config ethusdt")

        assert reply.ok
        assert "ETHUSDT" in reply.text
        assert "BTCUSDT" not in reply.text
        assert "minDominance: 65" in reply.text

    def test_set_case_insensitive_param(self, handler, runtime_config):
        reply = handler.handle("/set BTCUSDT mindominance 70")

        assert reply.ok
        assert "minDominance" in reply.text
        assert runtime_config.get("BTCUSDT").min_dominance == 70

    def test_set_out_of_range(self, handler, runtime_config):
        reply = handler.handle("/set BTCUSDT minDominance 40")

        assert not reply.ok
        assert reply.text.startswith("❌")
        assert runtime_config.get("BTCUSDT").min_dominance == 65

    def test_set_usage(self, handler):
        reply = handler.handle("/set BTCUSDT minDominance")

        assert not reply.ok
        assert "Usage" in reply.text

    def test_disable_with_bot_suffix(self, handler, runtime_config):
        reply = handler.handle("/disable@flowwatch_bot ethusdt")

        assert reply.ok
        assert runtime_config.get("ETHUSDT").enabled is False
        assert "disabled" in handler.handle("/config ETHUSDT").text

    def test_unknown_command(self, handler):
        assert not handler.handle("/leverage 10").ok
        assert not handler.handle("hello").ok
        assert not handler.handle("").ok

    def test_help_lists_params(self, handler):
        text = handler.handle("/help").text

        assert "minVolumeUSD" in text
        assert "/disable SYMBOL" in text


class TestTelegramCommands:
    """Tests for routing chat updates to the handler."""

    @pytest.mark.asyncio
    async def test_command_from_configured_chat(self, handler, runtime_config):
        client = TelegramClient(bot_token="token", chat_id=42)
        client.send_message = AsyncMock()

        await client._handle_update(
            {"update_id": 7, "message": {"text": "/set BTCUSDT cooldownMinutes 5", "chat": {"id": 42}}},
            handler,
        )

        assert runtime_config.get("BTCUSDT").cooldown_minutes == 5
        client.send_message.assert_awaited_once()
        assert client._update_offset == 8

    @pytest.mark.asyncio
    async def test_command_from_other_chat_ignored(self, handler, runtime_config):
        client = TelegramClient(bot_token="token", chat_id=42)
        client.send_message = AsyncMock()

        await client._handle_update(
            {"update_id": 3, "message": {"text": "/disable BTCUSDT", "chat": {"id": 99}}},
            handler,
        )

        assert runtime_config.get("BTCUSDT").enabled is True
        client.send_message.assert_not_awaited()
        assert client._update_offset == 4

    @pytest.mark.asyncio
    async def test_log_only_without_token(self):
        client = TelegramClient(bot_token=None, chat_id=None)

        assert not client.enabled
        await client.send_message("alert text")

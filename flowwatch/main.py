"""
Main entry point for the flowwatch trade-flow monitor.
Builds every component once, wires them together and runs the event loop.
"""

import asyncio
import signal
import sys
from dataclasses import dataclass

from .config import load_config, Config
from .alerts.dispatcher import AlertDispatcher
from .clients.binance_stream import ConnectionSupervisor
from .clients.telegram_client import TelegramClient
from .pipeline import SignalPipeline
from .runtime.commands import CommandHandler
from .runtime.settings import RuntimeConfig
from .signals.aggregator import TradeAggregator
from .signals.cooldown import CooldownManager
from .signals.engine import SignalEngine
from .signals.exhaustion import ExhaustionTracker
from .utils.logger import setup_logging, get_logger

logger = get_logger("main")


@dataclass
class MonitorContext:
    """Single set of process-wide components, passed explicitly."""
    config: Config
    runtime_config: RuntimeConfig
    aggregator: TradeAggregator
    engine: SignalEngine
    tracker: ExhaustionTracker
    cooldowns: CooldownManager
    telegram: TelegramClient
    dispatcher: AlertDispatcher
    pipeline: SignalPipeline
    commands: CommandHandler
    supervisor: ConnectionSupervisor


def build_context(config: Config) -> MonitorContext:
    """Construct all components from configuration."""
    symbols = config.stream.symbols

    runtime_config = RuntimeConfig(
        symbols=symbols,
        defaults=RuntimeConfig.defaults_from(config.thresholds),
        overrides=config.thresholds.overrides,
    )
    aggregator = TradeAggregator(
        window_seconds=config.window.window_seconds,
        symbols=symbols,
    )
    engine = SignalEngine(runtime_config)
    tracker = ExhaustionTracker(
        averaging_window=config.exhaustion.averaging_window,
        collapse_ratio=config.exhaustion.collapse_ratio,
        max_wait_ticks=config.exhaustion.max_wait_ticks,
        tick_interval_ms=int(config.exhaustion.tick_interval_seconds * 1000),
    )
    cooldowns = CooldownManager(runtime_config)
    telegram = TelegramClient(
        bot_token=config.telegram.bot_token,
        chat_id=config.telegram.chat_id,
        base_url=config.telegram.api_url,
    )
    dispatcher = AlertDispatcher(
        sink=telegram.send_message,
        alert_format=config.alerts.alert_format,
    )
    pipeline = SignalPipeline(aggregator, engine, tracker, cooldowns, dispatcher)
    supervisor = ConnectionSupervisor(
        symbols=symbols,
        pipeline=pipeline,
        base_url=config.stream.ws_base_url,
        stream_suffix=config.stream.stream_suffix,
        stagger_seconds=config.stream.connect_stagger_seconds,
        reconnect_base_delay=config.stream.reconnect_base_seconds,
        reconnect_max_delay=config.stream.reconnect_max_seconds,
        max_reconnect_attempts=config.stream.max_reconnect_attempts,
    )

    return MonitorContext(
        config=config,
        runtime_config=runtime_config,
        aggregator=aggregator,
        engine=engine,
        tracker=tracker,
        cooldowns=cooldowns,
        telegram=telegram,
        dispatcher=dispatcher,
        pipeline=pipeline,
        commands=CommandHandler(runtime_config),
        supervisor=supervisor,
    )


class FlowWatchMonitor:
    """
    Main orchestrator.

    Coordinates:
    - Per-symbol trade streams
    - Telegram alert delivery and config commands
    - Periodic status reporting
    """

    STATUS_INTERVAL_SECONDS = 60

    def __init__(self, context: MonitorContext):
        self.ctx = context
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def run(self) -> None:
        """Run until a shutdown is requested."""
        self._running = True
        cfg = self.ctx.config

        logger.info(
            "Starting flowwatch monitor",
            extra={
                "symbols": cfg.stream.symbols,
                "window_seconds": cfg.window.window_seconds,
                "alert_format": cfg.alerts.alert_format,
            }
        )

        await self.ctx.telegram.initialize()
        self.ctx.supervisor.start()

        tasks = [
            asyncio.create_task(self._run_status_reporter(), name="status"),
        ]
        if cfg.telegram.commands_enabled:
            tasks.append(asyncio.create_task(
                self.ctx.telegram.poll_commands(self.ctx.commands), name="commands"
            ))

        try:
            await self._shutdown_event.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.shutdown()

    async def _run_status_reporter(self) -> None:
        """Periodically report statistics."""
        while self._running:
            await asyncio.sleep(self.STATUS_INTERVAL_SECONDS)
            try:
                self._log_stats()
            except Exception as e:
                logger.error(f"Stats reporter error: {e}")

    def _log_stats(self) -> None:
        stats = self.ctx.pipeline.stats
        dispatcher = self.ctx.dispatcher
        logger.info(
            "Monitor statistics",
            extra={
                "trades": stats.trades,
                "candidates": stats.candidates,
                "confirmed": stats.confirmed,
                "timeouts": stats.timeouts,
                "cooldown_blocked": stats.cooldown_blocked,
                "alerts_sent": dispatcher.alerts_sent,
                "alerts_failed": dispatcher.alerts_failed,
                "waiting": self.ctx.tracker.waiting_symbols(),
                "streams": {
                    symbol: status["state"]
                    for symbol, status in self.ctx.supervisor.status().items()
                },
            }
        )

    async def shutdown(self) -> None:
        """Gracefully shutdown the monitor."""
        if not self._running:
            return
        logger.info("Shutting down monitor")
        self._running = False

        await self.ctx.supervisor.stop()
        # Alerts still waiting for their minute boundary are dropped
        await self.ctx.dispatcher.close()
        await self.ctx.telegram.close()

        self._log_stats()
        logger.info("Monitor shutdown complete")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def setup_signal_handlers(monitor: FlowWatchMonitor) -> None:
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        monitor.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main() -> None:
    """Main entry point."""
    try:
        config = load_config()
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(
        level=config.logging.log_level,
        json_format=config.logging.json_logging
    )

    monitor = FlowWatchMonitor(build_context(config))
    setup_signal_handlers(monitor)

    try:
        await monitor.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        await monitor.shutdown()


def run() -> None:
    """Console script entry point."""
    # Use uvloop for better performance on Linux
    try:
        import uvloop
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
    except ImportError:
        pass  # uvloop not available (Windows)

    asyncio.run(main())


if __name__ == "__main__":
    run()

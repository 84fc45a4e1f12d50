"""
Alert dispatcher.

Confirmed signals are delivered on the next whole-minute wall-clock boundary
so their timestamps line up with exchange candles. Each delivery runs as a
detached task keyed by (symbol, side); a second request for a key that is
still pending is dropped. The pending flag is always released when the task
ends, whatever happened to the delivery.
"""
import asyncio
import math
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..signals.aggregator import Side, WindowStats
from ..signals.engine import SignalInterpretation
from ..signals.exhaustion import ExhaustionSummary
from ..utils.logger import AlertLogger, get_logger
from .formatter import STRUCTURED, format_alert

logger = get_logger("dispatcher")

MINUTE_MS = 60_000

AlertSink = Callable[[str], Awaitable[Any]]


def now_ms() -> int:
    return int(time.time() * 1000)


def next_minute_boundary(timestamp_ms: int) -> int:
    """ceil(t / 60000) * 60000; a timestamp already on a boundary is returned as is."""
    return math.ceil(timestamp_ms / MINUTE_MS) * MINUTE_MS


class AlertDispatcher:
    """
    Dedups, minute-aligns, formats and hands alerts to the sink.

    Args:
        sink: async callable receiving the formatted text
        alert_format: "structured" or "human"
        clock: millisecond wall clock
        sleep: awaitable sleep, seconds
    """

    def __init__(
        self,
        sink: AlertSink,
        alert_format: str = STRUCTURED,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.sink = sink
        self.alert_format = alert_format
        self._clock = clock
        self._sleep = sleep
        self._pending: Dict[Tuple[str, Side], asyncio.Task] = {}
        self._alert_log = AlertLogger()

        self.alerts_sent = 0
        self.alerts_failed = 0
        self.alerts_dropped = 0

    def is_pending(self, symbol: str, side: Side) -> bool:
        return (symbol, side) in self._pending

    def pending_keys(self) -> List[Tuple[str, Side]]:
        return list(self._pending)

    def send_alert(
        self,
        symbol: str,
        stats: WindowStats,
        interpretation: SignalInterpretation,
        exhaustion: Optional[ExhaustionSummary] = None
    ) -> bool:
        """
        Schedule delivery at the next minute boundary.

        Must be called from inside the running event loop.

        Returns:
            True if scheduled, False if dropped as a duplicate
        """
        key = (symbol, stats.dominant_side)
        if key in self._pending:
            self.alerts_dropped += 1
            logger.debug(f"Duplicate alert dropped for {symbol} {stats.dominant_side.value}")
            return False

        deliver_at = next_minute_boundary(self._clock())
        task = asyncio.create_task(
            self._deliver(key, stats, interpretation, exhaustion, deliver_at),
            name=f"alert-{symbol}-{stats.dominant_side.value}",
        )
        self._pending[key] = task

        logger.info(
            f"Alert scheduled for {symbol}",
            extra={
                "symbol": symbol,
                "side": stats.dominant_side.value,
                "signal_type": interpretation.signal_type.value,
                "deliver_at": deliver_at,
            }
        )
        return True

    async def _deliver(
        self,
        key: Tuple[str, Side],
        stats: WindowStats,
        interpretation: SignalInterpretation,
        exhaustion: Optional[ExhaustionSummary],
        deliver_at: int
    ) -> None:
        symbol, side = key
        try:
            delay = max(0, deliver_at - self._clock()) / 1000
            if delay > 0:
                await self._sleep(delay)

            try:
                text = format_alert(
                    self.alert_format, symbol, stats, interpretation, deliver_at, exhaustion
                )
            except Exception as e:
                self.alerts_failed += 1
                self._alert_log.alert_failed(symbol, side.value, "format_error", str(e))
                return

            try:
                await self.sink(text)
            except Exception as e:
                # At-most-once: a failed delivery is not retried
                self.alerts_failed += 1
                self._alert_log.alert_failed(symbol, side.value, "delivery_error", str(e))
                return

            self.alerts_sent += 1
            self._alert_log.alert_sent(
                symbol, side.value, interpretation.signal_type.value, deliver_at
            )
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]

    async def wait_idle(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending.values()), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending deliveries; alerts not yet sent are discarded."""
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} pending alerts")

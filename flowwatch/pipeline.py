"""
Per-trade decision pipeline.

trade -> window -> candidate check -> exhaustion wait -> cooldown -> dispatch

The pipeline is synchronous and is driven by a single connection task per
symbol, so all state transitions for one symbol happen in arrival order.
"""
from dataclasses import dataclass
from typing import Optional

from .alerts.dispatcher import AlertDispatcher
from .utils.logger import AlertLogger, get_logger
from .signals.aggregator import TradeAggregator, WindowStats
from .signals.cooldown import CooldownManager
from .signals.engine import SignalEngine
from .signals.exhaustion import ExhaustionResult, ExhaustionTracker, Outcome

logger = get_logger("pipeline")


@dataclass
class PipelineStats:
    trades: int = 0
    candidates: int = 0
    confirmed: int = 0
    timeouts: int = 0
    cooldown_blocked: int = 0
    dispatched: int = 0


class SignalPipeline:
    """Wires the signal components together for one process."""

    def __init__(
        self,
        aggregator: TradeAggregator,
        engine: SignalEngine,
        tracker: ExhaustionTracker,
        cooldowns: CooldownManager,
        dispatcher: AlertDispatcher
    ):
        self.aggregator = aggregator
        self.engine = engine
        self.tracker = tracker
        self.cooldowns = cooldowns
        self.dispatcher = dispatcher
        self.stats = PipelineStats()
        self._alert_log = AlertLogger()

    def process_trade(
        self,
        symbol: str,
        trade_time: int,
        price: float,
        quantity: float,
        is_buyer_initiated: bool
    ) -> Optional[ExhaustionResult]:
        """
        Feed one trade and advance the symbol's decision state.

        Returns the exhaustion result when the trade was a waiting tick,
        otherwise None.
        """
        trade = self.aggregator.add_trade(symbol, trade_time, price, quantity, is_buyer_initiated)
        self.stats.trades += 1
        stats = self.aggregator.get_stats(symbol)

        if self.tracker.is_waiting(symbol):
            cfg = self.engine.runtime_config.get(symbol)
            if cfg is None or not cfg.enabled:
                self.tracker.cancel(symbol)
                logger.info(f"{symbol} disabled while waiting, candidate cancelled")
                return None
            self.tracker.record_trade(symbol, trade)
            if not self.tracker.is_tick_due(symbol, trade_time):
                return None
            result = self.tracker.update(symbol, stats, trade_time)
            self._resolve(symbol, result, trade_time)
            return result

        if self.engine.should_alert(symbol, stats):
            self._start_candidate(symbol, stats, trade_time)
        return None

    def cancel_symbol(self, symbol: str) -> bool:
        """Drop a pending candidate whose feed is gone; True if one was waiting."""
        cancelled = self.tracker.cancel(symbol)
        if cancelled:
            logger.info(f"{symbol} feed stopped while waiting, candidate cancelled")
        return cancelled

    def _start_candidate(self, symbol: str, stats: WindowStats, now: int) -> None:
        if not self.cooldowns.can_alert(symbol, stats, now):
            self.stats.cooldown_blocked += 1
            logger.debug(f"{symbol} {stats.dominant_side.value} candidate blocked by cooldown")
            return

        self.stats.candidates += 1
        self._alert_log.candidate_detected(
            symbol,
            stats.dominant_side.value,
            stats.total_volume,
            stats.dominance,
            stats.price_change,
        )
        self.tracker.start_waiting(symbol, stats, now)

    def _resolve(self, symbol: str, result: ExhaustionResult, now: int) -> None:
        if result.outcome is Outcome.WAITING:
            return

        pending = result.pending_stats
        side = pending.dominant_side.value
        # Discard in-flight momentum so the same impulse cannot re-trigger
        self.aggregator.reset_symbol(symbol)

        if result.outcome is Outcome.TIMED_OUT:
            self.stats.timeouts += 1
            self._alert_log.exhaustion_timeout(symbol, side, result.tick_count)
            return

        self.stats.confirmed += 1
        self._alert_log.exhaustion_confirmed(
            symbol, side, result.tick_count, result.summary.aggression_drop_pct
        )

        # Thresholds may have changed while the candidate was waiting
        if not self.cooldowns.can_alert(symbol, pending, now):
            self.stats.cooldown_blocked += 1
            logger.info(f"{symbol} {side} confirmed but still cooling down")
            return

        self.cooldowns.record_alert(symbol, pending, now)
        interpretation = self.engine.interpret_signal(pending)
        if self.dispatcher.send_alert(symbol, pending, interpretation, result.summary):
            self.stats.dispatched += 1

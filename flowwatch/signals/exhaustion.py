"""
Exhaustion Tracker

Holds a detected candidate back until its aggressive flow visibly fades.

Per symbol the tracker is either Idle or Waiting. While waiting, every tick
appends an aggression sample and the absolute price change. Aggression is
the volume traded on the candidate's side since the previous sample; the
seed sample is the candidate window's dominant volume. A candidate is
confirmed only when all of the following hold on the latest sample:

1. Momentum collapse: current aggression < K x mean of the prior samples
2. Sustained fade: the last three aggression samples strictly decrease
3. Stalling price: the latest price-change delta is no larger than the
   previous one, or is below the neutrality threshold

If the tick budget runs out first the candidate is dropped without an alert.
The stats reported on confirmation are the ones captured at detection time.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Union

from .aggregator import Side, Trade, WindowStats

logger = logging.getLogger(__name__)

PRICE_NEUTRAL_THRESHOLD = 0.1  # percent
MIN_SAMPLES = 3


class InvalidTransition(RuntimeError):
    """State machine transition that is not allowed from the current state."""


@dataclass(frozen=True)
class AggressionSample:
    timestamp: int
    aggression: float
    price_change: float  # absolute percent


@dataclass(frozen=True)
class Idle:
    """No candidate pending for the symbol."""


IDLE = Idle()


@dataclass
class Waiting:
    """Candidate pending exhaustion confirmation."""
    pending_stats: WindowStats
    wait_start: int
    history: Deque[AggressionSample]
    tick_count: int = 0
    last_tick_at: int = 0
    tick_volume: float = 0.0  # candidate-side volume since the last sample

    @property
    def side(self) -> Side:
        return self.pending_stats.dominant_side


SymbolState = Union[Idle, Waiting]


class Outcome(Enum):
    WAITING = "waiting"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ExhaustionSummary:
    """What the fade looked like when the candidate was confirmed."""
    ticks: int
    waited_seconds: float
    peak_aggression: float
    current_aggression: float
    average_aggression: float
    aggression_drop_pct: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "ticks": self.ticks,
            "waitedSeconds": round(self.waited_seconds, 1),
            "peakAggression": round(self.peak_aggression, 2),
            "currentAggression": round(self.current_aggression, 2),
            "averageAggression": round(self.average_aggression, 2),
            "aggressionDropPct": round(self.aggression_drop_pct, 1),
        }


@dataclass(frozen=True)
class ExhaustionResult:
    outcome: Outcome
    symbol: str
    pending_stats: Optional[WindowStats] = None
    summary: Optional[ExhaustionSummary] = None
    tick_count: int = 0

    @property
    def confirmed(self) -> bool:
        return self.outcome is Outcome.CONFIRMED

    @property
    def timed_out(self) -> bool:
        return self.outcome is Outcome.TIMED_OUT


@dataclass(frozen=True)
class ExhaustionCheck:
    """Individual verdicts of the three confirmation conditions."""
    enough_samples: bool
    momentum_collapsed: bool = False
    sustained_fade: bool = False
    price_stalled: bool = False
    details: Dict[str, float] = field(default_factory=dict)

    @property
    def exhausted(self) -> bool:
        return (
            self.enough_samples
            and self.momentum_collapsed
            and self.sustained_fade
            and self.price_stalled
        )


def evaluate_history(
    samples: List[AggressionSample],
    collapse_ratio: float,
    neutral_threshold: float = PRICE_NEUTRAL_THRESHOLD
) -> ExhaustionCheck:
    """Apply the three confirmation conditions to an ordered sample list."""
    if len(samples) < MIN_SAMPLES:
        return ExhaustionCheck(enough_samples=False)

    aggression = [s.aggression for s in samples]
    prices = [s.price_change for s in samples]

    current = aggression[-1]
    prior = aggression[:-1]
    average = sum(prior) / len(prior)
    momentum_collapsed = current < collapse_ratio * average

    a3, a2, a1 = aggression[-3:]
    sustained_fade = a3 > a2 > a1

    previous_delta = prices[-2] - prices[-3]
    latest_delta = prices[-1] - prices[-2]
    price_stalled = latest_delta <= previous_delta or abs(latest_delta) < neutral_threshold

    return ExhaustionCheck(
        enough_samples=True,
        momentum_collapsed=momentum_collapsed,
        sustained_fade=sustained_fade,
        price_stalled=price_stalled,
        details={
            "current": current,
            "average": average,
            "previous_delta": previous_delta,
            "latest_delta": latest_delta,
        },
    )


class ExhaustionTracker:
    """
    Per-symbol waiting state machine.

    Args:
        averaging_window: N, number of prior samples averaged; history keeps N+1
        collapse_ratio: K, fraction of the average the current sample must fall under
        max_wait_ticks: ticks after which an unconfirmed candidate is dropped
        tick_interval_ms: minimum spacing between samples
    """

    def __init__(
        self,
        averaging_window: int = 5,
        collapse_ratio: float = 0.5,
        max_wait_ticks: int = 3,
        tick_interval_ms: int = 10_000
    ):
        self.averaging_window = averaging_window
        self.collapse_ratio = collapse_ratio
        self.max_wait_ticks = max_wait_ticks
        self.tick_interval_ms = tick_interval_ms
        self._states: Dict[str, Waiting] = {}

    def state(self, symbol: str) -> SymbolState:
        return self._states.get(symbol, IDLE)

    def is_waiting(self, symbol: str) -> bool:
        return symbol in self._states

    def waiting_symbols(self) -> List[str]:
        return list(self._states)

    def is_tick_due(self, symbol: str, now: int) -> bool:
        """True when enough time passed since the last sample to take another."""
        waiting = self._states.get(symbol)
        if waiting is None:
            return False
        return now - waiting.last_tick_at >= self.tick_interval_ms

    def start_waiting(self, symbol: str, stats: WindowStats, now: int) -> Waiting:
        """Idle -> Waiting with the candidate's stats frozen for reporting."""
        if symbol in self._states:
            raise InvalidTransition(f"{symbol} is already waiting for exhaustion")

        history: Deque[AggressionSample] = deque(maxlen=self.averaging_window + 1)
        history.append(AggressionSample(
            timestamp=now,
            aggression=stats.dominant_volume,
            price_change=abs(stats.price_change),
        ))
        waiting = Waiting(
            pending_stats=stats,
            wait_start=now,
            history=history,
            last_tick_at=now,
        )
        self._states[symbol] = waiting

        logger.info(
            f"[EXHAUSTION] {symbol} waiting: {stats.dominant_side.value} "
            f"${stats.dominant_volume:,.0f} ({stats.price_change:+.2f}%)"
        )
        return waiting

    def record_trade(self, symbol: str, trade: Trade) -> None:
        """Accumulate a trade's candidate-side volume into the current tick."""
        waiting = self._states.get(symbol)
        if waiting is None:
            return
        if waiting.side is Side.BUY:
            waiting.tick_volume += trade.buy_volume
        else:
            waiting.tick_volume += trade.sell_volume

    def update(self, symbol: str, stats: Optional[WindowStats], now: int) -> ExhaustionResult:
        """
        Record one tick for a waiting symbol and resolve it if possible.

        The aggression sample is the volume collected by record_trade since
        the previous sample; stats only supplies the window price change.
        """
        waiting = self._states.get(symbol)
        if waiting is None:
            raise InvalidTransition(f"{symbol} is not waiting for exhaustion")

        aggression = waiting.tick_volume
        waiting.tick_volume = 0.0
        price_change = abs(stats.price_change) if stats else 0.0

        waiting.history.append(AggressionSample(
            timestamp=now,
            aggression=aggression,
            price_change=price_change,
        ))
        waiting.tick_count += 1
        waiting.last_tick_at = now

        check = self.check_exhaustion(symbol)
        if check.exhausted:
            summary = self._summarize(waiting, now)
            del self._states[symbol]
            logger.info(
                f"[EXHAUSTION] {symbol} confirmed after {waiting.tick_count} ticks "
                f"(aggression -{summary.aggression_drop_pct:.0f}%)"
            )
            return ExhaustionResult(
                outcome=Outcome.CONFIRMED,
                symbol=symbol,
                pending_stats=waiting.pending_stats,
                summary=summary,
                tick_count=waiting.tick_count,
            )

        if waiting.tick_count >= self.max_wait_ticks:
            del self._states[symbol]
            logger.info(f"[EXHAUSTION] {symbol} timed out after {waiting.tick_count} ticks")
            return ExhaustionResult(
                outcome=Outcome.TIMED_OUT,
                symbol=symbol,
                pending_stats=waiting.pending_stats,
                tick_count=waiting.tick_count,
            )

        return ExhaustionResult(
            outcome=Outcome.WAITING,
            symbol=symbol,
            tick_count=waiting.tick_count,
        )

    def check_exhaustion(self, symbol: str) -> ExhaustionCheck:
        """Evaluate the confirmation conditions without changing state."""
        waiting = self._states.get(symbol)
        if waiting is None:
            return ExhaustionCheck(enough_samples=False)
        return evaluate_history(list(waiting.history), self.collapse_ratio)

    def cancel(self, symbol: str) -> bool:
        """Waiting -> Idle without an alert. Returns False if nothing was pending."""
        waiting = self._states.pop(symbol, None)
        if waiting is not None:
            logger.debug(f"[EXHAUSTION] {symbol} cancelled")
        return waiting is not None

    def clear(self) -> None:
        self._states.clear()

    @staticmethod
    def _summarize(waiting: Waiting, now: int) -> ExhaustionSummary:
        aggression = [s.aggression for s in waiting.history]
        current = aggression[-1]
        prior = aggression[:-1]
        average = sum(prior) / len(prior)
        peak = max(aggression)
        drop = (1 - current / peak) * 100 if peak > 0 else 0.0
        return ExhaustionSummary(
            ticks=waiting.tick_count,
            waited_seconds=(now - waiting.wait_start) / 1000,
            peak_aggression=peak,
            current_aggression=current,
            average_aggression=average,
            aggression_drop_pct=drop,
        )

"""
Signal Engine

Turns a window snapshot plus the symbol's runtime thresholds into a
go/no-go candidate decision and a classification of the move.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..runtime.settings import RuntimeConfig
from .aggregator import Side, WindowStats

logger = logging.getLogger(__name__)


class SignalType(Enum):
    """Machine tags understood by the downstream executor."""
    SHORT_SQUEEZE = "SHORT_SQUEEZE"
    LONG_FLUSH = "LONG_FLUSH"


@dataclass(frozen=True)
class SignalInterpretation:
    """Human label, trade direction and machine tag for a candidate."""
    label: str
    direction: str  # "LONG" or "SHORT"
    signal_type: SignalType
    description: str


SHORT_SQUEEZE = SignalInterpretation(
    label="SHORT SQUEEZE",
    direction="LONG",
    signal_type=SignalType.SHORT_SQUEEZE,
    description="Aggressive buying is forcing shorts out",
)

LONG_LIQUIDATION = SignalInterpretation(
    label="LONG LIQUIDATION",
    direction="SHORT",
    signal_type=SignalType.LONG_FLUSH,
    description="Aggressive selling is flushing longs",
)


class SignalEngine:
    """Stateless evaluator; all mutable inputs come from RuntimeConfig."""

    def __init__(self, runtime_config: RuntimeConfig):
        self.runtime_config = runtime_config

    def should_alert(self, symbol: str, stats: Optional[WindowStats]) -> bool:
        """True when the window qualifies as a candidate under the symbol's thresholds."""
        if stats is None:
            return False

        cfg = self.runtime_config.get(symbol)
        if cfg is None or not cfg.enabled:
            return False

        if stats.total_volume < cfg.min_volume_usd:
            return False
        if stats.dominance < cfg.min_dominance:
            return False
        if abs(stats.price_change) < cfg.min_price_change:
            return False

        # Flow and price must agree, otherwise the window is stale or contradictory
        if stats.dominant_side is Side.BUY and stats.price_change <= 0:
            return False
        if stats.dominant_side is Side.SELL and stats.price_change >= 0:
            return False

        return True

    @staticmethod
    def interpret_signal(stats: WindowStats) -> SignalInterpretation:
        if stats.dominant_side is Side.BUY:
            return SHORT_SQUEEZE
        return LONG_LIQUIDATION

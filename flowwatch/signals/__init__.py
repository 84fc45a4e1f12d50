"""
Signal generation from the live trade flow.

This module provides:
- TradeAggregator: trailing per-symbol trade windows and their stats
- SignalEngine: candidate detection and squeeze/flush classification
- ExhaustionTracker: waits for an impulse to fade before confirming it
- CooldownManager: per (symbol, side) alert rate limiting
"""
from .aggregator import Side, Trade, WindowStats, SymbolWindow, TradeAggregator
from .engine import SignalEngine, SignalInterpretation, SignalType
from .exhaustion import ExhaustionTracker, ExhaustionResult, Outcome, Idle, Waiting
from .cooldown import CooldownManager

__all__ = [
    "Side",
    "Trade",
    "WindowStats",
    "SymbolWindow",
    "TradeAggregator",
    "SignalEngine",
    "SignalInterpretation",
    "SignalType",
    "ExhaustionTracker",
    "ExhaustionResult",
    "Outcome",
    "Idle",
    "Waiting",
    "CooldownManager",
]

"""
Alert text formatting.

Two layouts are produced:

- structured: short header plus a literal JSON block the order executor
  extracts from the message (it scans for the first balanced ``{...}``)
- human: HTML card with ``Symbol:``, ``Direction:`` and ``Type:`` lines,
  which the executor falls back to when no JSON block is present
"""
import json
from datetime import datetime, timezone
from html import escape
from typing import Any, Dict, Optional

from ..signals.aggregator import WindowStats
from ..signals.engine import SignalInterpretation
from ..signals.exhaustion import ExhaustionSummary

STRUCTURED = "structured"
HUMAN = "human"


def _format_usd(value: float) -> str:
    if abs(value) >= 1_000_000:
        return f"${value / 1_000_000:,.2f}M"
    return f"${value:,.0f}"


def _format_price(value: float) -> str:
    if value >= 100:
        formatted = f"{value:,.2f}"
    elif value >= 1:
        formatted = f"{value:,.4f}"
    else:
        formatted = f"{value:,.6f}"
    return formatted.rstrip("0").rstrip(".") if "." in formatted else formatted


def build_payload(
    symbol: str,
    stats: WindowStats,
    interpretation: SignalInterpretation,
    timestamp_ms: int,
    exhaustion: Optional[ExhaustionSummary] = None
) -> Dict[str, Any]:
    """Machine-readable alert body."""
    return {
        "timestamp": timestamp_ms,
        "symbol": symbol,
        "signal": interpretation.label,
        "signalType": interpretation.signal_type.value,
        "direction": interpretation.direction,
        "volume": round(stats.total_volume, 2),
        "dominance": round(stats.dominance, 2),
        "priceChange": round(stats.price_change, 4),
        "lastPrice": stats.last_price,
        "duration": round(stats.duration, 1),
        "exhaustion": exhaustion.to_dict() if exhaustion else None,
    }


def format_structured(
    symbol: str,
    stats: WindowStats,
    interpretation: SignalInterpretation,
    timestamp_ms: int,
    exhaustion: Optional[ExhaustionSummary] = None
) -> str:
    payload = build_payload(symbol, stats, interpretation, timestamp_ms, exhaustion)
    body = json.dumps(payload, ensure_ascii=False, allow_nan=False)
    return (
        f"🚨 <b>{escape(interpretation.label)}</b> | {escape(symbol)}\n"
        f"<pre>{escape(body, quote=False)}</pre>"
    )


def format_human(
    symbol: str,
    stats: WindowStats,
    interpretation: SignalInterpretation,
    timestamp_ms: int,
    exhaustion: Optional[ExhaustionSummary] = None
) -> str:
    when = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    side = stats.dominant_side.value.lower()

    lines = [
        f"🚨 <b>{escape(interpretation.label)}</b> 🚨",
        "",
        f"Symbol: <b>{escape(symbol)}</b>",
        f"Direction: {interpretation.direction}",
        f"Type: {interpretation.signal_type.value}",
        "━━━━━━━━━━━━━━━━━━━━",
        f"💰 Volume: <b>{_format_usd(stats.total_volume)}</b> ({side} {stats.dominance:.1f}%)",
        f"📈 Price: {stats.price_change:+.2f}% → {_format_price(stats.last_price)}",
        f"⏱ Window: {stats.duration:.1f}s, {stats.trade_count} trades",
    ]
    if exhaustion is not None:
        lines.append(
            f"🧯 Exhaustion: aggression -{exhaustion.aggression_drop_pct:.0f}% "
            f"over {exhaustion.ticks} ticks ({exhaustion.waited_seconds:.0f}s)"
        )
    lines += [
        "━━━━━━━━━━━━━━━━━━━━",
        f"<i>{escape(interpretation.description)}</i>",
        f"⏰ {when.strftime('%Y-%m-%d %H:%M')} UTC",
    ]
    return "\n".join(lines)


def format_alert(
    mode: str,
    symbol: str,
    stats: WindowStats,
    interpretation: SignalInterpretation,
    timestamp_ms: int,
    exhaustion: Optional[ExhaustionSummary] = None
) -> str:
    if mode == STRUCTURED:
        return format_structured(symbol, stats, interpretation, timestamp_ms, exhaustion)
    if mode == HUMAN:
        return format_human(symbol, stats, interpretation, timestamp_ms, exhaustion)
    raise ValueError(f"Unknown alert format: {mode}")

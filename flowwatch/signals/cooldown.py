"""
Alert cooldown per (symbol, side).

Long and short flow on the same symbol cool down independently. The store
is shared between the ingestion path and the command path, so every access
takes the lock.
"""
import logging
import math
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from ..runtime.settings import RuntimeConfig
from .aggregator import Side, WindowStats

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class CooldownManager:
    """Rate limiter keyed by (symbol, dominant side)."""

    def __init__(self, runtime_config: RuntimeConfig, clock: Callable[[], int] = now_ms):
        self.runtime_config = runtime_config
        self._clock = clock
        self._lock = threading.Lock()
        self._last_alert: Dict[Tuple[str, Side], int] = {}

    def can_alert(self, symbol: str, stats: WindowStats, now: Optional[int] = None) -> bool:
        cfg = self.runtime_config.get(symbol)
        if cfg is None:
            return False

        return self.remaining_ms(symbol, stats.dominant_side, now) == 0

    def remaining_ms(self, symbol: str, side: Side, now: Optional[int] = None) -> int:
        """Milliseconds until (symbol, side) may alert again; 0 when free."""
        cfg = self.runtime_config.get(symbol)
        if cfg is None:
            return 0

        with self._lock:
            last = self._last_alert.get((symbol, side))
        if last is None:
            return 0

        now = self._clock() if now is None else now
        cooldown_ms = cfg.cooldown_minutes * 60_000
        return max(0, math.ceil(cooldown_ms - (now - last)))

    def record_alert(self, symbol: str, stats: WindowStats, now: Optional[int] = None) -> None:
        now = self._clock() if now is None else now
        with self._lock:
            self._last_alert[(symbol, stats.dominant_side)] = now
        logger.debug(f"[COOLDOWN] {symbol} {stats.dominant_side.value} stamped at {now}")

    def last_alert(self, symbol: str, side: Side) -> Optional[int]:
        with self._lock:
            return self._last_alert.get((symbol, side))

    def clear(self, symbol: Optional[str] = None) -> None:
        with self._lock:
            if symbol is None:
                self._last_alert.clear()
            else:
                for key in [k for k in self._last_alert if k[0] == symbol]:
                    del self._last_alert[key]

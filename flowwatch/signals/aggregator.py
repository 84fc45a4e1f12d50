"""
Trade Aggregator

Keeps a trailing window of trades per symbol and derives taker-flow
statistics (buy/sell volume, dominance, price change) on demand.
"""
import logging
import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class Side(Enum):
    """Aggressor side of the trade flow."""
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class Trade:
    """Single trade in quote (USD) notional."""
    timestamp: int  # ms
    price: float
    buy_volume: float
    sell_volume: float

    @property
    def value(self) -> float:
        return self.buy_volume + self.sell_volume


@dataclass(frozen=True)
class WindowStats:
    """Snapshot of a symbol window."""
    symbol: str
    buy_volume: float
    sell_volume: float
    total_volume: float
    dominant_side: Side
    dominance: float  # 50-100 percent
    price_change: float  # percent, first -> last
    duration: float  # seconds covered by the retained trades
    trade_count: int
    first_price: float
    last_price: float
    timestamp: int  # ms of the newest trade

    def side_volume(self, side: Side) -> float:
        """Volume traded by the given aggressor side."""
        return self.buy_volume if side is Side.BUY else self.sell_volume

    @property
    def dominant_volume(self) -> float:
        return self.side_volume(self.dominant_side)


class SymbolWindow:
    """
    Trailing-window trade buffer for one symbol.

    Buy and sell sums are kept incrementally so stats are O(1); eviction
    trims from the front since trades arrive in time order.
    """

    def __init__(self, symbol: str, window_ms: int):
        self.symbol = symbol
        self.window_ms = window_ms
        self._trades: Deque[Trade] = deque()
        self._buy_sum = 0.0
        self._sell_sum = 0.0
        self.first_price: Optional[float] = None
        self.last_price: Optional[float] = None

    def __len__(self) -> int:
        return len(self._trades)

    @property
    def trades(self) -> List[Trade]:
        return list(self._trades)

    def add(self, timestamp: int, price: float, quantity: float, is_buyer_initiated: bool) -> Trade:
        """Append a trade and evict everything older than the window."""
        if not (math.isfinite(price) and math.isfinite(quantity)):
            raise ValueError(f"Trade price and quantity must be finite, got {price} x {quantity}")
        if price <= 0:
            raise ValueError(f"Trade price must be positive, got {price}")
        if quantity <= 0:
            raise ValueError(f"Trade quantity must be positive, got {quantity}")

        value = price * quantity
        trade = Trade(
            timestamp=int(timestamp),
            price=price,
            buy_volume=value if is_buyer_initiated else 0.0,
            sell_volume=0.0 if is_buyer_initiated else value,
        )

        self._trades.append(trade)
        self._buy_sum += trade.buy_volume
        self._sell_sum += trade.sell_volume
        self.last_price = price

        self._evict(trade.timestamp - self.window_ms)
        return trade

    def _evict(self, cutoff: int) -> None:
        while self._trades and self._trades[0].timestamp < cutoff:
            old = self._trades.popleft()
            self._buy_sum -= old.buy_volume
            self._sell_sum -= old.sell_volume

        if self._trades:
            self.first_price = self._trades[0].price
        else:
            self._clear_sums()

    def _clear_sums(self) -> None:
        self._buy_sum = 0.0
        self._sell_sum = 0.0
        self.first_price = None
        self.last_price = None

    def reset(self) -> None:
        self._trades.clear()
        self._clear_sums()

    def stats(self) -> Optional[WindowStats]:
        """Recompute a snapshot; None when no trades are retained."""
        if not self._trades:
            return None

        # Floating drift from incremental subtraction can go slightly negative
        buy = max(self._buy_sum, 0.0)
        sell = max(self._sell_sum, 0.0)
        total = buy + sell

        # Ties resolve to BUY
        side = Side.BUY if buy >= sell else Side.SELL
        dominant = buy if side is Side.BUY else sell
        dominance = (dominant / total * 100) if total > 0 else 50.0

        first = self.first_price
        last = self.last_price
        price_change = (last - first) / first * 100 if first else 0.0

        newest = self._trades[-1].timestamp
        oldest = self._trades[0].timestamp

        return WindowStats(
            symbol=self.symbol,
            buy_volume=buy,
            sell_volume=sell,
            total_volume=total,
            dominant_side=side,
            dominance=dominance,
            price_change=price_change,
            duration=(newest - oldest) / 1000,
            trade_count=len(self._trades),
            first_price=first,
            last_price=last,
            timestamp=newest,
        )


class TradeAggregator:
    """
    Routes trades to per-symbol windows.

    Windows are created lazily for symbols that were not registered up front.
    """

    def __init__(self, window_seconds: float = 60.0, symbols: Optional[List[str]] = None):
        self.window_ms = int(window_seconds * 1000)
        self._windows: Dict[str, SymbolWindow] = {}
        for symbol in symbols or []:
            self._window(symbol)

    def _window(self, symbol: str) -> SymbolWindow:
        window = self._windows.get(symbol)
        if window is None:
            window = SymbolWindow(symbol, self.window_ms)
            self._windows[symbol] = window
        return window

    def add_trade(
        self,
        symbol: str,
        timestamp: int,
        price: float,
        quantity: float,
        is_buyer_initiated: bool
    ) -> Trade:
        return self._window(symbol).add(timestamp, price, quantity, is_buyer_initiated)

    def get_stats(self, symbol: str) -> Optional[WindowStats]:
        window = self._windows.get(symbol)
        if window is None:
            return None
        return window.stats()

    def reset_symbol(self, symbol: str) -> None:
        """Drop all retained trades so the same impulse cannot re-trigger."""
        window = self._windows.get(symbol)
        if window is not None:
            window.reset()
            logger.debug(f"Window reset for {symbol}")

    def symbols(self) -> List[str]:
        return list(self._windows)

    def trade_count(self, symbol: str) -> int:
        window = self._windows.get(symbol)
        return len(window) if window else 0

    def get_window(self, symbol: str) -> Optional[SymbolWindow]:
        return self._windows.get(symbol)

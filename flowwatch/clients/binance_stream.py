"""
Binance futures trade streams, one WebSocket per symbol.
Handles connection, message parsing and reconnection with linear backoff.
"""

import asyncio
import json
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import websockets

from ..pipeline import SignalPipeline
from ..utils.logger import get_logger

logger = get_logger("stream")


class FeedMessageError(ValueError):
    """Trade message missing fields or carrying unusable values."""


class ConnectionState(Enum):
    """Lifecycle of a single symbol connection."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    RECONNECT_SCHEDULED = "reconnect_scheduled"
    ABANDONED = "abandoned"
    STOPPED = "stopped"


@dataclass(frozen=True)
class TradeMessage:
    """Fields used from an aggTrade event."""
    price: float
    quantity: float
    trade_time: int  # ms
    buyer_is_maker: bool

    @property
    def is_buyer_initiated(self) -> bool:
        # Maker buyer means the taker sold
        return not self.buyer_is_maker


def parse_trade_message(raw) -> TradeMessage:
    """
    Parse a raw frame into a TradeMessage.

    Accepts plain stream payloads and combined-stream envelopes
    ({"stream": ..., "data": {...}}).
    """
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes, bytearray)) else raw
    except ValueError as e:
        # JSONDecodeError and UnicodeDecodeError for undecodable bytes
        raise FeedMessageError(f"Invalid JSON: {e}") from e

    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]
    if not isinstance(data, dict):
        raise FeedMessageError(f"Unexpected message type: {type(data).__name__}")

    missing = [k for k in ("p", "q", "T", "m") if k not in data]
    if missing:
        raise FeedMessageError(f"Missing fields: {', '.join(missing)}")

    try:
        price = float(data["p"])
        quantity = float(data["q"])
        trade_time = int(data["T"])
    except (TypeError, ValueError) as e:
        raise FeedMessageError(f"Bad numeric field: {e}") from e

    if not isinstance(data["m"], bool):
        raise FeedMessageError(f"Field m must be boolean, got {data['m']!r}")
    if not (math.isfinite(price) and math.isfinite(quantity)):
        raise FeedMessageError(f"Non-finite price or quantity: p={price} q={quantity}")
    if price <= 0 or quantity <= 0:
        raise FeedMessageError(f"Non-positive price or quantity: p={price} q={quantity}")

    return TradeMessage(
        price=price,
        quantity=quantity,
        trade_time=trade_time,
        buyer_is_maker=data["m"],
    )


class SymbolConnection:
    """
    Owns the WebSocket for one symbol.

    Reconnect delay grows linearly with the attempt count and is capped;
    once attempts exceed the ceiling the feed is abandoned and only logged.
    A successful open resets the counter.
    """

    def __init__(
        self,
        symbol: str,
        url: str,
        pipeline: SignalPipeline,
        start_delay: float = 0.0,
        reconnect_base_delay: float = 5.0,
        reconnect_max_delay: float = 60.0,
        max_reconnect_attempts: int = 20,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Any] = asyncio.sleep
    ):
        self.symbol = symbol
        self.url = url
        self.pipeline = pipeline
        self.start_delay = start_delay
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.max_reconnect_attempts = max_reconnect_attempts

        self._connect = connect
        self._sleep = sleep
        self._ws = None
        self._running = False

        self.state = ConnectionState.IDLE
        self.reconnect_attempts = 0
        self.messages_received = 0
        self.messages_dropped = 0
        self.last_message_time = 0.0

    def reconnect_delay(self, attempt: int) -> float:
        return min(self.reconnect_base_delay * attempt, self.reconnect_max_delay)

    async def connect(self) -> None:
        """Open the WebSocket; resets the retry counter on success."""
        self.state = ConnectionState.CONNECTING
        logger.info(f"Connecting {self.symbol} stream", extra={"url": self.url})

        self._ws = await self._connect(
            self.url,
            ping_interval=30,
            ping_timeout=10,
            close_timeout=5
        )
        self.state = ConnectionState.OPEN
        self.reconnect_attempts = 0
        logger.info(f"{self.symbol} stream connected")

    async def disconnect(self) -> None:
        """Close the WebSocket and stop reconnecting."""
        self._running = False
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()
        self.state = ConnectionState.STOPPED

    async def run(self) -> None:
        """Connect, stream, reconnect, until stopped or abandoned."""
        if self.start_delay > 0:
            await self._sleep(self.start_delay)

        self._running = True
        while self._running:
            try:
                await self.connect()
                await self._process_messages()
                logger.warning(f"{self.symbol} stream ended by server")

            except websockets.ConnectionClosed as e:
                logger.warning(f"{self.symbol} connection closed: {e}")

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(f"{self.symbol} connection error: {e}")

            finally:
                await self._drop_socket()

            if not self._running:
                break
            if not await self._handle_reconnect():
                break

    async def _drop_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"{self.symbol} close error ignored: {e}")
        if self.state is ConnectionState.OPEN or self.state is ConnectionState.CONNECTING:
            self.state = ConnectionState.CLOSED

    async def _process_messages(self) -> None:
        """Process incoming frames until the socket closes."""
        async for message in self._ws:
            self.last_message_time = time.time()
            self.messages_received += 1
            self.handle_message(message)

    def handle_message(self, message) -> None:
        """Parse one frame and run it through the pipeline; bad frames are dropped."""
        try:
            trade = parse_trade_message(message)
        except FeedMessageError as e:
            self.messages_dropped += 1
            logger.warning(f"{self.symbol} malformed message dropped: {e}")
            return

        try:
            self.pipeline.process_trade(
                self.symbol,
                trade.trade_time,
                trade.price,
                trade.quantity,
                trade.is_buyer_initiated,
            )
        except Exception as e:
            self.messages_dropped += 1
            logger.error(f"{self.symbol} error processing trade: {e}", exc_info=True)

    async def _handle_reconnect(self) -> bool:
        """Wait out the backoff; False when the attempt ceiling is exceeded."""
        self.reconnect_attempts += 1

        if self.reconnect_attempts > self.max_reconnect_attempts:
            self.state = ConnectionState.ABANDONED
            self._running = False
            logger.error(
                f"{self.symbol} feed abandoned after {self.max_reconnect_attempts} reconnection attempts"
            )
            # No more trades will arrive to resolve a pending candidate
            self.pipeline.cancel_symbol(self.symbol)
            return False

        delay = self.reconnect_delay(self.reconnect_attempts)
        self.state = ConnectionState.RECONNECT_SCHEDULED
        logger.info(
            f"{self.symbol} reconnecting in {delay:.1f}s (attempt {self.reconnect_attempts})"
        )
        await self._sleep(delay)
        return self._running

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "reconnect_attempts": self.reconnect_attempts,
            "messages_received": self.messages_received,
            "messages_dropped": self.messages_dropped,
            "last_message_time": self.last_message_time,
        }


class ConnectionSupervisor:
    """
    Runs one SymbolConnection task per symbol.

    Connections are started with a staggered delay and never share state,
    so a failing or backing-off symbol does not hold up any other.
    """

    def __init__(
        self,
        symbols: List[str],
        pipeline: SignalPipeline,
        base_url: str = "wss://fstream.binance.com/ws",
        stream_suffix: str = "aggTrade",
        stagger_seconds: float = 0.5,
        reconnect_base_delay: float = 5.0,
        reconnect_max_delay: float = 60.0,
        max_reconnect_attempts: int = 20,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Any] = asyncio.sleep
    ):
        self.pipeline = pipeline
        self.connections: Dict[str, SymbolConnection] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

        for index, symbol in enumerate(symbols):
            url = f"{base_url.rstrip('/')}/{symbol.lower()}@{stream_suffix}"
            self.connections[symbol] = SymbolConnection(
                symbol=symbol,
                url=url,
                pipeline=pipeline,
                start_delay=index * stagger_seconds,
                reconnect_base_delay=reconnect_base_delay,
                reconnect_max_delay=reconnect_max_delay,
                max_reconnect_attempts=max_reconnect_attempts,
                connect=connect,
                sleep=sleep,
            )

    def start(self) -> None:
        """Spawn a task per symbol. Must be called inside the running loop."""
        for symbol, connection in self.connections.items():
            if symbol in self._tasks and not self._tasks[symbol].done():
                continue
            task = asyncio.create_task(connection.run(), name=f"stream-{symbol}")
            task.add_done_callback(lambda t, s=symbol: self._on_task_done(s, t))
            self._tasks[symbol] = task
        logger.info(f"Started {len(self._tasks)} symbol streams")

    def _on_task_done(self, symbol: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{symbol} stream task crashed: {error}")

    async def wait(self) -> None:
        """Wait until every connection task has ended."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def stop(self) -> None:
        """Close all sockets and cancel connection tasks."""
        for connection in self.connections.values():
            try:
                await connection.disconnect()
            except Exception as e:
                logger.warning(f"{connection.symbol} disconnect error: {e}")

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        for symbol in self.connections:
            self.pipeline.cancel_symbol(symbol)
        logger.info("All symbol streams stopped")

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {symbol: conn.status() for symbol, conn in self.connections.items()}

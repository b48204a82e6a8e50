from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from crosswatch.errors import DataInvariantError, MessageParseError, StreamConnectionError
from crosswatch.models.market import ConnectionState, StreamEvent, Tick
from crosswatch.streams.parser import TickerParser, channel_name, control_message

log = logging.getLogger("stream_connection")

DEFAULT_WS_URL = "wss://stream.binance.com:9443/ws"

# Errors that count as a failed handshake attempt.
HANDSHAKE_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


def _default_connect(url: str) -> Awaitable[Any]:
    return websockets.connect(url, ping_interval=20, ping_timeout=20)


class ConnectionManager:
    """
    One physical stream connection for one symbol's ticker channel.

    State machine:
      CONNECTING -> OPEN -> (closed by peer) -> RECONNECTING -> OPEN | CLOSED

    open():
      - handshake (connect + SUBSCRIBE) must finish within handshake_timeout
      - up to max_attempts tries, waiting min(base_delay * 2**(n-1), max_delay)
        after failed attempt n
      - raises StreamConnectionError once attempts are exhausted

    A peer close or transport error on an open connection restarts the same
    retry sequence while has_listeners() is true, and resubscribes the same
    channel. Ticks missed while disconnected are not recovered here; on_event
    gets RECONNECTED so the owner can refetch history, and GAVE_UP whenever
    retries run out.

    close() is synchronous and idempotent. It cancels the connect/backoff and
    reader tasks (a pending backoff sleep dies with its task) and closes the
    socket in the background; wait_closed() waits for that.
    """

    def __init__(
        self,
        symbol: str,
        on_tick: Callable[[Tick], None],
        *,
        url: str = DEFAULT_WS_URL,
        quote_asset: str = "usdt",
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        handshake_timeout: float = 5.0,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        has_listeners: Optional[Callable[[], bool]] = None,
        on_event: Optional[Callable[[StreamEvent], None]] = None,
    ) -> None:
        self.symbol = symbol.lower()
        self.channel = channel_name(self.symbol, quote_asset)
        self.url = url
        self.handshake_timeout = handshake_timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._on_tick = on_tick
        self._connect = connect or _default_connect
        self._sleep = sleep or asyncio.sleep
        self._has_listeners = has_listeners or (lambda: True)
        self._on_event = on_event
        self._parser = TickerParser(self.symbol)

        self.state = ConnectionState.CLOSED
        self._closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ws: Any = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"ConnectionManager(channel={self.channel!r}, state={self.state.value})"

    @property
    def is_closed(self) -> bool:
        """True once close() has been called; such a handle is never reused."""
        return self._closed

    def backoff_delay(self, attempt: int) -> float:
        """Delay taken after failed attempt number `attempt` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    # -------------------------
    # Opening
    # -------------------------
    def start(self) -> asyncio.Task:
        """
        Begin connecting in the background and return the connect task.
        Calling it on a live connection (connecting, open or reconnecting)
        returns the existing connect task. Must be called from the event loop thread.
        """
        if self._closed:
            raise StreamConnectionError(f"{self.channel}: connection handle is closed")

        if self.state is not ConnectionState.CLOSED and self._connect_task is not None:
            return self._connect_task

        self._loop = asyncio.get_running_loop()
        self.state = ConnectionState.CONNECTING
        self._connect_task = self._loop.create_task(self._connect_with_retry())
        return self._connect_task

    async def open(self) -> "ConnectionManager":
        task = self.start()
        try:
            await task
        except asyncio.CancelledError:
            if self._closed:
                raise StreamConnectionError(f"{self.channel}: closed while connecting") from None
            raise
        return self

    async def _handshake(self) -> Any:
        ws = await self._connect(self.url)
        try:
            await ws.send(control_message("SUBSCRIBE", self.channel, int(time.time() * 1000)))
        except BaseException:
            await ws.close()
            raise
        return ws

    async def _connect_with_retry(self) -> None:
        attempt = 0
        while True:
            attempt += 1
            try:
                ws = await asyncio.wait_for(self._handshake(), timeout=self.handshake_timeout)
            except HANDSHAKE_ERRORS as e:
                log.warning(
                    "Connection attempt %d/%d failed channel=%s error=%r",
                    attempt,
                    self.max_attempts,
                    self.channel,
                    e,
                )
                if attempt >= self.max_attempts:
                    self.state = ConnectionState.CLOSED
                    self._emit(StreamEvent.GAVE_UP)
                    raise StreamConnectionError(
                        f"Failed to connect {self.channel} after {attempt} attempts",
                        attempts=attempt,
                    ) from e
                await self._sleep(self.backoff_delay(attempt))
                continue
            break

        self._ws = ws
        self.state = ConnectionState.OPEN
        log.info("Stream connected channel=%s attempt=%d", self.channel, attempt)
        self._reader_task = self._loop.create_task(self._read_loop(ws))

    # -------------------------
    # Reading
    # -------------------------
    def _handle_frame(self, raw: Any) -> None:
        try:
            tick = self._parser.parse(raw)
        except MessageParseError as e:
            log.warning("Dropping malformed frame channel=%s error=%s", self.channel, e)
            return
        except DataInvariantError as e:
            log.warning("Dropping invalid tick channel=%s error=%s", self.channel, e)
            return

        if tick is None:
            return

        try:
            self._on_tick(tick)
        except Exception:
            log.exception("Tick handler failed channel=%s", self.channel)

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            log.warning("Stream closed channel=%s error=%s", self.channel, e)
        except (OSError, WebSocketException) as e:
            log.warning("Stream transport error channel=%s error=%r", self.channel, e)

        if self._closed:
            return

        self._ws = None
        if not self._has_listeners():
            log.info("Stream ended with no listeners channel=%s", self.channel)
            self.state = ConnectionState.CLOSED
            return

        log.warning("Stream closed by peer channel=%s; reconnecting", self.channel)
        self.state = ConnectionState.RECONNECTING
        self._parser.reset()
        try:
            await self._connect_with_retry()
        except StreamConnectionError as e:
            log.error("Reconnect gave up channel=%s error=%s", self.channel, e)
            return
        self._emit(StreamEvent.RECONNECTED)

    def _emit(self, event: StreamEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            log.exception("Stream event handler failed channel=%s event=%s", self.channel, event.value)

    # -------------------------
    # Closing
    # -------------------------
    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.state = ConnectionState.CLOSED

        loop = self._loop
        if loop is None or loop.is_closed():
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._teardown()
        else:
            loop.call_soon_threadsafe(self._teardown)

    def _teardown(self) -> None:
        for task in (self._connect_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()

        ws, self._ws = self._ws, None
        if ws is not None:
            self._close_task = self._loop.create_task(self._shutdown(ws))
        log.info("Connection closed channel=%s", self.channel)

    async def _shutdown(self, ws: Any) -> None:
        try:
            await ws.send(control_message("UNSUBSCRIBE", self.channel, int(time.time() * 1000)))
            await ws.close(code=1000, reason="Subscription ended")
        except (OSError, WebSocketException) as e:
            log.debug("Socket shutdown error channel=%s error=%r", self.channel, e)

    async def wait_closed(self) -> None:
        tasks = [t for t in (self._connect_task, self._reader_task, self._close_task) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def connection_factory(**options: Any) -> Callable[..., ConnectionManager]:
    """Bind connection policy options once; the registry supplies the rest."""
    return functools.partial(ConnectionManager, **options)

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from crosswatch.errors import StreamConnectionError
from crosswatch.models.market import ConnectionState, StreamEvent, Tick
from crosswatch.streams.connection import ConnectionManager

log = logging.getLogger("subscription_registry")

Listener = Callable[[Tick], None]
EventListener = Callable[[StreamEvent], None]
ConnectionFactory = Callable[..., ConnectionManager]


@dataclass
class Subscription:
    """
    All listeners for one symbol plus the connection that serves them.

    listeners:       registration handle -> tick callback, in registration order
    event_listeners: registration handle -> stream event callback (optional per registration)
    """
    symbol: str
    listeners: Dict[object, Listener] = field(default_factory=dict)
    event_listeners: Dict[object, EventListener] = field(default_factory=dict)
    connection: Optional[ConnectionManager] = None


class SubscriptionRegistry:
    """
    Multiplexes many listeners over one stream connection per symbol.

    - subscribe() returns an unsubscribe function for that one registration
    - the first listener for a symbol creates and starts its connection
    - the last unsubscribe closes the connection and evicts the symbol
      before returning
    - deliver() snapshots listeners, so listeners added during delivery
      only see later ticks
    - stream events (reconnected, gave up) go to each registration's on_event

    connection_factory(symbol, on_tick, has_listeners=..., on_event=...)
    builds the ConnectionManager for a symbol; tests pass a fake.
    """

    def __init__(self, connection_factory: ConnectionFactory = ConnectionManager):
        self._connection_factory = connection_factory
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _key(symbol: str) -> str:
        return symbol.strip().lower()

    def subscribe(
        self,
        symbol: str,
        listener: Listener,
        on_event: Optional[EventListener] = None,
    ) -> Callable[[], None]:
        """
        Must be called on the event loop thread when it may open a connection.
        If starting the connection fails, the registration is rolled back
        before the error propagates.
        """
        key = self._key(symbol)
        handle = object()

        with self._lock:
            sub = self._subscriptions.get(key)
            if sub is None:
                sub = Subscription(symbol=key)
                sub.connection = self._connection_factory(
                    key,
                    lambda tick, _key=key: self.deliver(_key, tick),
                    has_listeners=lambda _sub=sub: bool(_sub.listeners),
                    on_event=lambda event, _sub=sub: self._notify(_sub, event),
                )
                self._subscriptions[key] = sub
                log.info("Created subscription symbol=%s", key)

            sub.listeners[handle] = listener
            if on_event is not None:
                sub.event_listeners[handle] = on_event
            connection = sub.connection

        def unsubscribe() -> None:
            self._remove(key, sub, handle)

        # A connection that gave up after exhausting retries is reopened
        # when someone new shows interest.
        try:
            self._start_if_idle(connection)
        except BaseException:
            unsubscribe()
            raise

        return unsubscribe

    def reopen(self, symbol: str) -> bool:
        """
        Restart the connection of `symbol` if it gave up after exhausting
        retries. Returns True when a new connect sequence was started.
        """
        with self._lock:
            sub = self._subscriptions.get(self._key(symbol))
            if sub is None or not sub.listeners:
                return False
            connection = sub.connection
        return self._start_if_idle(connection)

    def _start_if_idle(self, connection: ConnectionManager) -> bool:
        if connection.state is not ConnectionState.CLOSED or connection.is_closed:
            return False
        task = connection.start()
        task.add_done_callback(self._log_open_failure)
        return True

    @staticmethod
    def _log_open_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        e = task.exception()
        if isinstance(e, StreamConnectionError):
            log.error("Failed to open stream: %s", e)
        elif e is not None:
            log.error("Unexpected stream open failure: %r", e)

    def _remove(self, key: str, sub: Subscription, handle: object) -> None:
        with self._lock:
            if sub.listeners.pop(handle, None) is None:
                return
            sub.event_listeners.pop(handle, None)
            if sub.listeners:
                return
            # Last listener gone: evict before anyone can subscribe to the stale entry.
            if self._subscriptions.get(key) is sub:
                del self._subscriptions[key]
            connection = sub.connection

        if connection is not None:
            connection.close()
        log.info("Removed subscription symbol=%s", key)

    def deliver(self, symbol: str, tick: Tick) -> None:
        """Notify current listeners of `symbol` in registration order."""
        key = self._key(symbol)
        with self._lock:
            sub = self._subscriptions.get(key)
            if sub is None:
                return
            snapshot = list(sub.listeners.items())

        for handle, listener in snapshot:
            # Skip listeners that unsubscribed earlier in this delivery.
            if handle not in sub.listeners:
                continue
            try:
                listener(tick)
            except Exception:
                log.exception("Listener failed symbol=%s", key)

    def _notify(self, sub: Subscription, event: StreamEvent) -> None:
        with self._lock:
            handlers = list(sub.event_listeners.items())

        for handle, handler in handlers:
            if handle not in sub.event_listeners:
                continue
            try:
                handler(event)
            except Exception:
                log.exception("Event listener failed symbol=%s event=%s", sub.symbol, event.value)

    def listener_count(self, symbol: str) -> int:
        with self._lock:
            sub = self._subscriptions.get(self._key(symbol))
            return len(sub.listeners) if sub else 0

    def connection_for(self, symbol: str) -> Optional[ConnectionManager]:
        with self._lock:
            sub = self._subscriptions.get(self._key(symbol))
            return sub.connection if sub else None

    def symbols(self) -> List[str]:
        with self._lock:
            return list(self._subscriptions)

    def close(self) -> None:
        """Close every connection and drop all subscriptions."""
        with self._lock:
            subs = list(self._subscriptions.values())
            self._subscriptions.clear()
        for sub in subs:
            sub.listeners.clear()
            sub.event_listeners.clear()
            if sub.connection is not None:
                sub.connection.close()

"""
events.py - Deferred publish/subscribe channel

Listeners subscribe to string topics ("42:signed", "tx:status-update").
emit() never calls a listener directly: it queues the event, and the queue is
drained by flush(). When an asyncio loop is running in the emitting thread a
flush is scheduled on it with call_soon, so listeners run on a later turn of
the loop. Without a loop, whoever owns the bus calls flush().

Core concepts:
1. Subscription: handle returned by on()/once(), cancellable
2. EventBus: topic -> listeners registry plus a FIFO of pending events
"""

from __future__ import annotations
import asyncio
from collections import deque
from dataclasses import dataclass, field
import logging
import threading
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


Listener = Callable[..., Any]


@dataclass(eq=False)
class Subscription:
    """
    Registration of one listener on one topic.

    Call unsubscribe() to cancel it; cancelling twice is harmless.
    """
    bus: "EventBus"
    topic: str
    listener: Listener
    once: bool = False
    active: bool = field(default=True)

    def unsubscribe(self) -> None:
        if self.active:
            self.bus._remove(self)


class EventBus:
    """
    Topic-based event channel with deferred delivery.

    Design:
    - Listeners are plain callables invoked with the emitted arguments
    - Delivery order: events FIFO, listeners in registration order
    - A listener that raises is logged and skipped; delivery continues
    - Listeners registered with once() are removed before they run
    """

    def __init__(self):
        self._listeners: Dict[str, List[Subscription]] = {}
        self._pending: Deque[Tuple[str, Tuple[Any, ...]]] = deque()
        self._lock = threading.RLock()
        self._flush_scheduled = False

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def on(self, topic: str, listener: Listener) -> Subscription:
        """Register listener for every future event on topic."""
        return self._add(topic, listener, once=False)

    def once(self, topic: str, listener: Listener) -> Subscription:
        """Register listener for the next event on topic only."""
        return self._add(topic, listener, once=True)

    def off(self, topic: str, listener: Listener) -> bool:
        """
        Remove the first registration of listener on topic.

        Returns:
            True if a registration was removed
        """
        with self._lock:
            for subscription in self._listeners.get(topic, []):
                if subscription.listener == listener:
                    self._remove(subscription)
                    return True
        return False

    def remove_all_listeners(self, topic: Optional[str] = None) -> None:
        """Remove every listener on topic, or on all topics if topic is None."""
        with self._lock:
            topics = [topic] if topic is not None else list(self._listeners)
            for name in topics:
                for subscription in self._listeners.pop(name, []):
                    subscription.active = False

    def listener_count(self, topic: str) -> int:
        with self._lock:
            return len(self._listeners.get(topic, []))

    def _add(self, topic: str, listener: Listener, once: bool) -> Subscription:
        if not callable(listener):
            raise TypeError(f"Listener for {topic!r} must be callable")
        subscription = Subscription(self, topic, listener, once=once)
        with self._lock:
            self._listeners.setdefault(topic, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            listeners = self._listeners.get(subscription.topic)
            if listeners and subscription in listeners:
                listeners.remove(subscription)
                if not listeners:
                    del self._listeners[subscription.topic]

    # ========================================================================
    # EMISSION
    # ========================================================================

    def emit(self, topic: str, *args: Any) -> None:
        """
        Queue an event for delivery. Listeners are not called here.

        The queue is unbounded. Outside a running event loop events stay
        queued until flush() is called.
        """
        with self._lock:
            self._pending.append((topic, args))
        self._schedule_flush()

    def pending_count(self) -> int:
        """Number of queued, undelivered events."""
        with self._lock:
            return len(self._pending)

    def flush(self) -> int:
        """
        Deliver every queued event, including events queued by listeners
        while flushing.

        Returns:
            Number of listener invocations made
        """
        with self._lock:
            self._flush_scheduled = False
        delivered = 0
        while True:
            with self._lock:
                if not self._pending:
                    break
                topic, args = self._pending.popleft()
                subscriptions = list(self._listeners.get(topic, []))
            for subscription in subscriptions:
                # An earlier listener may have cancelled this one
                if not subscription.active:
                    continue
                if subscription.once:
                    self._remove(subscription)
                delivered += 1
                try:
                    subscription.listener(*args)
                except Exception:
                    logger.exception("Listener %r failed on %r", subscription.listener, topic)
        return delivered

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        with self._lock:
            if self._flush_scheduled:
                return
            self._flush_scheduled = True
        loop.call_soon(self.flush)

"""
studyhub/realtime/hub.py
In-memory pubsub hub for entitlement record changes.

Maps record key -> subscriber queues. Publishers are the store's write paths
(sync or async); subscribers are async iterators living on an event loop.
Delivery goes through loop.call_soon_threadsafe so a write from a worker
thread still lands on the subscriber's loop.
"""

import asyncio
import logging
import threading
from typing import AsyncIterator, Callable, Dict, Generic, Set, Tuple, TypeVar

from studyhub.core.metrics import entitlement_subscriptions_active

logger = logging.getLogger(__name__)

T = TypeVar("T")

_Subscriber = Tuple[asyncio.AbstractEventLoop, "asyncio.Queue"]


class RecordHub(Generic[T]):
    """
    Room-per-key broadcast hub.

    The registry lock is a plain threading.Lock held only while the
    subscriber sets are read or mutated, never across an await.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[_Subscriber]] = {}
        self._lock = threading.Lock()

    def _register(self, key: str, subscriber: _Subscriber) -> None:
        with self._lock:
            self._rooms.setdefault(key, set()).add(subscriber)
        entitlement_subscriptions_active.inc()
        logger.debug(f"[HUB] Registered subscriber for {key}")

    def _unregister(self, key: str, subscriber: _Subscriber) -> None:
        with self._lock:
            room = self._rooms.get(key)
            if room is None or subscriber not in room:
                return
            room.discard(subscriber)
            if not room:
                del self._rooms[key]
        entitlement_subscriptions_active.dec()
        logger.debug(f"[HUB] Unregistered subscriber for {key}")

    def publish(self, key: str, snapshot: T) -> None:
        """Deliver a snapshot to every subscriber of key. Safe from any thread."""
        with self._lock:
            subscribers = list(self._rooms.get(key, ()))

        dead = []
        for subscriber in subscribers:
            loop, queue = subscriber
            try:
                loop.call_soon_threadsafe(queue.put_nowait, snapshot)
            except RuntimeError:
                # Loop already closed; the subscriber can never drain again
                dead.append(subscriber)

        for subscriber in dead:
            self._unregister(key, subscriber)

    async def subscribe(self, key: str, load_snapshot: Callable[[], T]) -> AsyncIterator[T]:
        """
        Yield the current snapshot, then one snapshot per published change.

        Registration happens before the initial read so no change between the
        two can be missed (at worst a snapshot is delivered twice). Infinite;
        cancel the consuming task or aclose() the iterator to stop.
        """
        subscriber: _Subscriber = (asyncio.get_running_loop(), asyncio.Queue())
        self._register(key, subscriber)
        try:
            yield load_snapshot()
            queue = subscriber[1]
            while True:
                yield await queue.get()
        finally:
            self._unregister(key, subscriber)

    def subscriber_count(self, key: str) -> int:
        with self._lock:
            return len(self._rooms.get(key, ()))

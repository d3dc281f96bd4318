import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from rasoi.models.core import OrderStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderChange:
    seq: int
    order_id: str
    status: OrderStatus
    version: int
    at: datetime
    user_id: str
    rider_id: str | None

    def as_dict(self) -> dict:
        return {
            "seq": self.seq,
            "order_id": self.order_id,
            "status": self.status.value,
            "version": self.version,
            "at": self.at.isoformat(),
            "rider_id": self.rider_id,
        }


class Subscription:
    """
    One subscriber's view of the feed. Changes for a single order come out in
    version order; a change older than one already delivered for the same
    order is dropped.
    """

    def __init__(self, feed: "OrderFeed", predicate: Callable[[OrderChange], bool] | None):
        self._feed = feed
        self._predicate = predicate
        self._q: queue.Queue[OrderChange] = queue.Queue()
        self._seen: dict[str, int] = {}

    def wants(self, change: OrderChange) -> bool:
        return self._predicate is None or self._predicate(change)

    def offer(self, change: OrderChange) -> None:
        self._q.put(change)

    def get(self, timeout: float | None = None) -> OrderChange | None:
        while True:
            try:
                change = self._q.get(timeout=timeout)
            except queue.Empty:
                return None
            if change.version <= self._seen.get(change.order_id, 0):
                continue
            self._seen[change.order_id] = change.version
            return change

    def close(self) -> None:
        self._feed.unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class OrderFeed:
    def __init__(self):
        self._subs: set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self, predicate: Callable[[OrderChange], bool] | None = None) -> Subscription:
        sub = Subscription(self, predicate)
        with self._lock:
            self._subs.add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.discard(sub)

    def publish(self, change: OrderChange) -> None:
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            if sub.wants(change):
                sub.offer(change)
        logger.debug("published %s %s v%s to %d subscribers", change.order_id, change.status.value, change.version, len(subs))


feed = OrderFeed()

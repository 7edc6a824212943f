"""In-memory LRU cache of orders with an optional time to live."""

import copy
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterable, Optional, Union

from orderhub.domain import Order


class CacheInvalidOrderError(ValueError):
    """Raised when an order cannot be cached: None or empty order_uid."""

    def __init__(self, message: str = "invalid order: nil or empty order_uid") -> None:
        super().__init__(message)


@dataclass
class _Entry:
    order: Order
    expires_at: Optional[float]


class LRUCacheTTL:
    """Thread-safe LRU cache with TTL.

    A hit moves the entry to the most recent position and, when a TTL is set,
    renews its lifetime. A non-positive TTL means entries never expire.
    Orders are copied on the way in and out.
    """

    def __init__(
        self,
        capacity: int = 1000,
        ttl: Union[float, timedelta] = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capacity = capacity if capacity > 0 else 1
        if isinstance(ttl, timedelta):
            ttl = ttl.total_seconds()
        self._ttl = float(ttl)
        self._clock = clock
        # Least recently used first, most recently used last.
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, order_uid: str) -> Optional[Order]:
        """Return a copy of the order, or None on a miss or an expired entry."""
        if not order_uid:
            return None
        now = self._clock()
        with self._lock:
            entry = self._entries.get(order_uid)
            if entry is None:
                return None
            if self._is_expired(entry, now):
                del self._entries[order_uid]
                return None
            self._entries.move_to_end(order_uid)
            if self._ttl > 0:
                entry.expires_at = self._expiry_from(now)
            return copy.deepcopy(entry.order)

    def set(self, order: Optional[Order]) -> None:
        """Store or replace an order, evicting the least recently used on overflow."""
        if order is None or not order.order_uid:
            raise CacheInvalidOrderError()
        now = self._clock()
        with self._lock:
            uid = order.order_uid
            entry = self._entries.get(uid)
            if entry is not None:
                entry.order = copy.deepcopy(order)
                entry.expires_at = self._expiry_from(now)
                self._entries.move_to_end(uid)
                return
            self._prune_expired(now)
            self._entries[uid] = _Entry(copy.deepcopy(order), self._expiry_from(now))
            if len(self._entries) > self._capacity:
                self._entries.popitem(last=False)

    def warm_up(self, orders: Iterable[Optional[Order]]) -> None:
        """Store many orders; stops at the first one that cannot be cached."""
        for order in orders:
            self.set(order)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_expired(self, entry: _Entry, now: float) -> bool:
        if self._ttl <= 0 or entry.expires_at is None:
            return False
        return now > entry.expires_at

    def _expiry_from(self, now: float) -> Optional[float]:
        if self._ttl <= 0:
            return None
        return now + self._ttl

    def _prune_expired(self, now: float) -> None:
        """Drop expired entries from the least recent end up to the first live one."""
        if self._ttl <= 0:
            return
        while self._entries:
            uid, entry = next(iter(self._entries.items()))
            if not self._is_expired(entry, now):
                return
            del self._entries[uid]
"""Contracts between the service layers."""

import logging
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from orderhub.domain import Order

_library_logger = logging.getLogger("orderhub")
_library_logger.addHandler(logging.NullHandler())


@runtime_checkable
class Logger(Protocol):
    """Minimal logger; messages use %-style placeholders."""

    def info(self, message: str, *args: object) -> None: ...

    def warning(self, message: str, *args: object) -> None: ...

    def error(self, message: str, *args: object) -> None: ...


@runtime_checkable
class MessageConsumer(Protocol):
    """Message source with at-least-once delivery.

    A message is acknowledged only after it was handled.
    """

    def run(self) -> None:
        """Consume until stopped; raise on a fatal error."""

    def close(self) -> None:
        """Release connections and readers."""


@runtime_checkable
class OrderCache(Protocol):
    """Thread-safe order cache with O(1) lookup that hands out copies."""

    def get(self, order_uid: str) -> Optional[Order]:
        """Return a copy of the cached order, or None on a miss or expiry."""

    def set(self, order: Order) -> None:
        """Store or replace an order."""

    def warm_up(self, orders: Sequence[Order]) -> None:
        """Load many orders at once, e.g. on start-up."""


@runtime_checkable
class OrderReadService(Protocol):
    """Read side of the order service."""

    def get_order(self, order_uid: str) -> Optional[Order]: ...

    def orders_by_customer(self, customer_id: str, limit: int, offset: int) -> List[Order]: ...


@runtime_checkable
class OrderRepository(Protocol):
    """Persistent order storage."""

    def save(self, order: Order) -> None:
        """Atomically create or update an order by its UID."""

    def get_by_uid(self, order_uid: str) -> Optional[Order]:
        """Return the order, or None when it does not exist."""

    def list_by_customer(self, customer_id: str, limit: int, offset: int) -> List[Order]:
        """Return a page of the customer's orders, newest first."""

    def last_n(self, n: int) -> List[Order]:
        """Return the n newest orders."""


@runtime_checkable
class OrderValidator(Protocol):
    """Checks structure and simple business rules of an incoming order."""

    def validate(self, order: Order) -> None:
        """Raise InvalidOrderError when the order is not acceptable."""


class NullLogger:
    """Logger that hands messages to the package's standard logger.

    That logger has only a null handler, so output is discarded unless
    the application configures logging.
    """

    def __init__(self) -> None:
        self._log = _library_logger

    def info(self, message: str, *args: object) -> None:
        self._log.info(message, *args)

    def warning(self, message: str, *args: object) -> None:
        self._log.warning(message, *args)

    def error(self, message: str, *args: object) -> None:
        self._log.error(message, *args)
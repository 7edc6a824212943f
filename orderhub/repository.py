"""Order storage in a relational database."""

from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from orderhub.domain import Delivery, Item, Order, Payment

_MAX_CONN_LIFETIME = 3600
_DEFAULT_PAGE_SIZE = 20


class RepositoryError(Exception):
    """Raised when an order cannot be stored or read."""


metadata = MetaData()

customers = Table(
    "customers",
    metadata,
    Column("id", String, primary_key=True),
)

orders = Table(
    "orders",
    metadata,
    Column("order_uid", String, primary_key=True),
    Column("track_number", String, nullable=False, default=""),
    Column("entry", String, nullable=False, default=""),
    Column("locale", String, nullable=False, default=""),
    Column("internal_signature", String, nullable=False, default=""),
    Column("customer_id", String, ForeignKey("customers.id"), nullable=False, index=True),
    Column("delivery_service", String, nullable=False, default=""),
    Column("shardkey", String, nullable=False, default=""),
    Column("sm_id", Integer, nullable=False, default=0),
    Column("date_created", DateTime(timezone=True), nullable=False, index=True),
    Column("oof_shard", String, nullable=False, default=""),
)

deliveries = Table(
    "deliveries",
    metadata,
    Column("order_uid", String, ForeignKey("orders.order_uid", ondelete="CASCADE"), primary_key=True),
    Column("name", String, nullable=False, default=""),
    Column("phone", String, nullable=False, default=""),
    Column("zip", String, nullable=False, default=""),
    Column("city", String, nullable=False, default=""),
    Column("address", String, nullable=False, default=""),
    Column("region", String, nullable=False, default=""),
    Column("email", String, nullable=False, default=""),
)

payments = Table(
    "payments",
    metadata,
    Column("order_uid", String, ForeignKey("orders.order_uid", ondelete="CASCADE"), primary_key=True),
    Column("transaction", String, nullable=False, default=""),
    Column("request_id", String, nullable=False, default=""),
    Column("currency", String, nullable=False, default=""),
    Column("provider", String, nullable=False, default=""),
    Column("amount", Integer, nullable=False, default=0),
    Column("payment_dt", BigInteger, nullable=False, default=0),
    Column("bank", String, nullable=False, default=""),
    Column("delivery_cost", Integer, nullable=False, default=0),
    Column("goods_total", Integer, nullable=False, default=0),
    Column("custom_fee", Integer, nullable=False, default=0),
)

items = Table(
    "items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "order_uid",
        String,
        ForeignKey("orders.order_uid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("chrt_id", Integer, nullable=False, default=0),
    Column("track_number", String, nullable=False, default=""),
    Column("price", Integer, nullable=False, default=0),
    Column("rid", String, nullable=False, default=""),
    Column("name", String, nullable=False, default=""),
    Column("sale", Integer, nullable=False, default=0),
    Column("size", String, nullable=False, default=""),
    Column("total_price", Integer, nullable=False, default=0),
    Column("nm_id", Integer, nullable=False, default=0),
    Column("brand", String, nullable=False, default=""),
    Column("status", Integer, nullable=False, default=0),
)

# Order attribute -> column of the orders table.
_ORDER_COLUMNS: Dict[str, str] = {
    f.name: ("shardkey" if f.name == "shard_key" else f.name)
    for f in fields(Order)
    if f.name not in ("delivery", "payment", "items")
}
_DELIVERY_FIELDS = [f.name for f in fields(Delivery)]
_PAYMENT_FIELDS = [f.name for f in fields(Payment)]
_ITEM_FIELDS = [f.name for f in fields(Item)]


def new_engine(dsn: str, max_conns: int = 0) -> Engine:
    """Create a connection pool for ``dsn`` and check that it answers.

    A positive ``max_conns`` sets the pool size. Connections are recycled
    after an hour.
    """
    try:
        options: Dict[str, Any] = {"pool_recycle": _MAX_CONN_LIFETIME, "pool_pre_ping": True}
        if max_conns > 0 and make_url(dsn).get_backend_name() != "sqlite":
            options["pool_size"] = max_conns
        engine = create_engine(dsn, **options)
    except SQLAlchemyError as exc:
        raise RepositoryError(f"invalid dsn: {exc}") from exc
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        engine.dispose()
        raise RepositoryError(f"ping: {exc}") from exc
    return engine


def create_schema(engine: Engine) -> None:
    """Create the order tables that do not exist yet."""
    try:
        metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise RepositoryError(f"create schema: {exc}") from exc


@contextmanager
def _step(label: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise RepositoryError(f"{label}: {exc}") from exc


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _order_values(order: Order) -> Dict[str, Any]:
    values = {column: getattr(order, attr) for attr, column in _ORDER_COLUMNS.items()}
    values["date_created"] = _to_utc(order.date_created)
    return values


def _order_from_row(row: Mapping[str, Any]) -> Order:
    values = {attr: row[column] for attr, column in _ORDER_COLUMNS.items()}
    values["date_created"] = _to_utc(values["date_created"])
    return Order(**values)


def _upsert(
    conn: Connection,
    table: Table,
    key: str,
    values: Dict[str, Any],
    update_values: Dict[str, Any],
) -> None:
    key_column = table.c.order_uid
    exists = conn.execute(select(key_column).where(key_column == key)).first()
    if exists is None:
        conn.execute(insert(table).values(**values))
    else:
        conn.execute(update(table).where(key_column == key).values(**update_values))


class SqlOrderRepository:
    """Order repository on top of an SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def save(self, order: Optional[Order]) -> None:
        """Create or update an order with all its parts in one transaction.

        Items are replaced by the order's current list.
        """
        if order is None or not order.order_uid:
            raise RepositoryError("order is empty or order_uid is required")
        if not order.customer_id:
            raise RepositoryError("customer_id is required")

        uid = order.order_uid
        with _step("transaction"), self._engine.begin() as conn:
            with _step("insert customer"):
                found = conn.execute(
                    select(customers.c.id).where(customers.c.id == order.customer_id)
                ).first()
                if found is None:
                    conn.execute(insert(customers).values(id=order.customer_id))

            with _step("upsert order"):
                values = _order_values(order)
                _upsert(conn, orders, uid, values, values)

            with _step("upsert delivery"):
                values = {name: getattr(order.delivery, name) for name in _DELIVERY_FIELDS}
                _upsert(conn, deliveries, uid, {"order_uid": uid, **values}, values)

            with _step("upsert payment"):
                values = {name: getattr(order.payment, name) for name in _PAYMENT_FIELDS}
                changed = {k: v for k, v in values.items() if k != "transaction"}
                _upsert(conn, payments, uid, {"order_uid": uid, **values}, changed)

            with _step("delete items"):
                conn.execute(delete(items).where(items.c.order_uid == uid))

            if order.items:
                with _step("copy items"):
                    rows = [
                        {"order_uid": uid, **{name: getattr(item, name) for name in _ITEM_FIELDS}}
                        for item in order.items
                    ]
                    conn.execute(insert(items), rows)

    def get_by_uid(self, order_uid: str) -> Optional[Order]:
        """Return the order with its parts, or None when it does not exist.

        Missing delivery or payment rows leave those parts empty.
        """
        with _step("connect"), self._engine.connect() as conn:
            with _step("select order"):
                row = conn.execute(select(orders).where(orders.c.order_uid == order_uid)).first()
            if row is None:
                return None
            order = _order_from_row(row._mapping)

            with _step("select delivery"):
                drow = conn.execute(
                    select(deliveries).where(deliveries.c.order_uid == order_uid)
                ).first()
            if drow is not None:
                order.delivery = Delivery(**{n: drow._mapping[n] for n in _DELIVERY_FIELDS})

            with _step("select payment"):
                prow = conn.execute(
                    select(payments).where(payments.c.order_uid == order_uid)
                ).first()
            if prow is not None:
                order.payment = Payment(**{n: prow._mapping[n] for n in _PAYMENT_FIELDS})

            with _step("select items"):
                irows = conn.execute(
                    select(items).where(items.c.order_uid == order_uid).order_by(items.c.id)
                ).all()
            order.items = [Item(**{n: r._mapping[n] for n in _ITEM_FIELDS}) for r in irows]
            return order

    def list_by_customer(self, customer_id: str, limit: int = 0, offset: int = 0) -> List[Order]:
        """Return a page of the customer's orders, newest first.

        A non-positive limit means 20; a negative offset means 0.
        Ties on the creation time are broken by descending order UID.
        """
        if limit <= 0:
            limit = _DEFAULT_PAGE_SIZE
        if offset < 0:
            offset = 0

        with _step("connect"), self._engine.connect() as conn:
            with _step("select customer orders"):
                rows = conn.execute(
                    select(orders)
                    .where(orders.c.customer_id == customer_id)
                    .order_by(orders.c.date_created.desc(), orders.c.order_uid.desc())
                    .limit(limit)
                    .offset(offset)
                ).all()
            page = [_order_from_row(row._mapping) for row in rows]
            if not page:
                return page
            by_uid = {order.order_uid: order for order in page}
            uids = list(by_uid)

            with _step("select payments"):
                prows = conn.execute(select(payments).where(payments.c.order_uid.in_(uids))).all()
            for row in prows:
                m = row._mapping
                by_uid[m["order_uid"]].payment = Payment(**{n: m[n] for n in _PAYMENT_FIELDS})

            with _step("select deliveries"):
                drows = conn.execute(
                    select(deliveries).where(deliveries.c.order_uid.in_(uids))
                ).all()
            for row in drows:
                m = row._mapping
                by_uid[m["order_uid"]].delivery = Delivery(**{n: m[n] for n in _DELIVERY_FIELDS})

            with _step("select items"):
                irows = conn.execute(
                    select(items)
                    .where(items.c.order_uid.in_(uids))
                    .order_by(items.c.order_uid, items.c.chrt_id)
                ).all()
            for row in irows:
                m = row._mapping
                by_uid[m["order_uid"]].items.append(Item(**{n: m[n] for n in _ITEM_FIELDS}))
            return page

    def last_n(self, n: int) -> List[Order]:
        """Return the n newest orders with all their parts."""
        if n <= 0:
            return []
        with _step("connect"), self._engine.connect() as conn:
            with _step("select last uids"):
                uids = conn.execute(
                    select(orders.c.order_uid).order_by(orders.c.date_created.desc()).limit(n)
                ).scalars().all()
        found = (self.get_by_uid(uid) for uid in uids)
        return [order for order in found if order is not None]
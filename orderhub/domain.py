"""Order model and its JSON form."""

import json
import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar, Union

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?(Z|[+-]\d{2}:\d{2})$"
)

_T = TypeVar("_T")


class InvalidOrderError(ValueError):
    """Raised when an order is malformed or breaks a business rule.

    Messages carrying such an order are dropped rather than retried.
    """


def _json_name(f: Any) -> str:
    return f.metadata.get("json", f.name)


def _as_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise InvalidOrderError(f"{what}: expected an object, got {type(data).__name__}")
    return data


def _load_scalars(cls: type, data: Any, what: str) -> Tuple[Mapping[str, Any], Dict[str, Any]]:
    """Read the str and int fields of a dataclass; null or missing keeps the default."""
    mapping = _as_mapping(data, what)
    values: Dict[str, Any] = {}
    for f in fields(cls):
        if f.type not in (str, int):
            continue
        key = _json_name(f)
        raw = mapping.get(key)
        if raw is None:
            continue
        if f.type is int:
            if isinstance(raw, bool) or not isinstance(raw, int):
                raise InvalidOrderError(f"{what}.{key}: expected an integer, got {raw!r}")
        elif not isinstance(raw, str):
            raise InvalidOrderError(f"{what}.{key}: expected a string, got {raw!r}")
        values[f.name] = raw
    return mapping, values


def _dump_scalars(obj: Any) -> Dict[str, Any]:
    return {_json_name(f): getattr(obj, f.name) for f in fields(obj) if f.type in (str, int)}


def _format_time(value: datetime) -> str:
    """Format a timestamp as RFC 3339 with the shortest exact fraction."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _parse_time(text: str) -> datetime:
    """Parse an RFC 3339 timestamp; fractions finer than microseconds are truncated."""
    match = _TIME_RE.match(text)
    if match is None:
        raise InvalidOrderError(f"date_created: not an RFC 3339 timestamp: {text!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    try:
        if zone == "Z":
            tz = timezone.utc
        else:
            sign = -1 if zone[0] == "-" else 1
            offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
            tz = timezone(sign * offset)
        micro = int((fraction or "").ljust(6, "0")[:6])
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
        )
    except ValueError as exc:
        raise InvalidOrderError(f"date_created: {exc}") from exc


@dataclass
class Delivery:
    """Recipient and address of an order."""

    name: str = ""
    phone: str = ""
    zip: str = ""
    city: str = ""
    address: str = ""
    region: str = ""
    email: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _dump_scalars(self)

    @classmethod
    def from_dict(cls: Type[_T], data: Any) -> _T:
        _, values = _load_scalars(cls, data, "delivery")
        return cls(**values)


@dataclass
class Payment:
    """Payment details of an order."""

    transaction: str = ""
    request_id: str = ""
    currency: str = ""
    provider: str = ""
    amount: int = 0
    payment_dt: int = 0
    bank: str = ""
    delivery_cost: int = 0
    goods_total: int = 0
    custom_fee: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _dump_scalars(self)

    @classmethod
    def from_dict(cls: Type[_T], data: Any) -> _T:
        _, values = _load_scalars(cls, data, "payment")
        return cls(**values)


@dataclass
class Item:
    """One line of an order."""

    chrt_id: int = 0
    track_number: str = ""
    price: int = 0
    rid: str = ""
    name: str = ""
    sale: int = 0
    size: str = ""
    total_price: int = 0
    nm_id: int = 0
    brand: str = ""
    status: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _dump_scalars(self)

    @classmethod
    def from_dict(cls: Type[_T], data: Any) -> _T:
        _, values = _load_scalars(cls, data, "item")
        return cls(**values)


@dataclass
class Order:
    """An order with its delivery, payment and items."""

    order_uid: str = ""
    track_number: str = ""
    entry: str = ""
    delivery: Delivery = field(default_factory=Delivery)
    payment: Payment = field(default_factory=Payment)
    items: List[Item] = field(default_factory=list)
    locale: str = ""
    internal_signature: str = ""
    customer_id: str = ""
    delivery_service: str = ""
    shard_key: str = field(default="", metadata={"json": "shardkey"})
    sm_id: int = 0
    date_created: datetime = ZERO_TIME
    oof_shard: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in ("delivery", "payment"):
                value = value.to_dict()
            elif f.name == "items":
                value = [item.to_dict() for item in value]
            elif f.name == "date_created":
                value = _format_time(value)
            out[_json_name(f)] = value
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "Order":
        mapping, values = _load_scalars(cls, data, "order")
        values["delivery"] = Delivery.from_dict(mapping.get("delivery"))
        values["payment"] = Payment.from_dict(mapping.get("payment"))
        items = mapping.get("items")
        if items is None:
            items = []
        elif not isinstance(items, list):
            raise InvalidOrderError(f"order.items: expected an array, got {items!r}")
        values["items"] = [Item.from_dict(item) for item in items]
        created = mapping.get("date_created")
        if created is not None:
            if not isinstance(created, str):
                raise InvalidOrderError(f"order.date_created: expected a string, got {created!r}")
            values["date_created"] = _parse_time(created)
        return cls(**values)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: Union[str, bytes, bytearray]) -> "Order":
        try:
            data: Optional[Any] = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidOrderError(f"malformed JSON: {exc}") from exc
        return cls.from_dict(data)
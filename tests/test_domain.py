from datetime import datetime, timedelta, timezone

import pytest

from orderhub.domain import Delivery, InvalidOrderError, Item, Order, Payment


def sample_order() -> Order:
    return Order(
        order_uid="b563feb7b2b84b6test",
        track_number="WBILMTESTTRACK",
        entry="WBIL",
        delivery=Delivery(
            name="Test Testov",
            phone="+0",
            zip="zip-code",
            city="Kiryat Mozkin",
            address="Ploshad Mira 15",
            region="Kraiot",
            email="test@example.com",
        ),
        payment=Payment(
            transaction="b563feb7b2b84b6test",
            request_id="",
            currency="USD",
            provider="wbpay",
            amount=1817,
            payment_dt=1637907727,
            bank="alpha",
            delivery_cost=1500,
            goods_total=317,
            custom_fee=0,
        ),
        items=[
            Item(
                chrt_id=9934930,
                track_number="WBILMTESTTRACK",
                price=453,
                rid="ab4219087a764ae0btest",
                name="Mascaras",
                sale=30,
                size="0",
                total_price=317,
                nm_id=2389212,
                brand="Vivienne Sabo",
                status=202,
            )
        ],
        locale="en",
        internal_signature="",
        customer_id="test",
        delivery_service="meest",
        shard_key="9",
        sm_id=99,
        date_created=datetime(2021, 11, 26, 6, 22, 19, tzinfo=timezone.utc),
        oof_shard="1",
    )


def test_json_round_trip_keeps_every_field():
    order = sample_order()
    assert Order.from_json(order.to_json()) == order


def test_from_json_accepts_bytes():
    order = sample_order()
    assert Order.from_json(order.to_json().encode("utf-8")) == order


def test_order_keys_follow_wire_names():
    assert list(Order().to_dict()) == [
        "order_uid",
        "track_number",
        "entry",
        "delivery",
        "payment",
        "items",
        "locale",
        "internal_signature",
        "customer_id",
        "delivery_service",
        "shardkey",
        "sm_id",
        "date_created",
        "oof_shard",
    ]


def test_shard_key_read_from_shardkey():
    order = Order.from_dict({"shardkey": "9"})
    assert order.shard_key == "9"
    assert order.to_dict()["shardkey"] == "9"


def test_zero_date_is_serialized_like_unset_time():
    assert Order().to_dict()["date_created"] == "0001-01-01T00:00:00Z"


def test_missing_fields_take_defaults():
    assert Order.from_dict({"order_uid": "x"}) == Order(order_uid="x")


def test_null_document_and_null_fields_give_defaults():
    assert Order.from_json("null") == Order()
    assert Order.from_dict({"items": None, "delivery": None, "sm_id": None}) == Order()


def test_date_with_utc_suffix_is_parsed():
    order = Order.from_dict({"date_created": "2021-11-26T06:22:19Z"})
    assert order.date_created == sample_order().date_created


def test_date_with_offset_round_trips_as_text():
    text = "2024-01-02T03:04:05.5+03:00"
    order = Order.from_dict({"date_created": text})
    assert order.date_created.utcoffset() == timedelta(hours=3)
    assert order.to_dict()["date_created"] == text


def test_nanosecond_fraction_is_truncated():
    order = Order.from_dict({"date_created": "2021-11-26T06:22:19.123456789Z"})
    assert order.date_created.microsecond == 123456


def test_microseconds_survive_round_trip():
    created = datetime(2020, 5, 6, 7, 8, 9, 120000, tzinfo=timezone.utc)
    order = Order(order_uid="u", date_created=created)
    assert Order.from_json(order.to_json()).date_created == created


def test_naive_date_is_treated_as_utc():
    naive = datetime(2021, 11, 26, 6, 22, 19)
    text = Order(date_created=naive).to_dict()["date_created"]
    assert Order.from_dict({"date_created": text}).date_created == naive.replace(tzinfo=timezone.utc)


def test_parts_round_trip_through_dicts():
    order = sample_order()
    assert Delivery.from_dict(order.delivery.to_dict()) == order.delivery
    assert Payment.from_dict(order.payment.to_dict()) == order.payment
    assert Item.from_dict(order.items[0].to_dict()) == order.items[0]


@pytest.mark.parametrize(
    "raw",
    [
        "not-a-json",
        "[1, 2]",
        '{"sm_id": "1"}',
        '{"sm_id": 1.5}',
        '{"payment": {"amount": true}}',
        '{"order_uid": 5}',
        '{"items": {"name": "x"}}',
        '{"items": [5]}',
        '{"delivery": "city"}',
        '{"date_created": "yesterday"}',
        '{"date_created": 17}',
        '{"date_created": "2021-13-01T00:00:00Z"}',
    ],
)
def test_malformed_input_is_rejected(raw):
    with pytest.raises(InvalidOrderError):
        Order.from_json(raw)


def test_invalid_order_error_is_a_value_error():
    with pytest.raises(ValueError):
        Order.from_json(b"\xff\xfe{")
from __future__ import annotations

import hashlib
import hmac

import pytest

from vipsync.services.notification_parser import (
    Notification,
    parse_notification,
    verify_signature,
)


@pytest.mark.parametrize(
    ("query", "body", "expected"),
    [
        ({"data.id": "123", "type": "payment"}, None, Notification("123", "payment")),
        ({"data.id": "77"}, None, Notification("77", "merchant_order")),
        ({"id": "456", "topic": "merchant_order"}, None, Notification("456", "merchant_order")),
        ({}, {"action": "payment.created", "data": {"id": 999}}, Notification("999", "payment")),
        (
            {},
            {"action": "payment.updated", "type": "payment", "data": {"id": "42"}},
            Notification("42", "payment"),
        ),
        (
            {},
            {"action": "merchant_order", "data": "https://api.mercadopago.com/merchant_orders/555"},
            Notification("555", "merchant_order"),
        ),
        ({}, {"id": 321, "topic": "payment"}, Notification("321", "payment")),
        ({}, {"id": "abc"}, Notification("abc", "payment")),
        ({}, {"merchant_order_id": "888"}, Notification("888", "merchant_order")),
        ({}, {"payment_id": "111"}, Notification("111", "payment")),
        ({"payment_id": "222"}, None, Notification("222", "payment")),
    ],
)
def test_parse_notification_shapes(query, body, expected):
    assert parse_notification(query, body) == expected


def test_query_takes_precedence_over_body():
    result = parse_notification(
        {"data.id": "1", "type": "payment"},
        {"action": "payment.created", "data": {"id": "2"}},
    )
    assert result == Notification("1", "payment")


def test_shape_independence_same_id_any_envelope():
    shapes = [
        ({"data.id": "123", "type": "payment"}, None),
        ({}, {"action": "payment.created", "data": {"id": "123"}}),
        ({}, {"id": "123", "type": "payment"}),
        ({}, {"payment_id": "123"}),
    ]
    ids = {parse_notification(q, b).id for q, b in shapes}
    assert ids == {"123"}


@pytest.mark.parametrize(
    ("query", "body"),
    [
        ({}, None),
        ({}, {}),
        ({}, "not a dict"),
        ({}, ["payment"]),
        ({"topic": "payment"}, {"action": "payment.created"}),
        ({}, {"action": "payment.created", "data": "no-slash"}),
        ({}, {"id": "   "}),
    ],
)
def test_parse_notification_returns_none_without_id(query, body):
    assert parse_notification(query, body) is None


def _sign(secret: str, ts: int, body: str) -> str:
    digest = hmac.new(secret.encode(), f"{ts}.{body}".encode(), hashlib.sha256).hexdigest()
    return f"ts={ts},v1={digest}"


def test_verify_signature_valid():
    body = '{"id": "1"}'
    header = _sign("whsec", 1_700_000_000, body)
    assert verify_signature(header, body.encode(), "whsec", now=1_700_000_100)


def test_verify_signature_rejects_wrong_secret_and_tampered_body():
    header = _sign("whsec", 1_700_000_000, '{"id": "1"}')
    assert not verify_signature(header, b'{"id": "1"}', "other", now=1_700_000_000)
    assert not verify_signature(header, b'{"id": "2"}', "whsec", now=1_700_000_000)


def test_verify_signature_rejects_stale_timestamp():
    header = _sign("whsec", 1_700_000_000, "{}")
    assert not verify_signature(header, b"{}", "whsec", now=1_700_000_000 + 301)


@pytest.mark.parametrize("header", [None, "", "v1=abcdef", "ts=123", "garbage"])
def test_verify_signature_rejects_malformed_header(header):
    assert not verify_signature(header, b"{}", "whsec", now=123)

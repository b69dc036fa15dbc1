from __future__ import annotations

import hashlib
import hmac
import time
from datetime import timedelta
from decimal import Decimal

from sqlmodel import select

from conftest import STEAM_ID, auth_headers, make_user
from vipsync.api.errors import PaymentProviderError
from vipsync.core.cache import ProcessedMarkers
from vipsync.core.config import settings
from vipsync.models import Subscription, User, as_utc, utc_now
from vipsync.services.activation import process_and_activate
from vipsync.services.payment_processor import PaymentProcessor
from vipsync.worker.tasks import check_pending_payments

WEBHOOK = "/api/v1/webhook/mercadopago"


def _subscriptions(db, user_id: str) -> list[Subscription]:
    db.expire_all()
    return list(db.exec(select(Subscription).where(Subscription.user_id == user_id)).all())


def test_approved_payment_activates_subscription(client, db, fakes):
    make_user(db, user_id="u1")
    fakes.mercadopago.add_payment(
        "123", external_reference="u1|vip-plus", transaction_amount=39.9, payment_method_id="pix"
    )

    r = client.post(WEBHOOK, params={"data.id": "123", "type": "payment"})

    assert r.status_code == 200
    body = r.json()
    assert body["code"] == 0
    data = body["data"]
    assert data["success"] is True
    assert data["topic"] == "payment"
    assert data["id"] == "123"
    assert data["discord_role_assigned"] is True
    assert data["rust_permission_assigned"] is True

    subs = _subscriptions(db, "u1")
    assert len(subs) == 1
    sub = subs[0]
    assert sub.id == data["subscription_id"]
    assert sub.status == "active"
    assert sub.payment_status == "approved"
    assert sub.plan_name == "VIP Plus"
    assert sub.amount == Decimal("39.90")
    assert sub.payment_method == "pix"
    assert db.get(User, "u1").role == "vip-plus"

    assert fakes.discord.added == [("111111111111111111", "vip-plus")]
    assert fakes.rust.added[0][0] == STEAM_ID
    assert fakes.processor.is_processed("payment", "123")


def test_replayed_notification_is_acknowledged_without_side_effects(client, db, fakes):
    make_user(db, user_id="u1")
    fakes.mercadopago.add_payment("123", external_reference="u1|vip-plus")

    client.post(WEBHOOK, json={"action": "payment.created", "data": {"id": "123"}})
    r = client.post(WEBHOOK, json={"action": "payment.updated", "data": {"id": "123"}})

    assert r.status_code == 200
    assert r.json()["data"]["success"] is True
    assert r.json()["data"]["message"] == "already processed"
    assert len(_subscriptions(db, "u1")) == 1
    assert len(fakes.discord.added) == 1
    assert len(fakes.rust.added) == 1


def test_pending_checkout_row_is_activated_in_place(client, db, fakes):
    make_user(db, user_id="u1")
    db.add(Subscription(user_id="u1", plan_id="vip-basic", plan_name="VIP Básico", preference_id="pref-1"))
    db.commit()
    fakes.mercadopago.add_payment("900", external_reference="u1|vip-basic")

    client.post(WEBHOOK, json={"id": "900", "type": "payment"})

    subs = _subscriptions(db, "u1")
    assert len(subs) == 1
    assert subs[0].status == "active"
    assert subs[0].payment_id == "900"


def test_new_activation_cancels_previous_active_subscription(client, db, fakes):
    make_user(db, user_id="u1")
    fakes.mercadopago.add_payment("2", external_reference="u1|vip-plus")

    db.add(Subscription(user_id="u1", plan_id="vip-basic", plan_name="VIP Básico", status="active"))
    db.commit()
    db.add(Subscription(user_id="u1", plan_id="vip-basic", plan_name="VIP Básico", status="active"))
    db.commit()

    client.post(WEBHOOK, params={"id": "2", "topic": "payment"})

    assert sorted(s.status for s in _subscriptions(db, "u1")) == ["active", "cancelled"]


def test_reference_by_discord_id(client, db, fakes):
    make_user(db, user_id="u-internal", discord_id="222")
    fakes.mercadopago.add_payment("5", external_reference="222|vip-basic")

    r = client.post(WEBHOOK, params={"data.id": "5", "type": "payment"})

    assert r.json()["data"]["success"] is True
    assert len(_subscriptions(db, "u-internal")) == 1


def test_non_approved_payment_returns_200_without_writes(client, db, fakes):
    make_user(db, user_id="u1")
    fakes.mercadopago.add_payment("6", status="in_process", external_reference="u1|vip-plus")

    r = client.post(WEBHOOK, params={"data.id": "6", "type": "payment"})

    assert r.status_code == 200
    assert r.json()["data"]["success"] is False
    assert r.json()["data"]["message"] == "payment status: in_process"
    assert _subscriptions(db, "u1") == []
    assert not fakes.processor.is_processed("payment", "6")


def test_merchant_order_without_approved_payment(client, fakes):
    fakes.mercadopago.orders["555"] = {"id": 555, "payments": [{"id": 1, "status": "pending"}]}

    r = client.post(WEBHOOK, params={"id": "555", "topic": "merchant_order"})

    assert r.status_code == 200
    assert r.json()["data"]["message"] == "no approved payment in order"


def test_unparseable_notification_is_acknowledged(client):
    r = client.post(WEBHOOK, json={"hello": "world"})
    assert r.status_code == 200
    assert r.json()["data"] == {
        "success": False,
        "message": "notification id not found",
        "topic": None,
        "id": None,
        "subscription_id": None,
        "discord_role_assigned": None,
        "rust_permission_assigned": None,
    }


def test_form_encoded_body(client, db, fakes):
    make_user(db, user_id="u1")
    fakes.mercadopago.add_payment("77", external_reference="u1|vip-basic")

    r = client.post(
        WEBHOOK,
        content="payment_id=77",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    assert r.json()["data"]["success"] is True


def test_unknown_user_is_acknowledged(client, db, fakes):
    fakes.mercadopago.add_payment("8", external_reference="ghost|vip-plus")

    r = client.post(WEBHOOK, params={"data.id": "8", "type": "payment"})

    assert r.status_code == 200
    assert r.json()["data"]["success"] is False
    assert r.json()["data"]["message"] == "User not found"
    assert not fakes.processor.is_processed("payment", "8")


def test_provider_failure_is_acknowledged(client, fakes):
    fakes.mercadopago.error = PaymentProviderError("Mercado Pago GET /v1/payments/9 failed: HTTP 500")

    r = client.post(WEBHOOK, params={"data.id": "9", "type": "payment"})

    assert r.status_code == 200
    assert r.json()["data"]["success"] is False
    assert "HTTP 500" in r.json()["data"]["message"]


def test_provisioning_failure_does_not_fail_activation(client, db, fakes):
    from vipsync.integrations.result import ProvisionFailure, ProvisionResult

    make_user(db, user_id="u1", steam_id="abc")
    fakes.rust.result = ProvisionResult.failure(ProvisionFailure.INVALID_ID, "invalid SteamID 'abc'")
    fakes.mercadopago.add_payment("10", external_reference="u1|vip-plus")

    r = client.post(WEBHOOK, params={"data.id": "10", "type": "payment"})

    data = r.json()["data"]
    assert data["success"] is True
    assert data["discord_role_assigned"] is True
    assert data["rust_permission_assigned"] is False
    assert _subscriptions(db, "u1")[0].status == "active"


def test_get_method_not_allowed(client):
    r = client.get(WEBHOOK)
    assert r.status_code == 405


def test_signature_required_when_secret_configured(client, db, fakes, monkeypatch):
    monkeypatch.setattr(settings, "MERCADOPAGO_WEBHOOK_SECRET", "whsec")
    make_user(db, user_id="u1")
    fakes.mercadopago.add_payment("11", external_reference="u1|vip-basic")
    body = '{"id": "11", "type": "payment"}'

    r = client.post(WEBHOOK, content=body, headers={"x-signature": "ts=1,v1=deadbeef"})
    assert r.status_code == 401
    assert r.json()["code"] == 401001

    ts = int(time.time())
    digest = hmac.new(b"whsec", f"{ts}.{body}".encode(), hashlib.sha256).hexdigest()
    r = client.post(
        WEBHOOK,
        content=body,
        headers={"x-signature": f"ts={ts},v1={digest}", "Content-Type": "application/json"},
    )
    assert r.status_code == 200
    assert r.json()["data"]["success"] is True


def test_in_process_payment_is_recorded_and_activated_by_pending_sweep(client, db, fakes):
    make_user(db, user_id="u1", discord_id="111")
    r = client.post(
        "/api/v1/subscriptions/create", json={"planId": "vip-plus"}, headers=auth_headers("u1")
    )
    sub_id = r.json()["data"]["subscription_id"]
    fakes.mercadopago.add_payment("p1", status="in_process", external_reference="111|vip-plus")

    r = client.post(WEBHOOK, params={"data.id": "p1", "type": "payment"})

    assert r.json()["data"]["success"] is False
    db.expire_all()
    sub = db.get(Subscription, sub_id)
    assert sub.status == "pending"
    assert sub.payment_id == "p1"
    assert sub.payment_status == "in_process"
    assert not fakes.processor.is_processed("payment", "p1")

    fakes.mercadopago.payments["p1"]["status"] = "approved"
    outcome = check_pending_payments(
        session=db,
        processor=fakes.processor,
        redis_client=fakes.redis,
        discord=fakes.discord,
        rust=fakes.rust,
    )

    assert outcome["results"]["processed"] == 1
    subs = _subscriptions(db, "u1")
    assert len(subs) == 1
    assert subs[0].id == sub_id
    assert subs[0].status == "active"
    assert subs[0].payment_status == "approved"
    assert subs[0].payment_id == "p1"
    assert fakes.discord.added == [("111", "vip-plus")]


def test_redelivered_payment_does_not_revive_expired_subscription(client, db, fakes):
    make_user(db, user_id="u1")
    fakes.mercadopago.add_payment("p9", external_reference="u1|vip-plus")
    client.post(WEBHOOK, params={"data.id": "p9", "type": "payment"})

    sub = _subscriptions(db, "u1")[0]
    expired_at = utc_now() - timedelta(days=5)
    sub.status = "expired"
    sub.expires_at = expired_at
    db.add(sub)
    db.commit()

    # 进程重启后幂等标记已丢失
    processor = PaymentProcessor(client=fakes.mercadopago, markers=ProcessedMarkers(max_entries=10))  # type: ignore[arg-type]
    result, activation = process_and_activate(
        session=db, processor=processor, topic="payment", notification_id="p9"
    )

    assert result.success is True
    assert activation is not None
    assert activation.duplicate is True
    subs = _subscriptions(db, "u1")
    assert len(subs) == 1
    assert subs[0].status == "expired"
    assert as_utc(subs[0].expires_at) == expired_at
    assert len(fakes.discord.added) == 1


def test_redelivered_payment_keeps_newer_subscription_active(client, db, fakes):
    make_user(db, user_id="u1")
    fakes.mercadopago.add_payment("old", external_reference="u1|vip-basic")
    fakes.mercadopago.add_payment("new", external_reference="u1|vip-plus")
    client.post(WEBHOOK, params={"data.id": "old", "type": "payment"})
    old = _subscriptions(db, "u1")[0]
    old.status = "expired"
    old.expires_at = utc_now() - timedelta(days=1)
    db.add(old)
    db.commit()
    client.post(WEBHOOK, params={"data.id": "new", "type": "payment"})
    fakes.processor.markers.discard("payment", "old")

    r = client.post(WEBHOOK, params={"data.id": "old", "type": "payment"})

    assert r.json()["data"]["message"] == "payment already applied"
    by_payment = {s.payment_id: s.status for s in _subscriptions(db, "u1")}
    assert by_payment == {"old": "expired", "new": "active"}

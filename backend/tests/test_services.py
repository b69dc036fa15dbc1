from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import make_user
from vipsync.api.errors import AppError
from vipsync.enums import UserRole
from vipsync.models import Subscription, as_utc, utc_now
from vipsync.services.activation import activate_subscription, record_payment_progress
from vipsync.services.plans import plan_display_name, role_for_plan
from vipsync.services.provisioning import remaining_days
from vipsync.worker.scheduler import build_scheduler


@pytest.mark.parametrize(
    ("plan_id", "name", "role"),
    [
        ("vip-basic", "VIP Básico", UserRole.vip),
        ("vip-plus", "VIP Plus", UserRole.vip_plus),
        ("vip-premium", "VIP Premium", UserRole.vip),
        ("starter", "starter", UserRole.user),
    ],
)
def test_plan_rules(plan_id, name, role):
    assert plan_display_name(plan_id) == name
    assert role_for_plan(plan_id) == role


def test_remaining_days_rounds_up_and_floors_at_one():
    now = utc_now()
    assert remaining_days(now + timedelta(days=2, hours=1), now) == 3
    assert remaining_days(now - timedelta(days=1), now) == 1
    assert remaining_days(None, now) == 30


def test_activation_sets_expiry_and_role(db, fakes):
    user = make_user(db, user_id="u1")
    before = utc_now()

    result = activate_subscription(
        session=db,
        data={"userId": "u1", "planId": "vip-basic", "paymentId": "42", "amount": 19.9},
        discord=fakes.discord,
        rust=fakes.rust,
    )

    sub = result.subscription
    assert result.created is True
    assert result.role_updated is True
    assert sub.status == "active"
    assert sub.payment_status == "approved"
    expires = sub.expires_at if sub.expires_at.tzinfo else sub.expires_at.replace(tzinfo=before.tzinfo)
    assert timedelta(days=29, hours=23) < expires - before < timedelta(days=30, minutes=1)
    assert user.role == "vip"
    assert result.to_dict()["provisioning_errors"] == {}


def test_activation_does_not_downgrade_admin(db, fakes):
    admin = make_user(db, user_id="a1", role=UserRole.admin)

    result = activate_subscription(
        session=db,
        data={"userId": "a1", "planId": "vip-plus", "paymentId": "43"},
        discord=fakes.discord,
        rust=fakes.rust,
    )

    assert result.role_updated is False
    assert admin.role == "admin"


def test_activation_reuses_row_for_same_payment(db, fakes):
    make_user(db, user_id="u1")
    data = {"userId": "u1", "planId": "vip-plus", "paymentId": "44"}

    first = activate_subscription(session=db, data=data, discord=fakes.discord, rust=fakes.rust)
    second = activate_subscription(session=db, data=data, discord=fakes.discord, rust=fakes.rust)

    assert second.created is False
    assert second.subscription.id == first.subscription.id
    assert db.get(Subscription, first.subscription.id).status == "active"


def test_activation_unknown_user(db, fakes):
    with pytest.raises(AppError) as exc:
        activate_subscription(
            session=db,
            data={"userId": "ghost", "planId": "vip-plus", "paymentId": "45"},
            discord=fakes.discord,
            rust=fakes.rust,
        )
    assert exc.value.status_code == 404


def _expire(db, sub: Subscription, days_ago: int = 5) -> None:
    sub.status = "expired"
    sub.expires_at = utc_now() - timedelta(days=days_ago)
    db.add(sub)
    db.commit()


def test_activation_leaves_expired_row_of_same_payment_unchanged(db, fakes):
    make_user(db, user_id="u1")
    data = {"userId": "u1", "planId": "vip-plus", "paymentId": "46"}
    first = activate_subscription(session=db, data=data, discord=fakes.discord, rust=fakes.rust)
    _expire(db, first.subscription)

    again = activate_subscription(session=db, data=data, discord=fakes.discord, rust=fakes.rust)

    assert again.duplicate is True
    assert again.to_dict()["duplicate"] is True
    assert db.get(Subscription, first.subscription.id).status == "expired"
    assert len(fakes.rust.added) == 1


def test_renew_reactivates_expired_row(db, fakes):
    make_user(db, user_id="u1")
    data = {"userId": "u1", "planId": "vip-plus", "paymentId": "47"}
    first = activate_subscription(session=db, data=data, discord=fakes.discord, rust=fakes.rust)
    _expire(db, first.subscription)

    renewed = activate_subscription(
        session=db, data=data, discord=fakes.discord, rust=fakes.rust, renew=True
    )

    assert renewed.duplicate is False
    assert renewed.created is False
    sub = db.get(Subscription, first.subscription.id)
    assert sub.status == "active"
    assert as_utc(sub.expires_at) > utc_now() + timedelta(days=29)
    assert len(fakes.rust.added) == 2


def test_renew_of_current_row_only_reprovisions(db, fakes):
    make_user(db, user_id="u1")
    data = {"userId": "u1", "planId": "vip-plus", "paymentId": "48"}
    first = activate_subscription(session=db, data=data, discord=fakes.discord, rust=fakes.rust)
    expires_at = first.subscription.expires_at

    again = activate_subscription(
        session=db, data=data, discord=fakes.discord, rust=fakes.rust, renew=True
    )

    assert again.subscription.id == first.subscription.id
    assert again.subscription.expires_at == expires_at
    assert len(fakes.discord.added) == 2


def test_allow_duplicates_creates_new_row(db, fakes):
    make_user(db, user_id="u1")
    data = {"userId": "u1", "planId": "vip-plus", "paymentId": "49"}
    first = activate_subscription(session=db, data=data, discord=fakes.discord, rust=fakes.rust)

    second = activate_subscription(
        session=db, data=data, discord=fakes.discord, rust=fakes.rust, allow_duplicates=True
    )

    assert second.created is True
    assert second.subscription.id != first.subscription.id
    db.expire_all()
    assert db.get(Subscription, first.subscription.id).status == "cancelled"


def test_payment_progress_only_touches_pending_rows(db, fakes):
    make_user(db, user_id="u1")
    active = Subscription(user_id="u1", plan_id="vip-basic", plan_name="VIP Básico", status="active")
    pending = Subscription(user_id="u1", plan_id="vip-plus", plan_name="VIP Plus", preference_id="pref-9")
    db.add(active)
    db.add(pending)
    db.commit()

    recorded = record_payment_progress(
        session=db, data={"userId": "u1", "planId": "vip-plus", "paymentId": "50", "status": "in_process"}
    )

    assert recorded is not None
    assert recorded.id == pending.id
    assert (recorded.payment_id, recorded.payment_status) == ("50", "in_process")
    assert db.get(Subscription, active.id).payment_id is None


def test_payment_progress_without_pending_row(db, fakes):
    make_user(db, user_id="u1")
    data = {"userId": "u1", "planId": "vip-plus", "paymentId": "51", "status": "in_process"}
    assert record_payment_progress(session=db, data=data) is None
    assert record_payment_progress(session=db, data={**data, "userId": "ghost"}) is None


def test_scheduler_registers_configured_jobs(monkeypatch):
    from vipsync.core.config import settings

    monkeypatch.setattr(settings, "SCHEDULE_SYNC_PERMISSIONS", None)

    scheduler = build_scheduler()

    assert sorted(job.id for job in scheduler.get_jobs()) == [
        "check_expired_subscriptions",
        "check_pending_payments",
    ]


def test_pre_start_checks(engine, fakes):
    from tenacity import RetryError, stop_after_attempt, wait_none

    from vipsync.backend_pre_start import wait_for_database, wait_for_redis

    wait_for_database(engine)
    wait_for_redis(fakes.redis)

    fakes.redis.available = False
    with pytest.raises(RetryError):
        wait_for_redis.retry_with(stop=stop_after_attempt(2), wait=wait_none())(fakes.redis)

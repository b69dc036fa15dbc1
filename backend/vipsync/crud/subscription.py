"""订阅账本 CRUD 操作"""
from collections.abc import Sequence
from datetime import datetime

from sqlmodel import Session, col, or_, select

from vipsync.enums import SubscriptionStatus
from vipsync.models import Subscription, utc_now


def get(*, session: Session, subscription_id: int) -> Subscription | None:
    return session.get(Subscription, subscription_id)


def get_by_payment(
    *, session: Session, payment_id: str, user_id: str | None = None
) -> Subscription | None:
    """payment_id 相同的最新订阅，给定 user_id 时只查该用户名下"""
    statement = select(Subscription).where(Subscription.payment_id == payment_id)
    if user_id is not None:
        statement = statement.where(Subscription.user_id == user_id)
    return session.exec(statement.order_by(col(Subscription.created_at).desc())).first()


def find_pending_for_payment(
    *, session: Session, user_id: str, payment_id: str
) -> Subscription | None:
    """
    查找未支付完成、应记录该支付的订阅

    先找已记录同一 payment_id 的 pending 订阅，再找最新的尚无 payment_id 的 pending 订阅。
    """
    statement = (
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .where(Subscription.status == SubscriptionStatus.pending)
        .order_by(col(Subscription.created_at).desc())
    )
    same = session.exec(statement.where(Subscription.payment_id == payment_id)).first()
    if same:
        return same
    return session.exec(statement.where(col(Subscription.payment_id).is_(None))).first()


def find_for_payment(
    *, session: Session, user_id: str, payment_id: str
) -> Subscription | None:
    """
    查找支付对应的订阅

    匹配顺序：
    1. payment_id 相同的订阅
    2. 最新的 pending 订阅，或 preference_id 包含该支付 ID 的订阅
    3. 用户当前 active 的订阅（续费）
    """
    by_payment = get_by_payment(session=session, user_id=user_id, payment_id=payment_id)
    if by_payment:
        return by_payment

    pending = session.exec(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .where(
            or_(
                Subscription.status == SubscriptionStatus.pending,
                col(Subscription.preference_id).contains(payment_id),
            )
        )
        .order_by(col(Subscription.created_at).desc())
    ).first()
    if pending:
        return pending

    return get_active_for_user(session=session, user_id=user_id)


def get_active_for_user(*, session: Session, user_id: str) -> Subscription | None:
    return session.exec(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .where(Subscription.status == SubscriptionStatus.active)
        .order_by(col(Subscription.created_at).desc())
    ).first()


def get_latest_for_user(*, session: Session, user_id: str) -> Subscription | None:
    return session.exec(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(col(Subscription.created_at).desc())
    ).first()


def create_pending(
    *,
    session: Session,
    user_id: str,
    plan_id: str,
    plan_name: str,
    amount,
    preference_id: str | None,
) -> Subscription:
    """创建待支付订阅（结账时调用）"""
    sub = Subscription(
        user_id=user_id,
        plan_id=plan_id,
        plan_name=plan_name,
        status=SubscriptionStatus.pending,
        payment_status="pending",
        amount=amount,
        preference_id=preference_id,
    )
    session.add(sub)
    session.commit()
    session.refresh(sub)
    return sub


def save(*, session: Session, subscription: Subscription) -> Subscription:
    subscription.updated_at = utc_now()
    session.add(subscription)
    session.commit()
    session.refresh(subscription)
    return subscription


def set_flag(*, session: Session, subscription: Subscription, name: str, value: bool) -> None:
    """设置外部系统授权标记（discord_role_assigned / rust_permission_assigned）"""
    setattr(subscription, name, value)
    save(session=session, subscription=subscription)


def mark_status(
    *,
    session: Session,
    subscription: Subscription,
    status: SubscriptionStatus,
    payment_status: str | None = None,
) -> Subscription:
    subscription.status = status
    if payment_status is not None:
        subscription.payment_status = payment_status
    return save(session=session, subscription=subscription)


def cancel_other_active(
    *, session: Session, user_id: str, keep_id: int | None
) -> int:
    """把同一用户的其他 active 订阅标记为 cancelled，返回数量"""
    statement = (
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .where(Subscription.status == SubscriptionStatus.active)
    )
    if keep_id is not None:
        statement = statement.where(Subscription.id != keep_id)
    others = session.exec(statement).all()
    now = utc_now()
    for sub in others:
        sub.status = SubscriptionStatus.cancelled
        sub.updated_at = now
        session.add(sub)
    if others:
        session.commit()
    return len(others)


def list_pending(*, session: Session, limit: int) -> Sequence[Subscription]:
    """payment_status 或 status 为 pending 的订阅，最新的在前"""
    return session.exec(
        select(Subscription)
        .where(
            or_(
                Subscription.payment_status == "pending",
                Subscription.status == SubscriptionStatus.pending,
            )
        )
        .order_by(col(Subscription.created_at).desc())
        .limit(limit)
    ).all()


def list_expired_active(*, session: Session, now: datetime) -> Sequence[Subscription]:
    return session.exec(
        select(Subscription)
        .where(Subscription.status == SubscriptionStatus.active)
        .where(col(Subscription.expires_at) < now)
    ).all()


def list_unsynced_active(*, session: Session, now: datetime) -> Sequence[Subscription]:
    """仍然有效但至少一个外部系统尚未授权的订阅"""
    return session.exec(
        select(Subscription)
        .where(Subscription.status == SubscriptionStatus.active)
        .where(col(Subscription.expires_at) >= now)
        .where(
            or_(
                col(Subscription.discord_role_assigned).is_(False),
                col(Subscription.rust_permission_assigned).is_(False),
            )
        )
    ).all()

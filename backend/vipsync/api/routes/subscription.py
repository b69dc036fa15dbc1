"""
订阅路由

- POST /subscriptions/create: 创建 Mercado Pago 结账偏好，并写入一条 pending 订阅
- GET  /subscriptions/status: 当前用户的订阅状态
"""
from __future__ import annotations

import logging

from fastapi import APIRouter

from vipsync import crud
from vipsync.api.deps import CurrentUser, SessionDep
from vipsync.api.errors import AppError
from vipsync.api.schemas import (
    ApiEnvelope,
    CheckoutData,
    SubscriptionCreateRequest,
    SubscriptionPublic,
    SubscriptionStatusData,
)
from vipsync.enums import SubscriptionStatus, UserRole
from vipsync.integrations.mercadopago import get_mercadopago_client
from vipsync.integrations.rust_server import is_valid_steam_id
from vipsync.models import as_utc, utc_now
from vipsync.services.plans import plan_display_name, plan_price

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("/create", response_model=ApiEnvelope)
def create(
    session: SessionDep,
    current_user: CurrentUser,
    payload: SubscriptionCreateRequest,
) -> ApiEnvelope:
    price = plan_price(payload.plan_id)
    if price is None:
        raise AppError(code=400201, message="Unknown plan", status_code=400)
    if not is_valid_steam_id(current_user.steam_id):
        raise AppError(
            code=400202,
            message="A valid Steam ID is required before subscribing",
            status_code=400,
        )

    plan_name = plan_display_name(payload.plan_id)
    # 外部引用中的用户标识优先使用 Discord ID，与机器人侧保持一致
    reference_id = current_user.discord_id or current_user.id
    preference = get_mercadopago_client().create_preference(
        title=plan_name,
        price=float(price),
        user_id=reference_id,
        plan_id=payload.plan_id,
        success_url=payload.success_url,
        failure_url=payload.failure_url,
    )

    subscription = crud.create_pending_subscription(
        session=session,
        user_id=current_user.id,
        plan_id=payload.plan_id,
        plan_name=plan_name,
        amount=price,
        preference_id=preference.get("id"),
    )
    logger.info(f"Pending subscription {subscription.id} created for user {current_user.id}")
    return ApiEnvelope(
        data=CheckoutData(
            subscription_id=subscription.id,
            preference_id=preference.get("id"),
            init_point=preference.get("init_point"),
            sandbox_init_point=preference.get("sandbox_init_point"),
        )
    )


@router.get("/status", response_model=ApiEnvelope)
def status(session: SessionDep, current_user: CurrentUser) -> ApiEnvelope:
    subscription = crud.get_active_subscription(
        session=session, user_id=current_user.id
    ) or crud.get_latest_subscription(session=session, user_id=current_user.id)
    is_vip = bool(
        subscription
        and subscription.status == SubscriptionStatus.active
        and subscription.expires_at is not None
        and as_utc(subscription.expires_at) > utc_now()
    )
    return ApiEnvelope(
        data=SubscriptionStatusData(
            is_vip=is_vip,
            role=UserRole(current_user.role).value,
            subscription=SubscriptionPublic.model_validate(subscription, from_attributes=True)
            if subscription
            else None,
        )
    )

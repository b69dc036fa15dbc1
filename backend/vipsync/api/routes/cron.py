"""
定时任务路由

供外部调度服务（或 Discord 机器人）调用，GET / POST 均可：
- /cron/check-expired
- /cron/check-pending-payments
- /cron/sync-permissions

认证：Authorization: Bearer <ADMIN_CRON_SECRET>，或 X-API-Key / ?apiKey= 等于 INTERNAL_API_KEY。
"""
from typing import Any

from fastapi import APIRouter

from vipsync.api.deps import CronAccess, ProcessorDep, RedisDep, SessionDep
from vipsync.api.schemas import ApiEnvelope, SweepResult
from vipsync.worker.tasks import (
    check_expired_subscriptions,
    check_pending_payments,
    sync_permissions,
)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[CronAccess])


def _envelope(outcome: dict[str, Any]) -> ApiEnvelope:
    data = SweepResult(**outcome["results"], message=outcome["message"])
    return ApiEnvelope(message=outcome["message"], data=data)


@router.api_route("/check-expired", methods=["GET", "POST"], response_model=ApiEnvelope)
def cron_check_expired(session: SessionDep) -> ApiEnvelope:
    return _envelope(check_expired_subscriptions(session=session))


@router.api_route("/check-pending-payments", methods=["GET", "POST"], response_model=ApiEnvelope)
def cron_check_pending_payments(
    session: SessionDep, processor: ProcessorDep, redis_client: RedisDep
) -> ApiEnvelope:
    return _envelope(
        check_pending_payments(session=session, processor=processor, redis_client=redis_client)
    )


@router.api_route("/sync-permissions", methods=["GET", "POST"], response_model=ApiEnvelope)
def cron_sync_permissions(session: SessionDep) -> ApiEnvelope:
    return _envelope(sync_permissions(session=session))

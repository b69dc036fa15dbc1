"""
定时任务调度器

以独立进程运行（python -m vipsync.worker.scheduler），按配置的 cron 表达式触发：
- 待支付对账（SCHEDULE_PENDING_PAYMENTS）
- 到期订阅回收（SCHEDULE_EXPIRED_SUBSCRIPTIONS）
- 权限补发（SCHEDULE_SYNC_PERMISSIONS）

cron 表达式为空时不调度对应任务（例如改由外部服务调用 /cron 接口）。
"""

import logging
from collections.abc import Callable
from datetime import timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from vipsync.core.config import settings
from vipsync.worker.tasks import (
    run_expired_subscriptions_check,
    run_pending_payments_check,
    run_permissions_sync,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_scheduler() -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone=timezone.utc)
    jobs: list[tuple[str, str | None, Callable[[], None]]] = [
        ("check_pending_payments", settings.SCHEDULE_PENDING_PAYMENTS, run_pending_payments_check),
        ("check_expired_subscriptions", settings.SCHEDULE_EXPIRED_SUBSCRIPTIONS, run_expired_subscriptions_check),
        ("sync_permissions", settings.SCHEDULE_SYNC_PERMISSIONS, run_permissions_sync),
    ]
    for job_id, expression, func in jobs:
        if not expression:
            logger.info(f"Job {job_id} disabled")
            continue
        scheduler.add_job(
            func,
            CronTrigger.from_crontab(expression, timezone=timezone.utc),
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Job {job_id} scheduled: {expression} (UTC)")
    return scheduler


def main() -> None:
    scheduler = build_scheduler()
    logger.info("Scheduler started.")
    scheduler.start()


if __name__ == "__main__":
    main()

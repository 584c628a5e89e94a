"""
Celery tasks for payment follow-up: periodic reconciliation of entries whose
last attempt could not reach the gateway.
"""
from __future__ import annotations

import asyncio

from celery import shared_task

from application.services.reconciliation_service import ReconciliationEngine, ReconciliationAction
from application.services.result_interpreter import GatewayResultInterpreter
from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.tasks.fulfillment import CeleryTicketFulfillment
from infrastructure.tasks.utils.base_task import BaseTask


logger = get_logger(__name__)


async def _retry_reconciliation(limit: int) -> dict:
    # 每个任务独立事件循环；连接池需在同一循环内创建与释放
    from infrastructure.database import engine
    from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

    cfg = payment_settings.reconciliation
    gateway = get_payment_gateway()
    try:
        reconciler = ReconciliationEngine(
            SQLAlchemyUnitOfWork,
            gateway,
            CeleryTicketFulfillment(),
            GatewayResultInterpreter(provider=gateway.provider),
            max_attempts=cfg.max_attempts,
            backoff_base=cfg.base_backoff,
            backoff_max=cfg.max_backoff,
            fetch_deadline=cfg.fetch_deadline_seconds,
        )
        acks = await reconciler.retry_failed(limit)
    finally:
        await gateway.aclose()
        await engine.dispose()

    summary: dict[str, int] = {}
    for ack in acks:
        summary[ack.action.value] = summary.get(ack.action.value, 0) + 1
    return {
        "processed": len(acks),
        "still_failing": summary.get(ReconciliationAction.FAILED.value, 0),
        "actions": summary,
    }


@shared_task(name="payments.retry_reconciliation", bind=True, base=BaseTask, max_retries=3, default_retry_delay=60)
def task_retry_reconciliation(self, limit: int | None = None):
    batch = limit or payment_settings.reconciliation.retry_batch_size
    try:
        result = asyncio.run(_retry_reconciliation(batch))
    except Exception as exc:
        logger.error("reconciliation_retry_task_failed", limit=batch, error=str(exc))
        raise self.retry(exc=exc)
    logger.info("reconciliation_retry_task_done", **result)
    return result

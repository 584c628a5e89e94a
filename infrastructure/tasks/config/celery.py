"""Celery application configuration

两类任务：
- ``tickets.*`` 门票投递，走 high 队列，每张已批准门票只入队一次
- ``payments.*`` 定时补偿对账，走 low 队列
"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import configure_logging, get_logger
from .beat import CELERY_BEAT_SCHEDULE


CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
    "infrastructure.tasks.payment_tasks",
)

configure_logging()
logger = get_logger(__name__)


def _always_eager() -> bool:
    if settings.celery.always_eager is not None:
        return settings.celery.always_eager
    return (settings.ENVIRONMENT or "production").lower() in {"development", "dev", "test", "testing"}


celery_app = Celery("event_ticket_payments")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 投递任务执行完才 ack；worker 丢失时由 broker 重新投递
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_time_limit=settings.celery.task_time_limit,
    broker_transport_options={"visibility_timeout": settings.celery.visibility_timeout},
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_default_retry_delay=5,
    task_queues=(
        Queue("high"),
        Queue("default"),
        Queue("low"),
    ),
    task_routes={
        "tickets.*": {"queue": "high"},
        "payments.*": {"queue": "low"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=CELERY_IMPORTS,
    task_always_eager=_always_eager(),
    # eager 模式下任务异常直接抛给调用方，由履约适配器记录
    task_eager_propagates=True,
)

celery_app.autodiscover_tasks(packages=CELERY_IMPORTS)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        always_eager=sender.conf.task_always_eager,
        queues=[q.name for q in sender.conf.task_queues],
    )

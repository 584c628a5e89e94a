"""Celery 任务基类：统一的结构化日志，附带票号上下文"""
from __future__ import annotations

from typing import Any, Optional

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


def _ticket_id(task_name: Optional[str], args: Any, kwargs: Any) -> Optional[str]:
    if kwargs and kwargs.get("ticket_id"):
        return str(kwargs["ticket_id"])
    # ticket tasks take the ticket id as first positional argument
    if args and (task_name or "").startswith("tickets."):
        return str(args[0])
    return None


class BaseTask(Task):
    """Payment tasks share this base so every outcome is traceable by ticket id.

    Only the ticket id is logged; payer e-mail and other arguments are not.
    """

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            ticket_id=_ticket_id(self.name, args, kwargs),
            retries=self.request.retries,
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            ticket_id=_ticket_id(self.name, args, kwargs),
            retries=self.request.retries,
            exc=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            ticket_id=_ticket_id(self.name, args, kwargs),
        )
        super().on_success(retval, task_id, args, kwargs)

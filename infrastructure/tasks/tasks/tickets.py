"""Ticket delivery Celery tasks"""
from __future__ import annotations

from typing import Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger

logger = get_logger(__name__)


@shared_task(
    name="tickets.deliver_ticket",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def deliver_ticket(self, ticket_id: str, email: Optional[str] = None) -> dict:
    """Deliver the purchased ticket to the payer.

    Enqueued exactly once per approved ticket by the reconciliation core.
    Replace the body with real delivery (ESP / PDF rendering).
    """
    logger.info("ticket_delivered", ticket_id=ticket_id, email=email)
    return {"ticket_id": ticket_id, "delivered": True}

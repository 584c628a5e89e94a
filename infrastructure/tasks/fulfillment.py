"""TicketFulfillment adapter that hands delivery over to Celery."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from core.logging_config import get_logger
from .utils.dispatcher import TaskDispatcher

logger = get_logger(__name__)


class CeleryTicketFulfillment:
    def __init__(self, dispatcher: Optional[TaskDispatcher] = None) -> None:
        self.dispatcher = dispatcher or TaskDispatcher()

    async def deliver(self, ticket_id: UUID, payer_email: Optional[str]) -> None:
        self.dispatcher.send_ticket(str(ticket_id), payer_email)
        logger.info("ticket_delivery_enqueued", ticket_id=str(ticket_id))

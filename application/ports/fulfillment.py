"""Application-owned port for ticket fulfillment (delivery to the payer)."""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable
from uuid import UUID


@runtime_checkable
class TicketFulfillment(Protocol):
    """Fire-and-forget ticket delivery.

    The core guarantees at most one call per ticket; implementations only need
    to hand the job over (queue, mailer) and return.
    """

    async def deliver(self, ticket_id: UUID, payer_email: Optional[str]) -> None: ...

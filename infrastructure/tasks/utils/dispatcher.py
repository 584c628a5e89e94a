"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Optional


class TaskDispatcher:
    """Internal facade used by application layer to schedule tasks."""

    def send_ticket(self, ticket_id: str, email: Optional[str]) -> None:
        """Queue ticket delivery; runs inline when the app is in eager mode."""
        from ..tasks.tickets import deliver_ticket

        deliver_ticket.apply_async(kwargs={"ticket_id": ticket_id, "email": email})

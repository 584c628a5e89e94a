"""
Payments API routes.

Thin adapters over PaymentService and ReconciliationEngine: parse, delegate,
render. Errors are BusinessExceptions rendered by the global handlers.
"""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_payment_service, get_reconciliation_engine
from application.dtos.payments import (
    PaymentStatusResponse,
    ProcessPaymentRequest,
    ProcessPaymentResponse,
    TicketStatusResponse,
    WebhookAck,
)
from application.services.payment_service import PaymentService
from application.services.reconciliation_service import ReconciliationEngine
from core.logging_config import get_logger
from domain.payment.entity import NotificationEvent


router = APIRouter(tags=["Payments"])
logger = get_logger(__name__)


@router.post("/process_payment", response_model=ProcessPaymentResponse, summary="Pay for a ticket")
async def process_payment(
    payload: ProcessPaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.process_payment(
        payload.selectedPaymentMethod,
        payload.formData,
        payload.ticket_id,
    )
    return ProcessPaymentResponse.from_result(result)


@router.get("/payment_status/{payment_id}", response_model=PaymentStatusResponse, summary="Poll payment status")
async def payment_status(
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.get_payment_status(payment_id)
    return PaymentStatusResponse.from_result(result)


@router.post("/webhook", response_model=WebhookAck, summary="Gateway notification")
async def webhook(
    request: Request,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    raw_body = await request.body()
    payload = None
    if raw_body.strip():
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("webhook_body_not_json", size=len(raw_body))

    event = NotificationEvent.parse(payload, dict(request.query_params))
    ack = await engine.on_notification(event)
    logger.info(
        "webhook_acknowledged",
        notification_type=event.raw_type,
        gateway_payment_id=event.gateway_payment_id or None,
        action=ack.action.value,
    )
    return WebhookAck()


@router.get("/tickets/{ticket_id}", response_model=TicketStatusResponse, summary="Ticket payment view")
async def ticket_status(
    ticket_id: UUID,
    service: PaymentService = Depends(get_payment_service),
):
    entry = await service.get_ticket(ticket_id)
    return TicketStatusResponse.from_entry(entry)

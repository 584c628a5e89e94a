"""
Payment DTOs (Pydantic v2) used at application boundaries.

Request models stay loose on purpose: ``formData`` is heterogeneous client
input and is validated by the RequestNormalizer, which reports errors with the
field names clients already understand (``amount``, ``payer.email``, ``token``).
"""
from __future__ import annotations

import base64
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from domain.payment.entity import LedgerEntry, PaymentResult


PNG_DATA_URI_PREFIX = "data:image/png;base64,"


def to_data_uri(image: Optional[bytes]) -> Optional[str]:
    if not image:
        return None
    return PNG_DATA_URI_PREFIX + base64.b64encode(image).decode("ascii")


class ProcessPaymentRequest(BaseModel):
    selectedPaymentMethod: str
    formData: dict[str, Any] = Field(default_factory=dict)
    # Supplied by clients retrying a submission that timed out
    ticket_id: Optional[UUID] = None

    model_config = ConfigDict(extra="ignore")


class ProcessPaymentResponse(BaseModel):
    status: Literal["success"] = "success"
    message: str = "Payment processed successfully"
    payment_id: str
    payment_status: str
    status_detail: str
    ticket_id: str
    pix_qr_code: Optional[str] = None
    pix_qr_code_base64: Optional[str] = None

    @classmethod
    def from_result(cls, result: PaymentResult) -> "ProcessPaymentResponse":
        return cls(
            payment_id=result.gateway_payment_id,
            payment_status=result.status.value,
            status_detail=result.status_detail,
            ticket_id=str(result.internal_ticket_id),
            pix_qr_code=result.transfer_code,
            pix_qr_code_base64=to_data_uri(result.transfer_code_image),
        )


class PaymentStatusResponse(BaseModel):
    status: Literal["success"] = "success"
    payment_status: str
    payment_status_detail: str
    pix_qr_code: Optional[str] = None
    pix_qr_code_base64: Optional[str] = None

    @classmethod
    def from_result(cls, result: PaymentResult) -> "PaymentStatusResponse":
        return cls(
            payment_status=result.status.value,
            payment_status_detail=result.status_detail,
            pix_qr_code=result.transfer_code,
            pix_qr_code_base64=to_data_uri(result.transfer_code_image),
        )


class TicketStatusResponse(BaseModel):
    status: Literal["success"] = "success"
    ticket_id: str
    payment_id: Optional[str] = None
    payment_status: str
    payment_status_detail: Optional[str] = None
    payment_method: Optional[str] = None
    amount: Optional[Decimal] = None
    fulfilled: bool
    reconciliation_failed: bool
    last_updated_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "TicketStatusResponse":
        return cls(
            ticket_id=str(entry.internal_ticket_id),
            payment_id=entry.gateway_payment_id,
            payment_status=entry.status.value,
            payment_status_detail=entry.status_detail,
            payment_method=entry.payment_method.value if entry.payment_method else None,
            amount=entry.amount,
            fulfilled=entry.fulfilled,
            reconciliation_failed=entry.reconciliation_failed,
            last_updated_at=entry.last_updated_at,
        )


class WebhookAck(BaseModel):
    status: Literal["success"] = "success"
    message: str = "OK"

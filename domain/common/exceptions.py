"""领域层业务异常定义，供领域、应用与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    """Client input is malformed. Surfaced to the caller, never retried."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details=details,
            field=field,
        )


# ---------------------------------------------------------------------------
# Gateway errors
# ---------------------------------------------------------------------------
class GatewayErrorKind(str, Enum):
    MALFORMED_RESPONSE = "malformed_response"
    REJECTED = "rejected"
    TRANSIENT = "transient"


class PaymentGatewayException(BusinessException):
    """Base for failures talking to the payment gateway."""

    kind: GatewayErrorKind

    def __init__(
        self,
        message: str,
        *,
        code: int,
        error_type: str,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code, "kind": self.kind.value}
        if details:
            full_details.update(details)
        self.provider = provider
        self.provider_code = provider_code
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=full_details,
        )


class PaymentRejectedException(PaymentGatewayException):
    """Permanent rejection by the gateway; not retryable."""

    kind = GatewayErrorKind.REJECTED

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            code=PaymentCode.PROVIDER_REJECTED,
            error_type="PaymentRejected",
            provider=provider,
            provider_code=provider_code,
            details=details,
        )


class PaymentTransientException(PaymentGatewayException):
    """Network failure, timeout, throttling or 5xx. Safe to retry."""

    kind = GatewayErrorKind.TRANSIENT

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            code=PaymentCode.PROVIDER_RECOVERABLE,
            error_type="PaymentGatewayUnavailable",
            provider=provider,
            provider_code=provider_code,
            details=details,
        )


class MalformedGatewayResponseException(PaymentGatewayException):
    """Gateway answered with something we cannot read as a payment."""

    kind = GatewayErrorKind.MALFORMED_RESPONSE

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(
            message,
            code=PaymentCode.MALFORMED_RESPONSE,
            error_type="MalformedGatewayResponse",
            provider=provider,
            details=details,
        )


class GatewayPaymentNotFoundException(PaymentGatewayException):
    """The gateway does not know the payment id (a permanent failure)."""

    kind = GatewayErrorKind.REJECTED

    def __init__(self, gateway_payment_id: str, *, provider: str):
        super().__init__(
            f"Payment {gateway_payment_id} not found",
            code=BusinessCode.NOT_FOUND,
            error_type="PaymentNotFound",
            provider=provider,
            provider_code="not_found",
            details={"payment_id": gateway_payment_id},
        )


# ---------------------------------------------------------------------------
# Ledger errors
# ---------------------------------------------------------------------------
class LedgerConflictException(BusinessException):
    """Duplicate ticket id, or a different gateway id already attached."""

    def __init__(self, message: str, *, ticket_id: str, details: Optional[dict] = None):
        full_details = {"ticket_id": ticket_id}
        if details:
            full_details.update(details)
        super().__init__(
            code=BusinessCode.LEDGER_INTEGRITY_ERROR,
            message=message,
            error_type="LedgerConflict",
            details=full_details,
        )


class LedgerEntryNotFoundException(BusinessException):
    def __init__(self, *, ticket_id: str | None = None, gateway_payment_id: str | None = None):
        details = {}
        if ticket_id is not None:
            details["ticket_id"] = ticket_id
        if gateway_payment_id is not None:
            details["gateway_payment_id"] = gateway_payment_id
        super().__init__(
            code=BusinessCode.LEDGER_INTEGRITY_ERROR,
            message="Ledger entry not found",
            error_type="LedgerEntryNotFound",
            details=details or None,
        )


class TicketNotFoundException(BusinessException):
    def __init__(self, ticket_id: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"Ticket {ticket_id} not found",
            error_type="TicketNotFound",
            details={"ticket_id": ticket_id},
        )


# ---------------------------------------------------------------------------
# Reconciliation errors
# ---------------------------------------------------------------------------
class InvalidTransitionException(BusinessException):
    """Status change outside the allowed table; logged and not applied."""

    def __init__(self, current: str, target: str, *, ticket_id: str | None = None):
        self.current = current
        self.target = target
        super().__init__(
            code=PaymentCode.INVALID_TRANSITION,
            message=f"Cannot transition payment from {current} to {target}",
            error_type="InvalidTransition",
            details={"from": current, "to": target, "ticket_id": ticket_id},
            field="status",
        )


class ReconciliationException(BusinessException):
    """Malformed notification payload; the notifier may retry."""

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.RECONCILIATION_ERROR,
            message=message,
            error_type="ReconciliationError",
            details=details,
        )

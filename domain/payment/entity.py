"""
支付领域实体 - 票务支付请求、结果与对账台账
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union
from uuid import UUID

from domain.common.exceptions import (
    DomainValidationException,
    InvalidTransitionException,
    ReconciliationException,
)
from shared.codes.payment_codes import INSTANT_TRANSFER_METHOD_ID, INSTANT_TRANSFER_TYPE_ID


class PaymentStatus(str, Enum):
    """支付状态枚举（网关无关）"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROCESS = "in_process"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


# 状态机：未列出的转换一律拒绝（防止乱序/重放通知导致状态回退）
ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.APPROVED,
        PaymentStatus.REJECTED,
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
    }),
    PaymentStatus.IN_PROCESS: frozenset({
        PaymentStatus.APPROVED,
        PaymentStatus.REJECTED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.APPROVED: frozenset({PaymentStatus.REFUNDED}),
}


class PaymentMethodKind(str, Enum):
    """客户端声明的支付方式（selectedPaymentMethod）"""
    CREDIT_CARD = "credit_card"
    INSTANT_TRANSFER = "pix"


@dataclass(frozen=True)
class CreditCard:
    token: str
    installments: int = 1
    brand: Optional[str] = None  # gateway payment_method_id, e.g. "visa"
    issuer_id: Optional[str] = None

    kind = PaymentMethodKind.CREDIT_CARD


@dataclass(frozen=True)
class InstantTransfer:
    method_id: str = INSTANT_TRANSFER_METHOD_ID
    type_id: str = INSTANT_TRANSFER_TYPE_ID

    kind = PaymentMethodKind.INSTANT_TRANSFER


PaymentMethod = Union[CreditCard, InstantTransfer]


@dataclass(frozen=True)
class Payer:
    email: str
    first_name: str
    last_name: str
    identification: Optional[dict[str, str]] = None


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class PaymentRequest:
    """
    一次购票请求对应的支付指令

    业务规则：
    1. 金额必须大于0
    2. internal_ticket_id 在提交网关前生成，重试同一逻辑请求时不得重新生成
    """

    amount: Decimal
    description: str
    method: PaymentMethod
    payer: Payer
    internal_ticket_id: UUID

    def __post_init__(self):
        if not self.amount.is_finite() or self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be greater than 0: {self.amount}",
                field="amount",
            )

    @property
    def is_instant_transfer(self) -> bool:
        return isinstance(self.method, InstantTransfer)


@dataclass
class PaymentResult:
    gateway_payment_id: str
    status: PaymentStatus
    status_detail: str
    internal_ticket_id: Optional[UUID]
    transfer_code: Optional[str] = None
    transfer_code_image: Optional[bytes] = None


# reconciliation_error prefix for a fulfilled entry whose delivery was never handed over
FULFILLMENT_DISPATCH_FAILED = "fulfillment dispatch failed"


@dataclass
class LedgerEntry:
    """
    对账台账条目 - 唯一跨越异步通知窗口的持久实体

    业务规则：
    1. gateway_payment_id 一旦设置不可修改
    2. fulfilled 只在首次进入 approved 时由 False 变为 True
    3. 状态转换必须遵循 ALLOWED_TRANSITIONS
    """

    internal_ticket_id: UUID
    status: PaymentStatus = PaymentStatus.PENDING
    gateway_payment_id: Optional[str] = None
    status_detail: Optional[str] = None
    fulfilled: bool = False
    payment_method: Optional[PaymentMethodKind] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    payer_email: Optional[str] = None
    reconciliation_failed: bool = False
    reconciliation_error: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = _ensure_utc(self.created_at)
        self.last_updated_at = _ensure_utc(self.last_updated_at)

    @classmethod
    def for_request(cls, request: PaymentRequest) -> "LedgerEntry":
        now = datetime.now(timezone.utc)
        return cls(
            internal_ticket_id=request.internal_ticket_id,
            status=PaymentStatus.PENDING,
            payment_method=request.method.kind,
            amount=request.amount,
            description=request.description,
            payer_email=request.payer.email,
            created_at=now,
            last_updated_at=now,
        )

    def can_transition_to(self, target: PaymentStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(self.status, frozenset())

    def ensure_can_transition(self, target: PaymentStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidTransitionException(
                self.status.value,
                target.value,
                ticket_id=str(self.internal_ticket_id),
            )

    @property
    def delivery_pending(self) -> bool:
        """已置 fulfilled，但投递任务没有派发成功，需要重新派发"""
        return (
            self.fulfilled
            and self.reconciliation_failed
            and (self.reconciliation_error or "").startswith(FULFILLMENT_DISPATCH_FAILED)
        )

    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS.get(self.status)


@dataclass(frozen=True)
class StatusTransition:
    """Outcome of a ledger compare-and-set.

    ``fulfilled`` is True only for the single call that flipped the entry's
    fulfilled flag; that caller owns the fulfillment side effect.
    """

    previous_status: PaymentStatus
    transitioned: bool
    fulfilled: bool = False


class NotificationKind(str, Enum):
    PAYMENT = "payment"
    OTHER = "other"


@dataclass(frozen=True)
class NotificationEvent:
    kind: NotificationKind
    gateway_payment_id: str
    raw_type: Optional[str] = field(default=None, compare=False)

    @classmethod
    def parse(
        cls,
        payload: Any,
        query: Optional[Mapping[str, Any]] = None,
    ) -> "NotificationEvent":
        """Build an event from a webhook body and/or IPN-style query string.

        Body: ``{"type": "payment", "data": {"id": "123"}}``.
        Query: ``?type=payment&data.id=123`` or ``?topic=payment&id=123``.
        The body's own top-level ``id`` is the notification id, not the payment.
        """
        if payload is not None and not isinstance(payload, Mapping):
            raise ReconciliationException("Notification body must be a JSON object")
        body: Mapping[str, Any] = payload or {}
        query = query or {}

        raw_type = body.get("type") or body.get("topic") or query.get("type") or query.get("topic")
        if not isinstance(raw_type, str) or not raw_type.strip():
            raise ReconciliationException("Notification type is missing", details={"payload": dict(body)})

        data = body.get("data")
        if data is not None and not isinstance(data, Mapping):
            raise ReconciliationException("Notification data must be an object")

        payment_id = (data or {}).get("id")
        if payment_id is None:
            payment_id = query.get("data.id") or query.get("id")

        kind = NotificationKind.PAYMENT if raw_type.strip().lower() == "payment" else NotificationKind.OTHER
        normalized_id = "" if payment_id is None else str(payment_id).strip()
        if kind is NotificationKind.PAYMENT and not normalized_id:
            raise ReconciliationException("Notification data.id is missing", details={"type": raw_type})
        return cls(kind=kind, gateway_payment_id=normalized_id, raw_type=raw_type)

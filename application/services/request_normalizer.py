"""
Turns raw purchase input into a validated, method-specific PaymentRequest.

Pure: the only side effect is generating the internal ticket id.
"""
from __future__ import annotations

import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional
from uuid import UUID

from email_validator import EmailNotValidError, validate_email

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import (
    CreditCard,
    InstantTransfer,
    Payer,
    PaymentMethod,
    PaymentMethodKind,
    PaymentRequest,
)


def _parse_amount(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        raise DomainValidationException("transaction_amount is required", field="amount")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise DomainValidationException(f"transaction_amount is not a number: {value!r}", field="amount")
    if not amount.is_finite() or amount <= 0:
        raise DomainValidationException(f"transaction_amount must be greater than 0: {value!r}", field="amount")
    return amount


def _parse_installments(value: Any) -> int:
    """Absent, non-numeric or non-positive counts fall back to a single installment."""
    if value is None or isinstance(value, bool):
        return 1
    try:
        count = int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return 1
    return count if count > 0 else 1


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


class RequestNormalizer:
    def __init__(
        self,
        *,
        description: str,
        default_first_name: str,
        default_last_name: str,
    ) -> None:
        self.description = description
        self.default_first_name = default_first_name
        self.default_last_name = default_last_name

    def normalize(
        self,
        selected_method: Any,
        form_data: Mapping[str, Any] | None,
        ticket_id: Optional[UUID] = None,
    ) -> PaymentRequest:
        """Build a PaymentRequest or raise DomainValidationException naming the field.

        A new UUID4 ticket id is issued per call; ``ticket_id`` is only passed
        when a client retries the same logical purchase.
        """
        try:
            kind = PaymentMethodKind(str(selected_method).strip().lower())
        except ValueError:
            raise DomainValidationException(
                f"Unsupported payment method: {selected_method!r}",
                field="selectedPaymentMethod",
            )

        form = form_data if isinstance(form_data, Mapping) else {}
        raw_amount = form.get("transaction_amount", form.get("amount"))
        amount = _parse_amount(raw_amount)
        payer = self._payer(form.get("payer"))
        method = self._method(kind, form)

        return PaymentRequest(
            amount=amount,
            description=self.description,
            method=method,
            payer=payer,
            internal_ticket_id=ticket_id or uuid.uuid4(),
        )

    def _payer(self, raw: Any) -> Payer:
        data = raw if isinstance(raw, Mapping) else {}
        email = _text(data.get("email"))
        if not email:
            raise DomainValidationException("payer.email is required", field="payer.email")
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise DomainValidationException(f"payer.email is invalid: {exc}", field="payer.email")

        identification = None
        ident = data.get("identification")
        if isinstance(ident, Mapping) and _text(ident.get("number")):
            identification = {
                "type": _text(ident.get("type")) or "CPF",
                "number": _text(ident.get("number")),
            }

        return Payer(
            email=email,
            first_name=_text(data.get("first_name")) or self.default_first_name,
            last_name=_text(data.get("last_name")) or self.default_last_name,
            identification=identification,
        )

    def _method(self, kind: PaymentMethodKind, form: Mapping[str, Any]) -> PaymentMethod:
        if kind is PaymentMethodKind.CREDIT_CARD:
            token = _text(form.get("token"))
            if not token:
                raise DomainValidationException("Card token is required", field="token")
            return CreditCard(
                token=token,
                installments=_parse_installments(form.get("installments")),
                brand=_text(form.get("payment_method_id")),
                issuer_id=_text(form.get("issuer_id")),
            )
        # The client's payment_method_id is ignored: pix always uses the canonical ids.
        return InstantTransfer()

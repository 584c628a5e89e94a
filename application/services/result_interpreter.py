"""
Turns a raw gateway response into the gateway-agnostic PaymentResult.

The response shape is treated as untrusted: every field is optional and read
through explicit lookups, and unknown status strings degrade to in_process.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional
from uuid import UUID

from application.ports.code_encoder import CodeEncoder
from core.logging_config import get_logger
from domain.common.exceptions import MalformedGatewayResponseException
from domain.payment.entity import (
    InstantTransfer,
    PaymentMethod,
    PaymentResult,
    PaymentStatus,
)
from shared.codes.payment_codes import (
    INSTANT_TRANSFER_METHOD_ID,
    PROVIDER_STATUS_TO_INTERNAL,
    TRANSFER_CODE_PATH,
)


logger = get_logger(__name__)


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    node = data
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


class GatewayResultInterpreter:
    def __init__(self, encoder: Optional[CodeEncoder] = None, *, provider: str = "mercadopago") -> None:
        self.encoder = encoder
        self.provider = provider
        self._status_map = PROVIDER_STATUS_TO_INTERNAL.get(provider, {})

    def interpret_status(self, raw: Any) -> tuple[str, PaymentStatus, str]:
        """Return ``(gateway_payment_id, status, status_detail)`` or raise MalformedResponse."""
        if not isinstance(raw, Mapping):
            raise MalformedGatewayResponseException(
                f"Expected an object, got {type(raw).__name__}", provider=self.provider
            )
        payment_id = raw.get("id")
        provider_status = raw.get("status")
        if payment_id in (None, "") or not isinstance(provider_status, str) or not provider_status:
            raise MalformedGatewayResponseException(
                "Gateway response lacks payment id or status",
                provider=self.provider,
                details={"keys": sorted(str(k) for k in raw.keys())},
            )

        detail = raw.get("status_detail")
        mapped = self._status_map.get(provider_status.lower())
        if mapped is None:
            # Vocabularies grow; keep the original word so nothing is lost.
            logger.warning(
                "gateway_status_unrecognized",
                provider=self.provider,
                payment_id=str(payment_id),
                provider_status=provider_status,
            )
            return str(payment_id), PaymentStatus.IN_PROCESS, provider_status
        return str(payment_id), PaymentStatus(mapped), str(detail) if detail is not None else ""

    def interpret(
        self,
        raw: Any,
        internal_ticket_id: UUID,
        method: Optional[PaymentMethod] = None,
    ) -> PaymentResult:
        payment_id, status, detail = self.interpret_status(raw)

        if method is not None:
            instant = isinstance(method, InstantTransfer)
        else:
            instant = raw.get("payment_method_id") == INSTANT_TRANSFER_METHOD_ID

        transfer_code = None
        transfer_code_image = None
        if instant:
            code = _dig(raw, TRANSFER_CODE_PATH)
            if isinstance(code, str) and code.strip():
                transfer_code = code
                transfer_code_image = self._encode(transfer_code, payment_id)
            else:
                # Not an error: the code may show up on a later status poll.
                logger.info("transfer_code_not_available", provider=self.provider, payment_id=payment_id)

        return PaymentResult(
            gateway_payment_id=payment_id,
            status=status,
            status_detail=detail,
            internal_ticket_id=internal_ticket_id,
            transfer_code=transfer_code,
            transfer_code_image=transfer_code_image,
        )

    def _encode(self, code: str, payment_id: str) -> Optional[bytes]:
        if self.encoder is None:
            return None
        try:
            return self.encoder.encode(code)
        except Exception as exc:
            logger.error(
                "transfer_code_encode_failed",
                payment_id=payment_id,
                error=str(exc),
                exc_info=True,
            )
            return None

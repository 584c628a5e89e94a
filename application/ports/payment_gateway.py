"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable

from domain.payment.entity import PaymentRequest


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Both calls return the provider's raw response; interpretation happens in
    the application layer. Implementations raise PaymentTransientException for
    retryable failures and PaymentRejectedException for permanent ones.
    """

    provider: str

    async def submit(self, request: PaymentRequest) -> Mapping[str, Any]: ...

    async def fetch_status(self, gateway_payment_id: str, *, retry: bool = True) -> Mapping[str, Any]:
        """``retry=False`` makes exactly one request; callers with their own retry loop pass it."""
        ...

    async def aclose(self) -> None: ...

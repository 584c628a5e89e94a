"""
Base payment client implementing shared concerns: http, retry, logging, error mapping.

Concrete providers subclass and implement ``submit`` / ``fetch_status``.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from domain.common.exceptions import (
    GatewayPaymentNotFoundException,
    MalformedGatewayResponseException,
    PaymentRejectedException,
    PaymentTransientException,
)
from domain.payment.entity import PaymentRequest
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)

T = TypeVar("T")

# Statuses worth retrying; everything else in 4xx is the gateway's final word
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        base_url: str,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._timeouts_cfg["total"],
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
        )

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeouts,
                headers=self._default_headers(),
                transport=self._transport,
            )
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], max=2.0),
            retry=retry_if_exception_type(PaymentTransientException),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self._log("gateway_request_retry", attempt=attempt.retry_state.attempt_number)
                return await fn()
        raise AssertionError("unreachable")  # pragma: no cover

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        payment_id: Optional[str] = None,
    ) -> Mapping[str, Any]:
        """Send one request and return the decoded body, mapping failures to gateway exceptions."""
        async with self.client() as http:
            try:
                resp = await http.request(method, path, json=json, headers=headers)
            except httpx.TimeoutException as exc:
                raise PaymentTransientException(
                    f"Gateway timed out: {exc.__class__.__name__}",
                    provider=self.provider,
                    provider_code=str(PaymentCode.TIMEOUT.value),
                ) from exc
            except httpx.TransportError as exc:
                raise PaymentTransientException(
                    f"Gateway unreachable: {exc}",
                    provider=self.provider,
                ) from exc

        self._log("gateway_response", method=method, path=path, status_code=resp.status_code)

        if resp.status_code == 404 and payment_id is not None:
            raise GatewayPaymentNotFoundException(payment_id, provider=self.provider)
        if resp.status_code in RETRYABLE_STATUS_CODES or resp.status_code >= 500:
            code = PaymentCode.RATE_LIMITED if resp.status_code == 429 else None
            raise PaymentTransientException(
                f"Gateway returned HTTP {resp.status_code}",
                provider=self.provider,
                provider_code=str(code.value) if code else str(resp.status_code),
                details={"http_status": resp.status_code},
            )
        if resp.status_code >= 400:
            body = self._safe_json(resp)
            raise PaymentRejectedException(
                self._error_message(body) or f"Gateway returned HTTP {resp.status_code}",
                provider=self.provider,
                provider_code=str(resp.status_code),
                details={"http_status": resp.status_code, "body": body},
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedGatewayResponseException(
                "Gateway response is not valid JSON",
                provider=self.provider,
                details={"http_status": resp.status_code},
            ) from exc
        if not isinstance(data, Mapping):
            raise MalformedGatewayResponseException(
                f"Gateway response is a {type(data).__name__}, expected an object",
                provider=self.provider,
            )
        return data

    @staticmethod
    def _safe_json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError:
            return resp.text[:500]

    @staticmethod
    def _error_message(body: Any) -> Optional[str]:
        if isinstance(body, Mapping):
            message = body.get("message") or body.get("error")
            return str(message) if message else None
        return None

    # Default implementations raise to force override where needed
    async def submit(self, request: PaymentRequest) -> Mapping[str, Any]:
        raise NotImplementedError

    async def fetch_status(self, gateway_payment_id: str, *, retry: bool = True) -> Mapping[str, Any]:
        raise NotImplementedError

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )

"""Pytest bootstrap configuration.

Environment is set before any application module is imported so settings,
the default engine and the Celery app pick up test values.
"""
import functools
import os
import uuid
from typing import Any, Optional

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MERCADOPAGO__ACCESS_TOKEN", "TEST-access-token")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.services.request_normalizer import RequestNormalizer
from application.services.result_interpreter import GatewayResultInterpreter
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


PNG_STUB = b"\x89PNG\r\n\x1a\nstub"


def mp_payment(
    payment_id: Any = "1001",
    status: str = "approved",
    detail: str = "accredited",
    *,
    method: str = "visa",
    qr: Optional[str] = None,
    ticket_id: Optional[uuid.UUID] = None,
) -> dict:
    """Shape of a Mercado Pago ``/v1/payments`` body, reduced to what we read."""
    body: dict = {
        "id": payment_id,
        "status": status,
        "status_detail": detail,
        "payment_method_id": method,
    }
    if qr is not None:
        body["point_of_interaction"] = {"transaction_data": {"qr_code": qr, "qr_code_base64": "aGk="}}
    if ticket_id is not None:
        body["external_reference"] = str(ticket_id)
    return body


class StubGateway:
    """In-memory gateway: queue responses or exceptions per call."""

    provider = "mercadopago"

    def __init__(self) -> None:
        self.submit_results: list = []
        self.statuses: dict[str, list] = {}
        self.submitted: list = []
        self.fetched: list = []
        self.fetch_retry_flags: list = []
        self.closed = False

    def on_submit(self, *results) -> "StubGateway":
        self.submit_results.extend(results)
        return self

    def on_fetch(self, payment_id: str, *results) -> "StubGateway":
        self.statuses.setdefault(str(payment_id), []).extend(results)
        return self

    @staticmethod
    def _next(queue: list):
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def submit(self, request):
        self.submitted.append(request)
        return self._next(self.submit_results)

    async def fetch_status(self, gateway_payment_id: str, *, retry: bool = True):
        self.fetched.append(gateway_payment_id)
        self.fetch_retry_flags.append(retry)
        return self._next(self.statuses[str(gateway_payment_id)])

    async def aclose(self) -> None:
        self.closed = True


class StubEncoder:
    def __init__(self) -> None:
        self.encoded: list[str] = []

    def encode(self, text: str) -> bytes:
        self.encoded.append(text)
        return PNG_STUB


class FailingEncoder:
    def encode(self, text: str) -> bytes:
        raise ValueError("data too long for a QR code")


class RecordingFulfillment:
    def __init__(self) -> None:
        self.deliveries: list[tuple[uuid.UUID, Optional[str]]] = []

    async def deliver(self, ticket_id, payer_email) -> None:
        self.deliveries.append((ticket_id, payer_email))


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(bind=engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return functools.partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def encoder():
    return StubEncoder()


@pytest.fixture
def fulfillment():
    return RecordingFulfillment()


@pytest.fixture
def normalizer():
    return RequestNormalizer(
        description="Ingresso Festa Junina do Bambuzal",
        default_first_name="Comprador",
        default_last_name="Festa Junina",
    )


@pytest.fixture
def interpreter(encoder):
    return GatewayResultInterpreter(encoder)

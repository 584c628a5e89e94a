"""
API依赖项 - 组装支付用例所需的协作者

网关客户端按请求创建并在请求结束时关闭；测试通过 dependency_overrides 替换。
"""
from typing import AsyncGenerator

from fastapi import Depends

from application.ports.code_encoder import CodeEncoder
from application.ports.fulfillment import TicketFulfillment
from application.ports.payment_gateway import PaymentGateway
from application.services.payment_service import PaymentService
from application.services.reconciliation_service import ReconciliationEngine
from application.services.request_normalizer import RequestNormalizer
from application.services.result_interpreter import GatewayResultInterpreter
from core.settings import payment_settings
from infrastructure.external.codes import SegnoCodeEncoder
from infrastructure.external.payments import get_payment_gateway
from infrastructure.tasks.fulfillment import CeleryTicketFulfillment
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


async def get_gateway() -> AsyncGenerator[PaymentGateway, None]:
    gateway = get_payment_gateway()
    try:
        yield gateway
    finally:
        await gateway.aclose()


def get_code_encoder() -> CodeEncoder:
    return SegnoCodeEncoder()


def get_fulfillment() -> TicketFulfillment:
    return CeleryTicketFulfillment()


def get_uow_factory():
    return SQLAlchemyUnitOfWork


def get_request_normalizer() -> RequestNormalizer:
    ticket = payment_settings.ticket
    return RequestNormalizer(
        description=ticket.description,
        default_first_name=ticket.payer_first_name,
        default_last_name=ticket.payer_last_name,
    )


async def get_payment_service(
    gateway: PaymentGateway = Depends(get_gateway),
    encoder: CodeEncoder = Depends(get_code_encoder),
    fulfillment: TicketFulfillment = Depends(get_fulfillment),
    uow_factory=Depends(get_uow_factory),
    normalizer: RequestNormalizer = Depends(get_request_normalizer),
) -> PaymentService:
    return PaymentService(
        uow_factory=uow_factory,
        gateway=gateway,
        normalizer=normalizer,
        interpreter=GatewayResultInterpreter(encoder, provider=gateway.provider),
        fulfillment=fulfillment,
    )


async def get_reconciliation_engine(
    gateway: PaymentGateway = Depends(get_gateway),
    fulfillment: TicketFulfillment = Depends(get_fulfillment),
    uow_factory=Depends(get_uow_factory),
) -> ReconciliationEngine:
    cfg = payment_settings.reconciliation
    return ReconciliationEngine(
        uow_factory,
        gateway,
        fulfillment,
        GatewayResultInterpreter(provider=gateway.provider),
        max_attempts=cfg.max_attempts,
        backoff_base=cfg.base_backoff,
        backoff_max=cfg.max_backoff,
        fetch_deadline=cfg.fetch_deadline_seconds,
    )

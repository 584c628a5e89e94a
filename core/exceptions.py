"""
自定义异常映射与全局异常处理器
"""
import traceback
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette import status as http_status

from core.logging_config import get_logger
from core.response import error_response
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


# 业务码 -> (HTTP状态码, 概要消息)
_CODE_MAPPING: dict[int, tuple[int, str]] = {
    BusinessCode.PARAM_ERROR: (http_status.HTTP_400_BAD_REQUEST, "Invalid request"),
    BusinessCode.PARAM_VALIDATION_ERROR: (http_status.HTTP_422_UNPROCESSABLE_ENTITY, "Invalid payment data"),
    BusinessCode.BUSINESS_ERROR: (http_status.HTTP_400_BAD_REQUEST, "Request could not be processed"),
    BusinessCode.NOT_FOUND: (http_status.HTTP_404_NOT_FOUND, "Payment not found"),
    BusinessCode.SYSTEM_ERROR: (http_status.HTTP_500_INTERNAL_SERVER_ERROR, "Error processing payment"),
    BusinessCode.DATABASE_ERROR: (http_status.HTTP_500_INTERNAL_SERVER_ERROR, "Error processing payment"),
    BusinessCode.SERVICE_UNAVAILABLE: (http_status.HTTP_503_SERVICE_UNAVAILABLE, "Service unavailable"),
    BusinessCode.LEDGER_INTEGRITY_ERROR: (http_status.HTTP_500_INTERNAL_SERVER_ERROR, "Error processing payment"),
    PaymentCode.PROVIDER_REJECTED: (http_status.HTTP_402_PAYMENT_REQUIRED, "Payment rejected"),
    PaymentCode.PROVIDER_RECOVERABLE: (http_status.HTTP_503_SERVICE_UNAVAILABLE, "Payment gateway unavailable, please retry"),
    PaymentCode.MALFORMED_RESPONSE: (http_status.HTTP_500_INTERNAL_SERVER_ERROR, "Error processing payment"),
    PaymentCode.TIMEOUT: (http_status.HTTP_503_SERVICE_UNAVAILABLE, "Payment gateway unavailable, please retry"),
    PaymentCode.RATE_LIMITED: (http_status.HTTP_503_SERVICE_UNAVAILABLE, "Payment gateway unavailable, please retry"),
    PaymentCode.RECONCILIATION_ERROR: (http_status.HTTP_400_BAD_REQUEST, "Invalid notification"),
}


def business_code_to_http(code: int) -> tuple[int, str]:
    """根据业务码映射HTTP状态码与概要消息（默认400）。"""
    return _CODE_MAPPING.get(code, (http_status.HTTP_400_BAD_REQUEST, "Request could not be processed"))


def _request_id(request: Request) -> str:
    return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """处理业务异常"""
        request_id = _request_id(request)
        status_code, summary = business_code_to_http(exc.code)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "business_exception",
            request_id=request_id,
            code=int(exc.code),
            error_type=exc.error_type,
            error=exc.message,
            details=exc.details,
        )
        response = error_response(
            message=summary,
            error=exc.message,
            code=exc.code,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
        )
        return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理参数验证异常"""
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", [])[1:])
        response = error_response(
            message="Invalid payment data",
            error=str(first_error.get("msg", "unknown")),
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            error_type="ValidationError",
            details={"errors": [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in errors]},
            field=field or None,
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=response.model_dump(mode="json"),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理HTTP异常"""
        code_mapping = {
            404: BusinessCode.NOT_FOUND,
            500: BusinessCode.SYSTEM_ERROR,
            503: BusinessCode.SERVICE_UNAVAILABLE,
        }
        response = error_response(
            message=str(exc.detail),
            error=str(exc.detail),
            code=code_mapping.get(exc.status_code, BusinessCode.PARAM_ERROR),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=response.model_dump(mode="json"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        request_id = _request_id(request)
        logger.error("database_error", request_id=request_id, error_type=type(exc).__name__, exc_info=True)
        status_code, summary = business_code_to_http(BusinessCode.DATABASE_ERROR)
        response = error_response(
            message=summary,
            error="Ledger storage unavailable",
            code=BusinessCode.DATABASE_ERROR,
            error_type="DatabaseError",
            request_id=request_id,
        )
        return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常"""
        request_id = _request_id(request)

        # 在开发环境可以返回详细错误信息
        details = None
        if app.debug:
            details = {"traceback": traceback.format_exc()}

        logger.error(
            "unhandled_exception",
            request_id=request_id,
            error=str(exc),
            exc_info=True,
        )

        response = error_response(
            message="Error processing payment",
            error=str(exc),
            code=BusinessCode.SYSTEM_ERROR,
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )
        return JSONResponse(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json"),
        )

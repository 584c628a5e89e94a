"""
统一响应格式定义

Every body carries a top-level ``status`` of ``"success"`` or ``"error"``; the
payment status reported by the gateway travels separately as ``payment_status``.
"""
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from shared.codes import BusinessCode


class ApiResponse(BaseModel):
    """成功响应：业务字段平铺在顶层"""
    status: Literal["success"] = "success"
    message: str = "Success"

    model_config = ConfigDict(extra="allow")


class ErrorResponse(BaseModel):
    """错误响应"""
    status: Literal["error"] = "error"
    message: str
    error: str
    code: int = BusinessCode.SYSTEM_ERROR
    error_type: str = "SystemError"
    field: Optional[str] = None
    details: Optional[dict] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """序列化时间戳为 UTC ISO8601，统一使用 Z 结尾"""
        ts = timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        else:
            ts = ts.astimezone(timezone.utc)
        return ts.isoformat().replace("+00:00", "Z")


def success_response(message: str = "Success", **data: Any) -> ApiResponse:
    """
    创建成功响应

    Args:
        message: 成功消息
        **data: 平铺到响应顶层的业务字段

    Returns:
        ApiResponse: 统一响应对象
    """
    return ApiResponse(message=message, **data)


def error_response(
    message: str,
    error: str,
    code: int = BusinessCode.SYSTEM_ERROR,
    error_type: str = "SystemError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ErrorResponse:
    """
    创建错误响应

    Args:
        message: 面向调用方的概要消息
        error: 具体错误描述
        code: 业务状态码
        error_type: 错误类型
        details: 错误详情
        field: 错误字段
        request_id: 请求ID

    Returns:
        ErrorResponse: 统一错误对象
    """
    return ErrorResponse(
        message=message,
        error=error,
        code=code,
        error_type=error_type,
        details=details,
        field=field,
        request_id=request_id,
    )

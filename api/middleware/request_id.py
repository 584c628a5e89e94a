"""
Request ID 中间件
生成或透传追踪ID，并通过contextvars传递给日志系统。
网关回调同样会带上 X-Request-Id，透传后可以把一次通知与网关侧日志对上。
"""
import re
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)

# 外部传入的ID会原样写进日志，只接受短的安全字符
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get(self.HEADER_NAME)
        request_id = incoming if incoming and _SAFE_REQUEST_ID.match(incoming) else str(uuid.uuid4())
        client_ip = client_ip_of(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip
        request_id_var.set(request_id)
        client_ip_var.set(client_ip)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )
        # 回调通知的主题放在 query 里（type / topic），一并绑定便于检索
        topic = request.query_params.get("type") or request.query_params.get("topic")
        if topic:
            structlog.contextvars.bind_contextvars(notification_topic=topic)

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response


def client_ip_of(request: Request) -> str:
    """X-Forwarded-For 的第一跳，其次 X-Real-IP，最后是连接地址"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def get_request_id() -> Optional[str]:
    """当前请求的request_id，不在请求上下文中时为None"""
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    return client_ip_var.get()

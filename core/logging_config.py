"""
Structlog 日志配置模块
"""
import json
import logging
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings


# 第三方库默认日志过于冗长（每次网关调用都会打印），统一降级
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "celery.app.trace")

# 事件中出现这些键时只保留掩码，防止卡 token 或网关凭证落盘
REDACTED_KEYS = frozenset({"token", "card_token", "access_token", "security_code", "authorization"})


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def get_renderer() -> Any:
    """根据环境选择渲染器 (Console in DEBUG, JSON otherwise)."""
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)

    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)

    return JSONRenderer(serializer=_dumps)


def configure_logging() -> None:
    """配置 structlog 并桥接标准库 logging 到同一处理链。"""
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_secrets,
    ]

    structlog.configure(
        processors=[
            *shared_pre_chain,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            get_renderer(),
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取 structlog logger 实例。"""
    return structlog.get_logger(name)

"""
业务码：API 响应体中的 ``code`` 字段。

通用码在这里，支付网关与对账相关的码在 ``shared.codes.payment_codes``。
HTTP 状态码的映射见 ``core.exceptions``。
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    SUCCESS = 0

    # 请求参数 (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # 业务 (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006  # ticket or gateway payment unknown

    # 系统 (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    SERVICE_UNAVAILABLE = 40003
    LEDGER_INTEGRITY_ERROR = 40004  # duplicate ticket, gateway id clash, CAS exhausted


__all__ = ["BusinessCode"]

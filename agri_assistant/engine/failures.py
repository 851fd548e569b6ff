"""模型后端失败分类器。

把任意传输错误归入一个封闭的枚举，降级链据此决定下一步：

1. HTTP 429 / 错误文本包含配额关键字 -> QUOTA_EXCEEDED
2. HTTP 404                          -> MODEL_UNAVAILABLE
3. 网络层失败（超时、连接重置）         -> TRANSIENT
4. 其他                              -> UNKNOWN

规则按顺序匹配，先命中者生效。classify_failure 运行在错误处理路径上，
因此必须是全函数：任何情况下都不抛异常。
"""

import logging
import re
from enum import Enum
from typing import Optional

import httpx

from agri_assistant.domain.exceptions import BusinessError, NetworkError, RateLimitError
from agri_assistant.infrastructure.logging.logger import logger


QUOTA_MARKERS = ("quota", "resource_exhausted")
# 独立出现的 429，排除模型名、端口、版本号中的数字串
QUOTA_STATUS_PATTERN = re.compile(r"(?<![\w.:/-])429(?![\w./-])")


class FailureKind(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    MODEL_UNAVAILABLE = "model_unavailable"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


def classify_failure(error: BaseException) -> FailureKind:
    try:
        status = _status_of(error)
        text = str(error).lower()
        if isinstance(error, BusinessError):
            text = f"{error.code} {error.message}".lower()
        if status == 429 or isinstance(error, RateLimitError) or _mentions_quota(text):
            return FailureKind.QUOTA_EXCEEDED
        if status == 404:
            return FailureKind.MODEL_UNAVAILABLE
        if isinstance(error, (NetworkError, httpx.TransportError, TimeoutError, ConnectionError)):
            return FailureKind.TRANSIENT
        return FailureKind.UNKNOWN
    except Exception as exc:
        logger.log(
            logging.WARNING,
            "Failure classification crashed",
            extra={"extra": {"error_type": type(error).__name__, "classifier_error": repr(exc)}},
        )
        return FailureKind.UNKNOWN


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, BusinessError):
        return error.http_status
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    return status if isinstance(status, int) else None


def _mentions_quota(text: str) -> bool:
    return any(m in text for m in QUOTA_MARKERS) or QUOTA_STATUS_PATTERN.search(text) is not None

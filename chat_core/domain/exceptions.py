"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或传输层做统一捕获与用户提示。
"""

from dataclasses import dataclass
from typing import List, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、model 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误，或响应无法解析时抛出。"""


class RateLimitError(BusinessError):
    """Provider 配额耗尽或限流。

    编排器把它视为“切换到下一层模型”的信号，而不是致命错误。
    """


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ToolError(BusinessError):
    """工具调用本身有问题：未注册的工具名，或参数缺失/类型错误。

    这类错误说明模型或注册表有缺陷，会直接抛给调用方。
    """


class HistoryError(BusinessError):
    """历史记录读写失败。"""


class RequestCancelledError(BusinessError):
    """调用方取消了本次请求。"""


@dataclass
class TierAttempt:
    """某一层模型的一次失败尝试。"""

    tier: str
    model: str
    kind: str  # "quota" 或 "error"
    error: BusinessError


class ProviderChainError(BusinessError):
    """所有可用层都失败时抛出，携带每一层的失败原因。"""

    def __init__(self, attempts: List[TierAttempt], message: Optional[str] = None):
        self.attempts = list(attempts)
        summary = "; ".join(
            f"{a.tier}({a.model}) {a.kind}: {a.error.code} {a.error.message}" for a in self.attempts
        )
        super().__init__(
            code="PROVIDER_CHAIN_FAILED",
            message=message or f"all provider tiers failed: {summary or 'no tier configured'}",
            http_status=503,
        )

"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

注意：工具层面的失败（设备不存在、不可租赁等）不是异常，
而是作为工具结果返回给模型，见 agri_assistant.tools.definitions.ToolError。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "RATE_LIMIT"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class TransportError(BusinessError):
    """与模型后端通信失败的基类，是失败分类器的输入。"""


class NetworkError(TransportError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(TransportError):
    """后端返回非 2xx/429 错误，或返回了无法使用的响应时抛出。"""


class RateLimitError(TransportError):
    """Provider 限流或配额耗尽（HTTP 429）。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class RoundLimitExceededError(BusinessError):
    """模型在单个回合内持续请求工具调用，超过最大轮数。"""


class TurnCancelledError(BusinessError):
    """调用方放弃了正在处理的回合。"""


class TurnInFlightError(BusinessError):
    """上一个回合尚未结束时又提交了新回合。"""


class AssistantUnavailableError(BusinessError):
    """所有降级层级都不可用（离线回复被禁用）。"""

"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在消息分发层做统一捕获，并以 "Error: <message>" 的形式回复给用户。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "AUTH_EXPIRED"）。
        message: 用户可读错误信息。
        http_status: 对应的 HTTP 状态码，默认 400。
        extra: 其他补充字段（例如 chat_id、method 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigError(BusinessError):
    """启动配置缺失或非法，属于启动期致命错误。"""


class ValidationError(BusinessError):
    """参数或用户输入校验失败。"""


class SessionError(BusinessError):
    """无法获取或保存 ChatGPT 会话 token。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时、流式响应中途断开等。"""


class BackendError(BusinessError):
    """ChatGPT 后端返回非 2xx 响应或错误事件时抛出。"""


class AuthExpiredError(BackendError):
    """会话 token 被后端拒绝，需要重新 /setToken 或重新获取会话。"""


class RateLimitError(BackendError):
    """后端限流错误，是否重试由调用方决定。"""


class PlatformApiError(BusinessError):
    """Telegram Bot API 调用失败。

    Attributes:
        retryable: 是否属于可重试的瞬时错误（网络错误、429、5xx）。
        retry_after: Telegram 429 响应中建议的等待秒数。
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        retryable: bool = False,
        retry_after: Optional[float] = None,
        **extra,
    ):
        super().__init__(code=code, message=message, http_status=http_status, **extra)
        self.retryable = retryable
        self.retry_after = retry_after

"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在服务层统一捕获，并在 generate / stream 两种调用形态之间转换。
"""

from typing import Any, Dict, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "RUN_FAILED"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 thread_id、run_id 等）。
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
    """Agent Service 返回非 2xx/429 错误时抛出（含 401/403 认证失败）。"""


class RateLimitError(BusinessError):
    """Agent Service 限流错误，重试/退避策略由调用方决定。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class AbortError(BusinessError):
    """调用方通过取消信号中止了本次调用。

    与传输层错误区分开，调用方可以据此避免把它当作异常错误记录。
    """

    def __init__(self, message: str = "Request aborted", **extra):
        super().__init__(code="REQUEST_ABORTED", message=message, http_status=499, **extra)


class RunFailedError(BusinessError):
    """Run 以非 completed 的终态结束（failed / incomplete / expired / cancelled 等）。"""

    def __init__(self, status: str, last_error: Optional[Dict[str, Any]] = None, **extra):
        self.status = status
        self.last_error = last_error
        detail = ""
        if last_error:
            code = last_error.get("code") or "unknown"
            detail = f": [{code}] {last_error.get('message') or ''}".rstrip()
        super().__init__(
            code="RUN_FAILED",
            message=f"Agent run ended with status {status!r}{detail}",
            http_status=502,
            **extra,
        )

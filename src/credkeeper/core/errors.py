"""认证领域错误分类。

所有可预期的业务结果都以 ``AuthError`` 子类表达，调用方按类型穷举处理；
边界层（HTTP）再把 ``code`` 映射为状态码与统一错误结构。
"""

from typing import Any


class AuthError(Exception):
    """认证领域错误基类。"""

    code = "AUTH_ERROR"
    default_message = "认证请求处理失败。"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details: dict[str, Any] = details
        super().__init__(self.message)


class ValidationError(AuthError):
    """输入格式不合法，未修改任何状态。"""

    code = "VALIDATION_ERROR"
    default_message = "请求参数不合法。"


class ConflictError(AuthError):
    """用户名或邮箱已被占用。"""

    code = "CONFLICT"
    default_message = "用户名或邮箱已被占用。"


class InvalidCredentials(AuthError):
    """邮箱或口令错误（与账号不存在不可区分）。"""

    code = "INVALID_CREDENTIALS"
    default_message = "邮箱或密码错误。"


class AccountLocked(AuthError):
    """账号因连续登录失败被临时锁定。"""

    code = "ACCOUNT_LOCKED"
    default_message = "账号已被临时锁定。"

    def __init__(self, remaining_seconds: int) -> None:
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"账号已被临时锁定，请在 {remaining_seconds} 秒后重试。",
            remaining_seconds=remaining_seconds,
        )


class TokenInvalid(AuthError):
    """刷新令牌未知、已过期或已被轮换。"""

    code = "TOKEN_INVALID"
    default_message = "刷新令牌无效或已过期。"


class NotFoundError(AuthError):
    """会话或账号不存在。"""

    code = "NOT_FOUND"
    default_message = "请求资源不存在。"


class PermissionDeniedError(AuthError):
    """当前主体无权执行该操作。"""

    code = "FORBIDDEN"
    default_message = "无权限访问该资源。"


class ServiceUnavailableError(AuthError):
    """存储层故障，对外只暴露模糊信息。"""

    code = "SERVICE_UNAVAILABLE"
    default_message = "服务暂时不可用，请稍后重试。"

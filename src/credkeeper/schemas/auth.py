"""认证接口请求与响应结构。

请求结构只做宽松的类型约束，业务规则（用户名格式、密码长度等）由服务层统一校验，
保证接口与直接调用服务得到相同的错误。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from credkeeper.schemas.common import BaseSchema


class RegisterRequest(BaseModel):
    """注册请求。"""

    username: str = Field(max_length=256, description="登录名。", examples=["alice"])
    email: str = Field(max_length=256, description="登录邮箱。", examples=["alice@example.com"])
    password: str = Field(max_length=256, description="登录密码。", examples=["correcthorsebattery1"])


class LoginRequest(BaseModel):
    """登录请求。"""

    email: str = Field(max_length=256, description="登录邮箱。", examples=["alice@example.com"])
    password: str = Field(max_length=256, description="登录密码。")


class RefreshRequest(BaseModel):
    """刷新令牌请求。"""

    refresh_token: str = Field(min_length=1, max_length=512, description="登录或上次刷新返回的刷新令牌。")


class LogoutRequest(BaseModel):
    """登出请求。"""

    refresh_token: str = Field(min_length=1, max_length=512, description="需要撤销的刷新令牌。")


class ChangePasswordRequest(BaseModel):
    """修改密码请求。"""

    current_password: str = Field(max_length=256, description="当前密码。")
    new_password: str = Field(max_length=256, description="新密码。")


class ChangeEmailRequest(BaseModel):
    """修改邮箱请求。"""

    current_password: str = Field(max_length=256, description="当前密码。")
    new_email: str = Field(max_length=256, description="新邮箱。")


class AccountData(BaseSchema):
    """账号信息。"""

    id: int = Field(description="账号 ID。")
    username: str = Field(description="登录名。")
    email: str = Field(description="登录邮箱。")
    is_admin: bool = Field(description="是否管理员。")
    display_name: str | None = Field(default=None, description="展示名。")
    created_at: datetime | None = Field(default=None, description="创建时间。")


class TokenData(BaseSchema):
    """注册/登录/刷新结果。"""

    account: AccountData = Field(description="账号信息。")
    access_token: str = Field(description="访问令牌。")
    token_type: str = Field(default="bearer", description="令牌类型。")
    expires_at: datetime = Field(description="访问令牌过期时间（UTC）。")
    expires_in: int = Field(description="距过期剩余秒数。")
    refresh_token: str | None = Field(default=None, description="刷新令牌，仅返回一次。")


class SessionData(BaseSchema):
    """登录会话摘要。"""

    id: int = Field(description="会话 ID。")
    user_agent: str | None = Field(default=None, description="客户端描述。")
    created_at: datetime = Field(description="创建时间。")
    expires_at: datetime = Field(description="过期时间。")


class LogoutAllData(BaseSchema):
    """全端登出结果。"""

    revoked: int = Field(description="本次撤销的会话数量。")

"""请求上下文依赖。

职责:
1. 为每个请求构造绑定数据库会话与配置的 AuthService。
2. 解析并校验访问令牌（无状态，不查库）。
3. 管理员接口的角色限制。
"""

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from credkeeper.core.config import Settings, get_settings
from credkeeper.core.errors import PermissionDeniedError
from credkeeper.core.security import AuthenticatedPrincipal, parse_authorization_header
from credkeeper.db.session import get_db
from credkeeper.services.auth import AuthService

bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AuthService:
    """为当前请求构造认证服务。"""
    return AuthService(db, settings)


def get_client_descriptor(user_agent: str | None = Header(default=None, alias="User-Agent")) -> str | None:
    """以 User-Agent 作为客户端描述。"""
    return user_agent


def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedPrincipal:
    """提取并解析当前请求认证主体。"""
    authorization = None
    if credentials is not None and credentials.credentials:
        authorization = f"{credentials.scheme} {credentials.credentials}"
    return parse_authorization_header(authorization, settings)


def require_admin(
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
) -> AuthenticatedPrincipal:
    """仅允许管理员令牌访问。"""
    if not principal.is_admin:
        raise PermissionDeniedError()
    return principal

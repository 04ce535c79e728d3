"""访问令牌解析与校验工具。

访问令牌是无状态的：校验只依赖签名、过期时间与签发方/受众，不查询数据库，
也不维护吊销列表。
"""

import re
from dataclasses import dataclass
from typing import Any

import jwt
from jwt import InvalidTokenError

from credkeeper.core.config import Settings
from credkeeper.core.errors import AuthError


class UnauthorizedError(AuthError):
    """缺少访问令牌或访问令牌无效。"""

    code = "UNAUTHORIZED"
    default_message = "未登录或登录状态已失效。"


@dataclass
class AuthenticatedPrincipal:
    """访问令牌中解析出的认证主体。"""

    # 账号 ID（sub）。
    user_id: int
    # 签发时的邮箱快照。
    email: str | None
    # 签发时的用户名快照。
    username: str | None
    # 签发时的管理员标记。
    is_admin: bool
    # 本次签发的唯一标识。
    jti: str | None
    # 原始声明集，便于下游扩展。
    claims: dict[str, Any]


def decode_access_token(token: str, settings: Settings) -> dict[str, Any]:
    """按配置解码并校验令牌（签名、过期、签发方、受众、时钟容错）。"""
    try:
        return jwt.decode(
            token,
            key=settings.auth_jwt_secret,
            algorithms=settings.auth_algorithms,
            issuer=settings.auth_jwt_issuer,
            audience=settings.auth_jwt_audience,
            leeway=settings.auth_jwt_leeway_seconds,
            options={"require": ["exp", "iat", "sub", "iss", "aud"]},
        )
    except InvalidTokenError as exc:
        raise UnauthorizedError() from exc


def _extract_bearer_token(authorization: str | None) -> str:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        raise UnauthorizedError()
    tokens = [token.strip() for token in re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)]
    tokens = [token for token in tokens if token]
    if not tokens:
        raise UnauthorizedError()
    return tokens[-1]


def principal_from_claims(claims: dict[str, Any]) -> AuthenticatedPrincipal:
    """将令牌声明映射为认证主体。"""
    try:
        user_id = int(str(claims.get("sub") or "").strip())
    except ValueError as exc:
        raise UnauthorizedError() from exc

    email = claims.get("email")
    username = claims.get("username")
    jti = claims.get("jti")
    return AuthenticatedPrincipal(
        user_id=user_id,
        email=email if isinstance(email, str) else None,
        username=username if isinstance(username, str) else None,
        is_admin=claims.get("is_admin") is True,
        jti=jti if isinstance(jti, str) else None,
        claims=claims,
    )


def parse_authorization_header(authorization: str | None, settings: Settings) -> AuthenticatedPrincipal:
    """解析认证头并返回认证主体。"""
    token = _extract_bearer_token(authorization)
    return principal_from_claims(decode_access_token(token, settings))

"""访问令牌签发。"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt

from credkeeper.core.config import Settings
from credkeeper.models.user import UserAccount


@dataclass(frozen=True)
class AccessToken:
    """已签发的访问令牌。"""

    token: str
    jti: str
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        """签发时刻到过期时刻的秒数，与令牌内 exp - iat 一致。"""
        return int((self.expires_at - self.issued_at).total_seconds())


class TokenIssuer:
    """签发无状态访问令牌。

    令牌只依赖共享密钥即可由任意校验方独立验证，签发方不保存任何状态；
    ``jti`` 为每次签发的唯一标识，目前不维护吊销列表。
    """

    def __init__(self, settings: Settings) -> None:
        self.secret = settings.auth_jwt_secret
        self.algorithm = settings.auth_algorithms[0]
        self.issuer = settings.auth_jwt_issuer
        self.audience = settings.auth_jwt_audience
        self.ttl = timedelta(seconds=settings.auth_access_token_ttl_seconds)

    def issue(self, account: UserAccount, *, now: datetime | None = None) -> AccessToken:
        """基于账号快照签发访问令牌。"""
        now = now or datetime.now(timezone.utc)
        expires_at = now + self.ttl
        jti = str(uuid4())

        claims: dict[str, object] = {
            "sub": str(account.id),
            "email": account.email,
            "username": account.username,
            "is_admin": bool(account.is_admin),
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": jti,
        }
        token = jwt.encode(claims, self.secret, algorithm=self.algorithm)
        return AccessToken(token=token, jti=jti, issued_at=now, expires_at=expires_at)

"""刷新令牌会话管理。

刷新令牌是不透明的高熵随机串，只保存其 SHA-256 摘要。
轮换时以一条条件更新“占用”旧令牌，同一令牌只能兑换一次。
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from credkeeper.core.config import Settings
from credkeeper.core.errors import NotFoundError, TokenInvalid
from credkeeper.models.base import as_utc, utcnow
from credkeeper.models.user import UserAccount
from credkeeper.services.credential_store import CredentialStore
from credkeeper.services.token_issuer import AccessToken, TokenIssuer

logger = logging.getLogger("credkeeper.sessions")


def hash_refresh_token(raw_token: str) -> str:
    """计算刷新令牌摘要（小写十六进制）。"""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SessionSummary:
    """对外展示的会话信息，不包含口令或摘要。"""

    id: int
    user_agent: str | None
    created_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RotationResult:
    """一次成功轮换的结果。"""

    account: UserAccount
    access_token: AccessToken
    refresh_token: str


class RefreshSessionManager:
    """创建、轮换、列出与撤销刷新令牌会话。"""

    def __init__(
        self,
        store: CredentialStore,
        issuer: TokenIssuer,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.ttl = timedelta(days=settings.auth_refresh_token_ttl_days)
        self.token_bytes = settings.auth_refresh_token_bytes
        self.clock = clock

    def create_session(self, user_id: int, client_descriptor: str | None) -> str:
        """创建会话并返回原始令牌；原始令牌此后无法再次获取。"""
        raw_token = secrets.token_urlsafe(self.token_bytes)
        now = self.clock()
        row = self.store.add_refresh_token(
            user_id=user_id,
            token_hash=hash_refresh_token(raw_token),
            created_at=now,
            expires_at=now + self.ttl,
            user_agent=_truncate_descriptor(client_descriptor),
        )
        logger.info("session created session_id=%s user_id=%s", row.id, user_id)
        return raw_token

    def rotate(self, raw_token: str, client_descriptor: str | None) -> RotationResult:
        """用有效刷新令牌换取新的访问令牌与刷新令牌，并撤销旧令牌。"""
        now = self.clock()
        row = self.store.find_valid_refresh_token(hash_refresh_token(raw_token), now)
        if row is None:
            logger.warning("refresh rejected reason=unknown_or_inactive")
            raise TokenInvalid()

        session_id, user_id = row.id, row.user_id
        # 条件更新未命中说明已被并发请求抢先兑换。
        if not self.store.claim_refresh_token(session_id, now):
            logger.warning("refresh rejected reason=already_claimed session_id=%s", session_id)
            raise TokenInvalid()

        account = self.store.get_user(user_id)
        if account is None:
            raise TokenInvalid()

        new_raw_token = self.create_session(user_id, client_descriptor)
        access_token = self.issuer.issue(account, now=now)
        logger.info("session rotated session_id=%s user_id=%s", session_id, user_id)
        return RotationResult(account=account, access_token=access_token, refresh_token=new_raw_token)

    def revoke(self, raw_token: str) -> None:
        """撤销单个刷新令牌；重复撤销或未知令牌不报错。"""
        revoked = self.store.revoke_by_hash(hash_refresh_token(raw_token), self.clock())
        logger.info("session revoked count=%s", revoked)

    def revoke_all(self, user_id: int) -> int:
        """撤销用户全部有效会话（全端登出）。"""
        revoked = self.store.revoke_all_for_user(user_id, self.clock())
        logger.info("all sessions revoked user_id=%s count=%s", user_id, revoked)
        return revoked

    def revoke_by_id(self, session_id: int, requesting_user_id: int) -> None:
        """撤销指定会话；不存在与不属于当前用户不可区分。"""
        if not self.store.revoke_owned(session_id, requesting_user_id, self.clock()):
            raise NotFoundError("会话不存在。")
        logger.info("session revoked session_id=%s user_id=%s", session_id, requesting_user_id)

    def list_sessions(self, user_id: int) -> list[SessionSummary]:
        """按创建时间倒序返回有效会话。"""
        rows = self.store.list_valid_refresh_tokens(user_id, self.clock())
        return [
            SessionSummary(
                id=row.id,
                user_agent=row.user_agent,
                created_at=as_utc(row.created_at),
                expires_at=as_utc(row.expires_at),
            )
            for row in rows
        ]


def _truncate_descriptor(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value[:512] or None

"""账号注册、登录与凭据变更。"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime

from credkeeper.core.config import Settings
from credkeeper.core.errors import (
    AccountLocked,
    ConflictError,
    InvalidCredentials,
    NotFoundError,
    ValidationError,
)
from credkeeper.models.base import as_utc, utcnow
from credkeeper.models.user import UserAccount
from credkeeper.services.credential_store import CredentialStore, normalize_email
from credkeeper.services.lockout import LockoutEvaluator, LockState
from credkeeper.services.password_hasher import PasswordHasher
from credkeeper.services.token_issuer import AccessToken, TokenIssuer

logger = logging.getLogger("credkeeper.credentials")

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,30}$")


class CredentialVerifier:
    """编排注册与口令登录，结合锁定判定与口令哈希。"""

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        lockout: LockoutEvaluator,
        issuer: TokenIssuer,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.lockout = lockout
        self.issuer = issuer
        self.password_min_length = settings.auth_password_min_length
        self.clock = clock

    def _validate_username(self, username: str | None) -> None:
        if not username or not USERNAME_PATTERN.fullmatch(username):
            raise ValidationError(
                "用户名须为 3-30 位字母、数字、下划线或短横线。",
                field="username",
            )

    def _validate_email(self, email: str | None) -> None:
        if not email or not email.strip() or "@" not in email:
            raise ValidationError("邮箱地址不合法。", field="email")

    def _validate_password(self, password: str | None, *, field: str = "password") -> None:
        if not password or not password.strip() or len(password) < self.password_min_length:
            raise ValidationError(
                f"密码长度至少为 {self.password_min_length} 个字符。",
                field=field,
            )

    def register(self, username: str, email: str, password: str) -> tuple[UserAccount, AccessToken]:
        """注册账号并自动登录；首个账号自动成为管理员。"""
        # 按用户名、邮箱、密码的顺序校验，返回第一条不满足的规则。
        self._validate_username(username)
        self._validate_email(email)
        self._validate_password(password)

        if self.store.identity_taken(username, email):
            raise ConflictError()

        password_hash = self.hasher.hash(password)
        account = None
        if self.store.count_users() == 0:
            account = self.store.add_bootstrap_admin(username=username, email=email, password_hash=password_hash)
        if account is None:
            account = self.store.add_user(
                username=username,
                email=email,
                password_hash=password_hash,
                is_admin=False,
            )
        logger.info("account registered user_id=%s is_admin=%s", account.id, account.is_admin)
        return account, self.issuer.issue(account, now=self.clock())

    def login(self, email: str, password: str) -> tuple[UserAccount, AccessToken]:
        """口令登录。

        严格按顺序判定：账号查找 -> 锁定检查 -> 口令校验。
        锁定期间不校验口令，也不修改计数。
        """
        account = self.store.get_user_by_email(email or "")
        if account is None:
            self.hasher.burn(password or "")
            raise InvalidCredentials()

        now = self.clock()
        locked_until = as_utc(account.locked_until)
        if self.lockout.state(locked_until, now) is LockState.LOCKED:
            remaining = self.lockout.remaining_seconds(locked_until, now)
            logger.warning("login rejected reason=locked user_id=%s remaining=%s", account.id, remaining)
            raise AccountLocked(remaining)

        if not self.hasher.verify(password or "", account.password_hash):
            self._record_failure(account.id, locked_until, now)
            raise InvalidCredentials()

        self.store.reset_lockout(account.id)
        logger.info("login succeeded user_id=%s", account.id)
        return account, self.issuer.issue(account, now=now)

    def _record_failure(self, user_id: int, locked_until: datetime | None, now: datetime) -> None:
        attempts = self.store.increment_failed_logins(
            user_id,
            reset_baseline=self.lockout.has_expired_lock(locked_until, now),
        )
        outcome = self.lockout.register_failure(attempts, now)
        if outcome.newly_locked:
            self.store.set_locked_until(user_id, outcome.locked_until)
            logger.warning("account locked user_id=%s attempts=%s", user_id, attempts)
        else:
            logger.info("login failed user_id=%s attempts=%s", user_id, attempts)

    def _require_account_with_password(self, user_id: int, current_password: str) -> UserAccount:
        account = self.store.get_user(user_id)
        if account is None:
            raise NotFoundError("账号不存在。")
        if not self.hasher.verify(current_password or "", account.password_hash):
            raise InvalidCredentials("当前密码不正确。")
        return account

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """修改口令并清除锁定计数；不撤销已有刷新会话。"""
        self._validate_password(new_password, field="new_password")
        account = self._require_account_with_password(user_id, current_password)

        account.password_hash = self.hasher.hash(new_password)
        account.failed_login_attempts = 0
        account.locked_until = None
        self.store.db.flush()
        logger.info("password changed user_id=%s", user_id)

    def change_email(self, user_id: int, current_password: str, new_email: str) -> None:
        """修改邮箱；新邮箱被其他账号占用时返回冲突。"""
        self._validate_email(new_email)
        account = self._require_account_with_password(user_id, current_password)
        if self.store.email_taken_by_other(new_email, user_id):
            raise ConflictError("邮箱地址已被使用。")

        account.email = normalize_email(new_email)
        self.store.db.flush()
        logger.info("email changed user_id=%s", user_id)

    def verify_basic_credentials(self, username: str, password: str) -> UserAccount:
        """校验用户名与口令（HTTP Basic 场景），不修改失败计数。"""
        account = self.store.get_user_by_username(username or "")
        if account is None:
            self.hasher.burn(password or "")
            raise InvalidCredentials("用户名或密码错误。")

        now = self.clock()
        locked_until = as_utc(account.locked_until)
        if self.lockout.state(locked_until, now) is LockState.LOCKED:
            raise AccountLocked(self.lockout.remaining_seconds(locked_until, now))
        if not self.hasher.verify(password or "", account.password_hash):
            raise InvalidCredentials("用户名或密码错误。")
        return account

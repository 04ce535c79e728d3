"""认证服务对外入口。

每个方法是一个独立的工作单元：成功或业务错误时提交（失败登录的计数需要落库），
存储层异常回滚后统一降级为 ``ServiceUnavailableError``，不向调用方暴露内部细节。
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from credkeeper.core.config import Settings
from credkeeper.core.errors import AuthError, ConflictError, NotFoundError, ServiceUnavailableError
from credkeeper.models.base import utcnow
from credkeeper.models.user import UserAccount
from credkeeper.services.credential_store import CredentialStore
from credkeeper.services.credentials import CredentialVerifier
from credkeeper.services.lockout import LockoutEvaluator
from credkeeper.services.password_hasher import PasswordHasher
from credkeeper.services.sessions import RefreshSessionManager, SessionSummary
from credkeeper.services.token_issuer import AccessToken, TokenIssuer

logger = logging.getLogger("credkeeper.auth")


@dataclass(frozen=True)
class AuthResult:
    """注册、登录与刷新的返回结构。"""

    account: UserAccount
    access_token: AccessToken
    refresh_token: str | None = None


class AuthService:
    """组合凭据校验、令牌签发与会话管理。"""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.store = CredentialStore(db)
        self.issuer = TokenIssuer(settings)
        self.credentials = CredentialVerifier(
            self.store,
            PasswordHasher(settings),
            LockoutEvaluator(settings),
            self.issuer,
            settings,
            clock=clock,
        )
        self.sessions = RefreshSessionManager(self.store, self.issuer, settings, clock=clock)

    def _commit(self, operation: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("commit conflict operation=%s", operation)
            raise ConflictError() from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("commit failed operation=%s", operation)
            raise ServiceUnavailableError() from exc

    @contextlib.contextmanager
    def _unit_of_work(self, operation: str) -> Iterator[None]:
        try:
            yield
        except AuthError:
            # 业务错误路径上的写入（如失败计数）同样需要提交。
            self._commit(operation)
            raise
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("unique constraint conflict operation=%s", operation)
            raise ConflictError() from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("persistence failure operation=%s", operation)
            raise ServiceUnavailableError() from exc
        except Exception:
            self.db.rollback()
            raise
        else:
            self._commit(operation)

    def register(self, username: str, email: str, password: str) -> AuthResult:
        """注册并签发访问令牌（自动登录）。"""
        with self._unit_of_work("register"):
            account, access_token = self.credentials.register(username, email, password)
        return AuthResult(account=account, access_token=access_token)

    def login(self, email: str, password: str, client_descriptor: str | None = None) -> AuthResult:
        """口令登录，签发访问令牌并创建刷新会话。"""
        with self._unit_of_work("login"):
            account, access_token = self.credentials.login(email, password)
            refresh_token = self.sessions.create_session(account.id, client_descriptor)
        return AuthResult(account=account, access_token=access_token, refresh_token=refresh_token)

    def refresh(self, raw_refresh_token: str, client_descriptor: str | None = None) -> AuthResult:
        """轮换刷新令牌。"""
        with self._unit_of_work("refresh"):
            rotated = self.sessions.rotate(raw_refresh_token, client_descriptor)
        return AuthResult(
            account=rotated.account,
            access_token=rotated.access_token,
            refresh_token=rotated.refresh_token,
        )

    def logout(self, raw_refresh_token: str) -> None:
        with self._unit_of_work("logout"):
            self.sessions.revoke(raw_refresh_token)

    def logout_all(self, user_id: int) -> int:
        with self._unit_of_work("logout_all"):
            return self.sessions.revoke_all(user_id)

    def list_sessions(self, user_id: int) -> list[SessionSummary]:
        with self._unit_of_work("list_sessions"):
            return self.sessions.list_sessions(user_id)

    def revoke_session(self, session_id: int, requesting_user_id: int) -> None:
        with self._unit_of_work("revoke_session"):
            self.sessions.revoke_by_id(session_id, requesting_user_id)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        with self._unit_of_work("change_password"):
            self.credentials.change_password(user_id, current_password, new_password)

    def change_email(self, user_id: int, current_password: str, new_email: str) -> None:
        with self._unit_of_work("change_email"):
            self.credentials.change_email(user_id, current_password, new_email)

    def verify_basic_credentials(self, username: str, password: str) -> UserAccount:
        with self._unit_of_work("verify_basic_credentials"):
            return self.credentials.verify_basic_credentials(username, password)

    def get_account(self, user_id: int) -> UserAccount:
        with self._unit_of_work("get_account"):
            account = self.store.get_user(user_id)
            if account is None:
                raise NotFoundError("账号不存在。")
            return account

    def list_accounts(self) -> list[UserAccount]:
        with self._unit_of_work("list_accounts"):
            return self.store.list_users()

    def count_accounts(self) -> int:
        with self._unit_of_work("count_accounts"):
            return self.store.count_users()

    def delete_account(self, user_id: int) -> None:
        """删除账号及其全部刷新会话。"""
        with self._unit_of_work("delete_account"):
            if not self.store.delete_user(user_id):
                raise NotFoundError("账号不存在。")
            logger.info("account deleted user_id=%s", user_id)

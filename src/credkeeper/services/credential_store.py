"""凭据存储适配层。

封装账号与刷新令牌两张表的读写。每个方法只做单条语句级别的原子操作，
事务提交由调用方（``AuthService``）统一负责。
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from credkeeper.models.refresh_token import RefreshToken
from credkeeper.models.user import UserAccount


def normalize_email(value: str) -> str:
    """标准化邮箱字段（去空格 + 小写）。"""
    return value.strip().lower()


def _valid_token_clause(now: datetime):
    """刷新令牌有效条件：未撤销且未过期。"""
    return RefreshToken.revoked_at.is_(None), RefreshToken.expires_at > now


class CredentialStore:
    """基于 SQLAlchemy 会话的凭据存储。"""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _expire_cached_user(self, user_id: int) -> None:
        """语句级更新不同步会话缓存，使已加载的账号对象在下次访问时重新读取。"""
        cached = self.db.identity_map.get(Session.identity_key(UserAccount, user_id))
        if cached is not None:
            self.db.expire(cached)

    # ---- 账号 ----

    def count_users(self) -> int:
        return int(self.db.execute(select(func.count()).select_from(UserAccount)).scalar_one())

    def get_user(self, user_id: int) -> UserAccount | None:
        return self.db.get(UserAccount, user_id)

    def get_user_by_email(self, email: str) -> UserAccount | None:
        stmt = select(UserAccount).where(UserAccount.email == normalize_email(email))
        return self.db.execute(stmt).scalar_one_or_none()

    def get_user_by_username(self, username: str) -> UserAccount | None:
        stmt = select(UserAccount).where(UserAccount.username == username)
        return self.db.execute(stmt).scalar_one_or_none()

    def identity_taken(self, username: str, email: str) -> bool:
        """判断用户名或邮箱是否已存在。"""
        stmt = (
            select(func.count())
            .select_from(UserAccount)
            .where(or_(UserAccount.username == username, UserAccount.email == normalize_email(email)))
        )
        return int(self.db.execute(stmt).scalar_one()) > 0

    def email_taken_by_other(self, email: str, user_id: int) -> bool:
        stmt = (
            select(func.count())
            .select_from(UserAccount)
            .where(UserAccount.email == normalize_email(email))
            .where(UserAccount.id != user_id)
        )
        return int(self.db.execute(stmt).scalar_one()) > 0

    def list_users(self) -> list[UserAccount]:
        stmt = select(UserAccount).order_by(UserAccount.created_at, UserAccount.id)
        return list(self.db.execute(stmt).scalars().all())

    def add_user(self, *, username: str, email: str, password_hash: str, is_admin: bool) -> UserAccount:
        user = UserAccount(
            username=username,
            email=normalize_email(email),
            password_hash=password_hash,
            is_admin=is_admin,
            failed_login_attempts=0,
            locked_until=None,
        )
        self.db.add(user)
        self.db.flush()
        return user

    def add_bootstrap_admin(self, *, username: str, email: str, password_hash: str) -> UserAccount | None:
        """以管理员身份插入账号。

        管理员席位已被并发注册占用（或用户名、邮箱冲突）时不插入，返回 ``None``，
        由调用方按普通账号重试。
        """
        dialect_insert = postgresql_insert if self.db.get_bind().dialect.name == "postgresql" else sqlite_insert
        stmt = (
            dialect_insert(UserAccount)
            .values(
                username=username,
                email=normalize_email(email),
                password_hash=password_hash,
                is_admin=True,
                failed_login_attempts=0,
            )
            .on_conflict_do_nothing()
            .returning(UserAccount.id)
        )
        user_id = self.db.execute(stmt).scalar_one_or_none()
        return None if user_id is None else self.get_user(user_id)

    def increment_failed_logins(self, user_id: int, *, reset_baseline: bool) -> int:
        """原子递增失败计数并返回新值。

        ``reset_baseline`` 为真时（上一次锁已过期）从零重新计数。
        """
        if reset_baseline:
            values = {"failed_login_attempts": 1, "locked_until": None}
        else:
            values = {"failed_login_attempts": UserAccount.failed_login_attempts + 1}
        self.db.execute(
            update(UserAccount)
            .where(UserAccount.id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached_user(user_id)
        stmt = select(UserAccount.failed_login_attempts).where(UserAccount.id == user_id)
        return int(self.db.execute(stmt).scalar_one())

    def set_locked_until(self, user_id: int, locked_until: datetime | None) -> None:
        self.db.execute(
            update(UserAccount)
            .where(UserAccount.id == user_id)
            .values(locked_until=locked_until)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached_user(user_id)

    def reset_lockout(self, user_id: int) -> None:
        self.db.execute(
            update(UserAccount)
            .where(UserAccount.id == user_id)
            .values(failed_login_attempts=0, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached_user(user_id)

    def delete_user(self, user_id: int) -> bool:
        """删除账号，并在同一事务中级联删除其刷新令牌。"""
        self.db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
        result = self.db.execute(delete(UserAccount).where(UserAccount.id == user_id))
        return result.rowcount > 0

    # ---- 刷新令牌 ----

    def add_refresh_token(
        self,
        *,
        user_id: int,
        token_hash: str,
        created_at: datetime,
        expires_at: datetime,
        user_agent: str | None,
    ) -> RefreshToken:
        row = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            created_at=created_at,
            expires_at=expires_at,
            revoked_at=None,
            user_agent=user_agent,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def find_valid_refresh_token(self, token_hash: str, now: datetime) -> RefreshToken | None:
        stmt = select(RefreshToken).where(RefreshToken.token_hash == token_hash).where(*_valid_token_clause(now))
        return self.db.execute(stmt).scalar_one_or_none()

    def claim_refresh_token(self, token_id: int, now: datetime) -> bool:
        """以单条条件更新把 revoked_at 从空置为当前时间。

        仅当恰好更新一行时返回真；并发或重放的同一令牌必然观察到已撤销。
        """
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id)
            .where(*_valid_token_clause(now))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def revoke_by_hash(self, token_hash: str, now: datetime) -> int:
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.token_hash == token_hash)
            .where(RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def revoke_all_for_user(self, user_id: int, now: datetime) -> int:
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .where(*_valid_token_clause(now))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def revoke_owned(self, token_id: int, user_id: int, now: datetime) -> bool:
        """撤销指定会话，仅当其属于 ``user_id`` 且仍有效。"""
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id)
            .where(RefreshToken.user_id == user_id)
            .where(*_valid_token_clause(now))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def list_valid_refresh_tokens(self, user_id: int, now: datetime) -> list[RefreshToken]:
        stmt = (
            select(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .where(*_valid_token_clause(now))
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

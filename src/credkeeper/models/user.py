"""账号身份模型。"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from credkeeper.models.base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class UserAccount(Base, IntegerPrimaryKeyMixin, TimestampMixin):
    """用户账号实体。"""

    __tablename__ = "users"
    __table_args__ = (
        Index(
            "ix_users_locked_until",
            "locked_until",
            postgresql_where=text("locked_until IS NOT NULL"),
        ),
        # 至多一个管理员：只有首个注册账号获得管理员身份，并发注册时由该索引裁决。
        Index(
            "uq_users_single_admin",
            "is_admin",
            unique=True,
            postgresql_where=text("is_admin"),
            sqlite_where=text("is_admin = 1"),
        ),
    )

    # 登录名，全局唯一，仅允许字母数字、下划线与短横线。
    username: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    # 登录邮箱，规范化为小写后全局唯一。
    email: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    # 口令哈希，不存明文。
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    # 管理员标记，首个注册账号自动获得。
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 连续登录失败次数。
    failed_login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    # 锁定到期时间；为空表示未锁定。
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # 展示名，不参与认证。
    display_name: Mapped[str | None] = mapped_column(String(128))

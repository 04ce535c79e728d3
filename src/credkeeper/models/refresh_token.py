"""刷新令牌会话模型。"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from credkeeper.models.base import Base, BigIntegerPK, IntegerPrimaryKeyMixin, utcnow


class RefreshToken(Base, IntegerPrimaryKeyMixin):
    """一次登录会话。

    仅保存随机口令的单向哈希；撤销后保留记录用于审计，只随账号删除而清理。
    """

    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index(
            "ix_refresh_tokens_user_active",
            "user_id",
            postgresql_where=text("revoked_at IS NULL"),
        ),
    )

    # 所属用户 ID。
    user_id: Mapped[int] = mapped_column(
        BigIntegerPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # 原始口令的 SHA-256 十六进制摘要，作为查找键。
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    # 创建时间。
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    # 过期时间。
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # 撤销时间；为空表示未撤销。
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # 客户端描述（通常为 User-Agent）。
    user_agent: Mapped[str | None] = mapped_column(String(512))

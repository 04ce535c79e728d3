"""ORM 模型导出集合。"""

from credkeeper.models.refresh_token import RefreshToken
from credkeeper.models.user import UserAccount

__all__ = [
    "RefreshToken",
    "UserAccount",
]

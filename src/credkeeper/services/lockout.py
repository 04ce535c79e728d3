"""账号锁定判定。

纯函数逻辑，不访问存储。解锁是惰性的：没有后台任务清理过期锁，
只在下一次登录尝试时观察到锁已过期。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from credkeeper.core.config import Settings


class LockState(StrEnum):
    """账号锁定状态。"""

    UNLOCKED = "unlocked"  # 可尝试登录。
    LOCKED = "locked"  # 锁定中，拒绝校验口令。


@dataclass(frozen=True)
class FailureOutcome:
    """一次失败登录后的计数结果。"""

    failed_login_attempts: int
    locked_until: datetime | None

    @property
    def newly_locked(self) -> bool:
        return self.locked_until is not None


class LockoutEvaluator:
    """基于失败计数与锁定到期时间的判定器。"""

    def __init__(self, settings: Settings) -> None:
        self.threshold = settings.auth_lockout_threshold
        self.window = timedelta(seconds=settings.auth_lockout_window_seconds)

    def state(self, locked_until: datetime | None, now: datetime) -> LockState:
        if locked_until is not None and locked_until > now:
            return LockState.LOCKED
        return LockState.UNLOCKED

    def remaining_seconds(self, locked_until: datetime | None, now: datetime) -> int:
        """返回剩余锁定秒数（向上取整），未锁定时为 0。"""
        if self.state(locked_until, now) is LockState.UNLOCKED:
            return 0
        return max(1, math.ceil((locked_until - now).total_seconds()))

    def has_expired_lock(self, locked_until: datetime | None, now: datetime) -> bool:
        """锁曾经生效且已过期：下一次失败从零重新计数。"""
        return locked_until is not None and locked_until <= now

    def register_failure(self, failed_login_attempts: int, now: datetime) -> FailureOutcome:
        """计算失败后的新计数；恰好达到阈值时给出锁定到期时间。

        ``failed_login_attempts`` 为本次失败计入后的计数。
        """
        if failed_login_attempts >= self.threshold:
            return FailureOutcome(failed_login_attempts, now + self.window)
        return FailureOutcome(failed_login_attempts, None)

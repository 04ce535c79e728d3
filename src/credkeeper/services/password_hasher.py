"""口令哈希与校验。"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
from functools import lru_cache

from credkeeper.core.config import Settings

_ALGORITHM = "pbkdf2_sha256"


@lru_cache
def _dummy_hash(iterations: int) -> str:
    """同迭代次数下的占位哈希，每个迭代配置只计算一次。"""
    return PasswordHasher.encode(secrets.token_urlsafe(16), iterations)


class PasswordHasher:
    """加盐、慢速的口令哈希能力，格式为 ``算法$迭代次数$盐$摘要``。"""

    def __init__(self, settings: Settings) -> None:
        self.iterations = settings.auth_password_hash_iterations

    @staticmethod
    def encode(password: str, iterations: int) -> str:
        salt = secrets.token_bytes(16)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
        salt_b64 = base64.b64encode(salt).decode("ascii")
        digest_b64 = base64.b64encode(digest).decode("ascii")
        return f"{_ALGORITHM}${iterations}${salt_b64}${digest_b64}"

    def hash(self, password: str) -> str:
        """使用 PBKDF2-SHA256 生成口令哈希。"""
        return self.encode(password, self.iterations)

    def burn(self, password: str) -> None:
        """账号不存在时做一次等价开销的校验，使响应耗时与口令错误一致。"""
        self.verify(password, _dummy_hash(self.iterations))

    def verify(self, password: str, password_hash: str) -> bool:
        """校验口令是否匹配；哈希格式损坏时视为不匹配。"""
        try:
            algorithm, iterations_text, salt_b64, expected_digest_b64 = password_hash.split("$", 3)
            if algorithm != _ALGORITHM:
                return False
            iterations = int(iterations_text)
            salt = base64.b64decode(salt_b64.encode("ascii"))
            expected_digest = base64.b64decode(expected_digest_b64.encode("ascii"))
        except (ValueError, TypeError, binascii.Error):
            return False

        # 按哈希中记录的迭代次数校验，调整配置后旧哈希仍可用。
        actual_digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
        return hmac.compare_digest(actual_digest, expected_digest)

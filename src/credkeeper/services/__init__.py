"""服务层能力导出集合。"""

from credkeeper.services.auth import AuthResult, AuthService
from credkeeper.services.credential_store import CredentialStore, normalize_email
from credkeeper.services.credentials import CredentialVerifier
from credkeeper.services.lockout import FailureOutcome, LockoutEvaluator, LockState
from credkeeper.services.password_hasher import PasswordHasher
from credkeeper.services.sessions import RefreshSessionManager, RotationResult, SessionSummary, hash_refresh_token
from credkeeper.services.token_issuer import AccessToken, TokenIssuer

__all__ = [
    "AccessToken",
    "AuthResult",
    "AuthService",
    "CredentialStore",
    "CredentialVerifier",
    "FailureOutcome",
    "LockState",
    "LockoutEvaluator",
    "PasswordHasher",
    "RefreshSessionManager",
    "RotationResult",
    "SessionSummary",
    "TokenIssuer",
    "hash_refresh_token",
    "normalize_email",
]

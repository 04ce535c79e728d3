from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from credkeeper.core.config import Settings
from credkeeper.core.errors import (
    AccountLocked,
    ConflictError,
    InvalidCredentials,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)
from credkeeper.db.base import Base
from credkeeper.models.base import as_utc
from credkeeper.models.refresh_token import RefreshToken
from credkeeper.models.user import UserAccount
from credkeeper.services.auth import AuthService

SECRET = "unit-test-secret-key-at-least-32-bytes"
PASSWORD = "correcthorsebattery1"


class FakeClock:
    """可手动推进的时钟。"""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class CountingHasherSpy:
    """记录口令校验调用次数。"""

    def __init__(self, hasher) -> None:
        self.hasher = hasher
        self.verify_calls = 0

    def hash(self, password: str) -> str:
        return self.hasher.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        self.verify_calls += 1
        return self.hasher.verify(password, password_hash)


@pytest.fixture
def settings() -> Settings:
    return Settings(auth_jwt_secret=SECRET, auth_password_hash_iterations=1000)


@pytest.fixture
def db_session() -> Session:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    local_session = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    db = local_session()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(db_session: Session, settings: Settings, clock: FakeClock) -> AuthService:
    return AuthService(db_session, settings, clock=clock)


def _user_row(db: Session, email: str) -> UserAccount:
    db.expire_all()
    return db.execute(select(UserAccount).where(UserAccount.email == email)).scalar_one()


def test_register_first_account_is_admin(service: AuthService, settings: Settings):
    result = service.register("alice", "alice@x.com", PASSWORD)

    assert result.account.id is not None
    assert result.account.username == "alice"
    assert result.account.is_admin is True
    assert result.refresh_token is None
    claims = jwt.decode(
        result.access_token.token,
        SECRET,
        algorithms=["HS256"],
        issuer=settings.auth_jwt_issuer,
        audience=settings.auth_jwt_audience,
    )
    assert claims["sub"] == str(result.account.id)
    assert claims["is_admin"] is True


def test_register_later_accounts_are_not_admin(service: AuthService):
    service.register("alice", "alice@x.com", PASSWORD)
    second = service.register("bob", "bob@x.com", PASSWORD)
    third = service.register("carol", "carol@x.com", PASSWORD)

    assert second.account.is_admin is False
    assert third.account.is_admin is False
    assert service.count_accounts() == 3


def test_register_never_stores_plaintext(service: AuthService, db_session: Session):
    service.register("alice", "alice@x.com", PASSWORD)
    row = _user_row(db_session, "alice@x.com")
    assert PASSWORD not in row.password_hash
    assert row.password_hash.startswith("pbkdf2_sha256$")
    assert row.failed_login_attempts == 0
    assert row.locked_until is None


def test_register_normalizes_email(service: AuthService):
    result = service.register("alice", "  Alice@X.com ", PASSWORD)
    assert result.account.email == "alice@x.com"
    assert service.login("ALICE@x.com", PASSWORD).account.id == result.account.id


@pytest.mark.parametrize(
    ("username", "email", "password", "field"),
    [
        ("al", "alice@x.com", PASSWORD, "username"),
        ("a" * 31, "alice@x.com", PASSWORD, "username"),
        ("alice!", "alice@x.com", PASSWORD, "username"),
        ("", "alice@x.com", PASSWORD, "username"),
        ("alice", "alice.x.com", PASSWORD, "email"),
        ("alice", "   ", PASSWORD, "email"),
        ("alice", "alice@x.com", "short-pass1", "password"),
        ("alice", "alice@x.com", " " * 12, "password"),
        # 多条规则同时不满足时报告第一条。
        ("a!", "bad-email", "short", "username"),
        ("alice", "bad-email", "short", "email"),
    ],
)
def test_register_validation_reports_first_violation(service: AuthService, username, email, password, field):
    with pytest.raises(ValidationError) as exc:
        service.register(username, email, password)
    assert exc.value.details["field"] == field
    assert service.count_accounts() == 0


def test_register_accepts_username_edge_characters(service: AuthService):
    assert service.register("a_b-c", "abc@x.com", PASSWORD).account.username == "a_b-c"
    assert service.register("x" * 30, "long@x.com", PASSWORD).account.username == "x" * 30


def test_register_conflicts_on_username_or_email(service: AuthService):
    service.register("alice", "alice@x.com", PASSWORD)

    with pytest.raises(ConflictError):
        service.register("alice", "other@x.com", PASSWORD)
    with pytest.raises(ConflictError):
        service.register("other", "ALICE@x.com", PASSWORD)
    assert service.count_accounts() == 1


def test_login_success_returns_account_tokens_and_session(service: AuthService, db_session: Session):
    registered = service.register("alice", "alice@x.com", PASSWORD)

    result = service.login("alice@x.com", PASSWORD, "pytest-agent")

    assert result.account.id == registered.account.id
    assert result.access_token.token
    assert result.refresh_token
    rows = db_session.execute(select(RefreshToken)).scalars().all()
    assert len(rows) == 1
    assert rows[0].user_agent == "pytest-agent"
    assert rows[0].token_hash != result.refresh_token


def test_login_unknown_email_matches_wrong_password_error(service: AuthService):
    service.register("alice", "alice@x.com", PASSWORD)

    with pytest.raises(InvalidCredentials) as unknown:
        service.login("nobody@x.com", PASSWORD)
    with pytest.raises(InvalidCredentials) as wrong:
        service.login("alice@x.com", "not-the-password")

    assert type(unknown.value) is type(wrong.value)
    assert unknown.value.message == wrong.value.message
    assert unknown.value.details == wrong.value.details


def test_failed_logins_increment_counter(service: AuthService, db_session: Session):
    service.register("alice", "alice@x.com", PASSWORD)
    for _ in range(3):
        with pytest.raises(InvalidCredentials):
            service.login("alice@x.com", "wrong-password-123")

    row = _user_row(db_session, "alice@x.com")
    assert row.failed_login_attempts == 3
    assert row.locked_until is None


def test_lockout_scenario(db_session: Session, settings: Settings, clock: FakeClock):
    service = AuthService(db_session, settings, clock=clock)
    registered = service.register("alice", "alice@x.com", "correcthorsebattery1")
    assert registered.account.is_admin is True

    for _ in range(9):
        with pytest.raises(InvalidCredentials):
            service.login("alice@x.com", "wrong-password-123")
    row = _user_row(db_session, "alice@x.com")
    assert row.failed_login_attempts == 9
    assert row.locked_until is None

    # 第 10 次失败触发锁定，但本次响应仍是口令错误。
    with pytest.raises(InvalidCredentials):
        service.login("alice@x.com", "wrong-password-123")
    row = _user_row(db_session, "alice@x.com")
    assert row.failed_login_attempts == 10
    assert as_utc(row.locked_until) == clock.now + timedelta(minutes=15)

    # 锁定期间即使口令正确也不校验口令，计数不变。
    spy = CountingHasherSpy(service.credentials.hasher)
    service.credentials.hasher = spy
    with pytest.raises(AccountLocked) as locked:
        service.login("alice@x.com", "correcthorsebattery1")
    assert spy.verify_calls == 0
    assert 899 <= locked.value.remaining_seconds <= 900
    assert _user_row(db_session, "alice@x.com").failed_login_attempts == 10

    clock.advance(minutes=15, seconds=1)
    result = service.login("alice@x.com", "correcthorsebattery1")
    assert result.account.id == registered.account.id
    row = _user_row(db_session, "alice@x.com")
    assert row.failed_login_attempts == 0
    assert row.locked_until is None


def test_locked_account_remaining_seconds_counts_down(service: AuthService, clock: FakeClock):
    service.register("alice", "alice@x.com", PASSWORD)
    for _ in range(10):
        with pytest.raises(InvalidCredentials):
            service.login("alice@x.com", "wrong-password-123")

    clock.advance(minutes=10)
    with pytest.raises(AccountLocked) as locked:
        service.login("alice@x.com", "wrong-password-123")
    assert locked.value.remaining_seconds == 300


def test_failure_after_lock_expiry_starts_from_fresh_baseline(
    service: AuthService, db_session: Session, clock: FakeClock
):
    service.register("alice", "alice@x.com", PASSWORD)
    for _ in range(10):
        with pytest.raises(InvalidCredentials):
            service.login("alice@x.com", "wrong-password-123")

    clock.advance(minutes=16)
    with pytest.raises(InvalidCredentials):
        service.login("alice@x.com", "wrong-password-123")

    row = _user_row(db_session, "alice@x.com")
    assert row.failed_login_attempts == 1
    assert row.locked_until is None
    # 重新计数后仍可正常登录，不会因旧计数被立即再次锁定。
    assert service.login("alice@x.com", PASSWORD).account.username == "alice"


def test_successful_login_resets_counter(service: AuthService, db_session: Session):
    service.register("alice", "alice@x.com", PASSWORD)
    for _ in range(5):
        with pytest.raises(InvalidCredentials):
            service.login("alice@x.com", "wrong-password-123")

    service.login("alice@x.com", PASSWORD)

    assert _user_row(db_session, "alice@x.com").failed_login_attempts == 0


def test_change_password_requires_current_password(service: AuthService):
    account_id = service.register("alice", "alice@x.com", PASSWORD).account.id

    with pytest.raises(InvalidCredentials):
        service.change_password(account_id, "not-current-password", "a-brand-new-password")
    with pytest.raises(ValidationError):
        service.change_password(account_id, PASSWORD, "too-short")
    with pytest.raises(NotFoundError):
        service.change_password(account_id + 100, PASSWORD, "a-brand-new-password")

    service.change_password(account_id, PASSWORD, "a-brand-new-password")

    with pytest.raises(InvalidCredentials):
        service.login("alice@x.com", PASSWORD)
    assert service.login("alice@x.com", "a-brand-new-password").account.id == account_id


def test_change_password_clears_lockout_and_keeps_sessions(
    service: AuthService, db_session: Session, clock: FakeClock
):
    account_id = service.register("alice", "alice@x.com", PASSWORD).account.id
    login = service.login("alice@x.com", PASSWORD, "laptop")
    for _ in range(10):
        with pytest.raises(InvalidCredentials):
            service.login("alice@x.com", "wrong-password-123")

    service.change_password(account_id, PASSWORD, "a-brand-new-password")

    row = _user_row(db_session, "alice@x.com")
    assert row.failed_login_attempts == 0
    assert row.locked_until is None
    # 修改密码不撤销已有会话。
    assert len(service.list_sessions(account_id)) == 1
    assert service.refresh(login.refresh_token, "laptop").refresh_token


def test_change_email(service: AuthService):
    alice_id = service.register("alice", "alice@x.com", PASSWORD).account.id
    service.register("bob", "bob@x.com", PASSWORD)

    with pytest.raises(ValidationError):
        service.change_email(alice_id, PASSWORD, "no-at-sign")
    with pytest.raises(InvalidCredentials):
        service.change_email(alice_id, "not-current-password", "alice2@x.com")
    with pytest.raises(ConflictError):
        service.change_email(alice_id, PASSWORD, "BOB@x.com")

    # 改回自己当前的邮箱不算冲突。
    service.change_email(alice_id, PASSWORD, "alice@x.com")
    service.change_email(alice_id, PASSWORD, "Alice.New@x.com")

    assert service.get_account(alice_id).email == "alice.new@x.com"
    assert service.login("alice.new@x.com", PASSWORD).account.id == alice_id
    with pytest.raises(InvalidCredentials):
        service.login("alice@x.com", PASSWORD)


def test_verify_basic_credentials(service: AuthService, db_session: Session):
    service.register("alice", "alice@x.com", PASSWORD)

    assert service.verify_basic_credentials("alice", PASSWORD).email == "alice@x.com"
    with pytest.raises(InvalidCredentials):
        service.verify_basic_credentials("alice", "wrong-password-123")
    with pytest.raises(InvalidCredentials):
        service.verify_basic_credentials("nobody", PASSWORD)
    # 基础认证失败不计入登录失败次数。
    assert _user_row(db_session, "alice@x.com").failed_login_attempts == 0


def test_verify_basic_credentials_refuses_locked_account(service: AuthService):
    service.register("alice", "alice@x.com", PASSWORD)
    for _ in range(10):
        with pytest.raises(InvalidCredentials):
            service.login("alice@x.com", "wrong-password-123")

    with pytest.raises(AccountLocked):
        service.verify_basic_credentials("alice", PASSWORD)


def test_list_and_delete_accounts_cascade_sessions(service: AuthService, db_session: Session):
    alice_id = service.register("alice", "alice@x.com", PASSWORD).account.id
    bob_id = service.register("bob", "bob@x.com", PASSWORD).account.id
    service.login("bob@x.com", PASSWORD, "phone")
    service.login("bob@x.com", PASSWORD, "laptop")
    service.login("alice@x.com", PASSWORD, "desktop")

    assert [account.username for account in service.list_accounts()] == ["alice", "bob"]

    service.delete_account(bob_id)

    assert [account.id for account in service.list_accounts()] == [alice_id]
    remaining = db_session.execute(select(RefreshToken)).scalars().all()
    assert [row.user_id for row in remaining] == [alice_id]
    with pytest.raises(NotFoundError):
        service.delete_account(bob_id)
    with pytest.raises(NotFoundError):
        service.get_account(bob_id)


def test_persistence_failure_is_reported_as_unavailable(
    service: AuthService, db_session: Session, monkeypatch: pytest.MonkeyPatch
):
    service.register("alice", "alice@x.com", PASSWORD)

    def broken_execute(*_args, **_kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is down"))

    monkeypatch.setattr(db_session, "execute", broken_execute)

    with pytest.raises(ServiceUnavailableError) as exc:
        service.login("alice@x.com", PASSWORD)
    assert "database is down" not in exc.value.message


def test_bootstrap_admin_seat_is_taken_only_once(
    service: AuthService, db_session: Session, monkeypatch: pytest.MonkeyPatch
):
    service.register("alice", "alice@x.com", PASSWORD)
    # 模拟并发注册：另一请求在管理员写入前读到了 0 个账号。
    monkeypatch.setattr(service.store, "count_users", lambda: 0)

    bob = service.register("bob", "bob@x.com", PASSWORD)

    assert bob.account.is_admin is False
    admins = db_session.execute(select(UserAccount).where(UserAccount.is_admin.is_(True))).scalars().all()
    assert [admin.username for admin in admins] == ["alice"]
    assert service.store.add_bootstrap_admin(username="carol", email="carol@x.com", password_hash="x") is None


def test_unknown_email_still_runs_password_verification(service: AuthService, monkeypatch: pytest.MonkeyPatch):
    service.register("alice", "alice@x.com", PASSWORD)
    hasher = service.credentials.hasher
    calls = []
    original_verify = hasher.verify

    def counting_verify(password: str, password_hash: str) -> bool:
        calls.append(password_hash)
        return original_verify(password, password_hash)

    monkeypatch.setattr(hasher, "verify", counting_verify)

    with pytest.raises(InvalidCredentials):
        service.login("nobody@x.com", PASSWORD)
    with pytest.raises(InvalidCredentials):
        service.verify_basic_credentials("nobody", PASSWORD)

    assert len(calls) == 2
    assert all(item.startswith("pbkdf2_sha256$1000$") for item in calls)


def test_access_token_lifetime_follows_injected_clock(service: AuthService, clock: FakeClock):
    service.register("alice", "alice@x.com", PASSWORD)
    clock.advance(days=29)

    result = service.login("alice@x.com", PASSWORD)

    assert result.access_token.expires_in == 3600
    assert result.access_token.expires_at == clock.now + timedelta(seconds=3600)
    claims = jwt.decode(result.access_token.token, options={"verify_signature": False})
    assert claims["exp"] - claims["iat"] == result.access_token.expires_in
    assert claims["iat"] == int(clock.now.timestamp())

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from credkeeper.core.config import Settings
from credkeeper.core.errors import NotFoundError, TokenInvalid
from credkeeper.db.base import Base
from credkeeper.models.refresh_token import RefreshToken
from credkeeper.services.auth import AuthService
from credkeeper.services.sessions import hash_refresh_token

SECRET = "unit-test-secret-key-at-least-32-bytes"
PASSWORD = "correcthorsebattery1"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def settings() -> Settings:
    return Settings(auth_jwt_secret=SECRET, auth_password_hash_iterations=1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_factory(tmp_path):
    """基于文件的 SQLite，便于多个会话并发访问同一数据库。"""
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'sessions.db'}", future=True)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    engine.dispose()


@pytest.fixture
def db_session(session_factory) -> Session:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def service(db_session: Session, settings: Settings, clock: FakeClock) -> AuthService:
    service = AuthService(db_session, settings, clock=clock)
    service.register("alice", "alice@x.com", PASSWORD)
    service.register("bob", "bob@x.com", PASSWORD)
    return service


def _token_rows(db: Session) -> list[RefreshToken]:
    db.expire_all()
    return list(db.execute(select(RefreshToken).order_by(RefreshToken.id)).scalars().all())


def test_login_session_stores_only_token_digest(service: AuthService, db_session: Session, settings: Settings):
    result = service.login("alice@x.com", PASSWORD, "pytest-agent")

    raw = result.refresh_token
    # 64 字节随机数的 URL 安全编码。
    assert len(raw) >= 86
    rows = _token_rows(db_session)
    assert len(rows) == 1
    row = rows[0]
    assert row.token_hash == hash_refresh_token(raw)
    assert raw not in (row.token_hash, row.user_agent)
    assert row.revoked_at is None
    assert row.user_id == result.account.id
    assert row.expires_at - row.created_at == timedelta(days=settings.auth_refresh_token_ttl_days)


def test_refresh_tokens_are_unique_per_login(service: AuthService):
    first = service.login("alice@x.com", PASSWORD)
    second = service.login("alice@x.com", PASSWORD)
    assert first.refresh_token != second.refresh_token


def test_rotation_issues_new_pair_and_burns_old_token(service: AuthService, db_session: Session):
    login = service.login("alice@x.com", PASSWORD, "laptop")

    rotated = service.refresh(login.refresh_token, "laptop")

    assert rotated.refresh_token != login.refresh_token
    assert rotated.account.id == login.account.id
    assert rotated.access_token.jti != login.access_token.jti
    old_row, new_row = _token_rows(db_session)
    assert old_row.revoked_at is not None
    assert new_row.revoked_at is None
    assert new_row.token_hash == hash_refresh_token(rotated.refresh_token)

    with pytest.raises(TokenInvalid):
        service.refresh(login.refresh_token, "laptop")
    # 重放失败不影响新令牌继续轮换。
    assert service.refresh(rotated.refresh_token, "laptop").refresh_token


def test_refresh_rejects_unknown_token(service: AuthService):
    with pytest.raises(TokenInvalid):
        service.refresh("not-a-real-token", None)


def test_refresh_rejects_expired_token(service: AuthService, clock: FakeClock):
    login = service.login("alice@x.com", PASSWORD)
    clock.advance(days=30, seconds=1)

    with pytest.raises(TokenInvalid):
        service.refresh(login.refresh_token, None)


def test_refresh_accepts_token_just_before_expiry(service: AuthService, clock: FakeClock):
    login = service.login("alice@x.com", PASSWORD)
    clock.advance(days=29, hours=23)

    assert service.refresh(login.refresh_token, None).refresh_token


def test_concurrent_rotation_only_one_winner(
    service: AuthService, session_factory, settings: Settings, clock: FakeClock
):
    login = service.login("alice@x.com", PASSWORD)
    raw = login.refresh_token

    other_db = session_factory()
    try:
        other = AuthService(other_db, settings, clock=clock)
        # 另一请求已读到令牌有效，但尚未占用。
        observed = other.store.find_valid_refresh_token(hash_refresh_token(raw), clock())
        assert observed is not None
        other.store.find_valid_refresh_token = lambda token_hash, now: observed

        winner = service.refresh(raw, "first")
        assert winner.refresh_token

        with pytest.raises(TokenInvalid):
            other.refresh(raw, "second")
    finally:
        other_db.close()

    active = service.list_sessions(login.account.id)
    assert len(active) == 1
    assert active[0].user_agent == "first"


def test_logout_is_idempotent(service: AuthService):
    login = service.login("alice@x.com", PASSWORD)

    service.logout(login.refresh_token)
    service.logout(login.refresh_token)
    service.logout("never-issued-token")

    with pytest.raises(TokenInvalid):
        service.refresh(login.refresh_token, None)
    assert service.list_sessions(login.account.id) == []


def test_logout_all_revokes_only_that_user(service: AuthService):
    alice_phone = service.login("alice@x.com", PASSWORD, "phone")
    alice_laptop = service.login("alice@x.com", PASSWORD, "laptop")
    bob = service.login("bob@x.com", PASSWORD, "desktop")

    assert service.logout_all(alice_phone.account.id) == 2
    assert service.logout_all(alice_phone.account.id) == 0

    for token in (alice_phone.refresh_token, alice_laptop.refresh_token):
        with pytest.raises(TokenInvalid):
            service.refresh(token, None)
    assert service.refresh(bob.refresh_token, "desktop").refresh_token


def test_list_sessions_newest_first_without_secrets(service: AuthService, clock: FakeClock):
    first = service.login("alice@x.com", PASSWORD, "phone")
    clock.advance(seconds=5)
    service.login("alice@x.com", PASSWORD, "laptop")
    clock.advance(seconds=5)
    service.login("alice@x.com", PASSWORD, "x" * 600)
    service.login("bob@x.com", PASSWORD, "bob-desktop")

    sessions = service.list_sessions(first.account.id)

    assert [item.user_agent for item in sessions] == ["x" * 512, "laptop", "phone"]
    assert sessions[0].created_at > sessions[1].created_at > sessions[2].created_at
    assert all(item.created_at.tzinfo is not None for item in sessions)
    assert not hasattr(sessions[0], "token_hash")


def test_revoke_session_by_id_enforces_ownership(service: AuthService):
    alice = service.login("alice@x.com", PASSWORD, "phone")
    bob = service.login("bob@x.com", PASSWORD, "desktop")
    alice_session = service.list_sessions(alice.account.id)[0]
    bob_session = service.list_sessions(bob.account.id)[0]

    with pytest.raises(NotFoundError):
        service.revoke_session(bob_session.id, alice.account.id)
    with pytest.raises(NotFoundError):
        service.revoke_session(bob_session.id + 1000, alice.account.id)

    service.revoke_session(alice_session.id, alice.account.id)

    assert service.list_sessions(alice.account.id) == []
    assert len(service.list_sessions(bob.account.id)) == 1
    with pytest.raises(NotFoundError):
        service.revoke_session(alice_session.id, alice.account.id)
    with pytest.raises(TokenInvalid):
        service.refresh(alice.refresh_token, None)


def test_list_sessions_excludes_expired(service: AuthService, clock: FakeClock):
    stale = service.login("alice@x.com", PASSWORD, "old-phone")
    user_id = stale.account.id
    clock.advance(days=30, seconds=1)

    assert service.list_sessions(user_id) == []

    service.login("alice@x.com", PASSWORD, "new-phone")
    assert [item.user_agent for item in service.list_sessions(user_id)] == ["new-phone"]

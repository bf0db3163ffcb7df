# tests/integration/test_auth_service.py
import pytest

from apps.auth_svc.db.audit_repository import AuditRepository
from libs.app.errors import ErrorCode
from tests.helpers import STRONG_PASSWORD, login_request, promote_to_admin, register_request, register_user

pytestmark = pytest.mark.anyio

IP = "10.0.0.1"


# --- Регистрация ---


async def test_register_issues_session_and_tokens(auth_service):
    result, error = await auth_service.register(
        register_request("Jane@Example.com", username="jane"), ip=IP, user_agent="pytest"
    )
    assert error is None
    assert result.user.email == "jane@example.com"
    assert result.user.status == "active"
    assert result.user.has_password is True
    assert result.tokens.token_type == "Bearer"
    assert result.session_id is not None

    claims, error = await auth_service.authenticate(result.tokens.access_token)
    assert error is None
    assert claims.user_id == result.user.id
    assert claims.session_id == result.session_id


async def test_register_duplicate_email_is_rejected(auth_service):
    await register_user(auth_service, "dup@example.com")
    _, error = await auth_service.register(register_request("DUP@example.com"), ip="10.0.0.2")
    assert error.code == ErrorCode.VALIDATION_FAILED
    assert error.errors[0].field == "email"


async def test_register_enforces_password_policy(auth_service):
    _, error = await auth_service.register(register_request("weak@example.com", password="password"), ip=IP)
    assert error.code == ErrorCode.VALIDATION_FAILED
    messages = " ".join(e.message for e in error.errors)
    assert "uppercase" in messages and "digit" in messages


async def test_register_with_email_verification(build_container, notifier):
    auth_service = build_container(REQUIRE_EMAIL_VERIFICATION=True).auth_service
    result = await register_user(auth_service, "verify@example.com")
    assert result.requires_email_verification is True
    assert result.tokens is None
    assert result.user.status == "pending_verification"

    _, error = await auth_service.login(login_request("verify@example.com"), ip=IP)
    assert error.code == ErrorCode.AUTH_EMAIL_NOT_VERIFIED

    token = notifier.last_email_token()
    user, error = await auth_service.verify_email(token)
    assert error is None
    assert user.email_verified is True
    assert user.status == "active"

    # токен одноразовый
    _, error = await auth_service.verify_email(token)
    assert error.code == ErrorCode.VALIDATION_FAILED

    login, error = await auth_service.login(login_request("verify@example.com"), ip=IP)
    assert error is None
    assert login.tokens is not None


async def test_verification_token_expires(build_container, notifier, clock):
    auth_service = build_container(REQUIRE_EMAIL_VERIFICATION=True, EMAIL_VERIFICATION_TTL=600).auth_service
    await register_user(auth_service, "late@example.com")
    clock.advance(seconds=601)
    _, error = await auth_service.verify_email(notifier.last_email_token())
    assert error.code == ErrorCode.VALIDATION_FAILED


async def test_resend_verification_does_not_reveal_accounts(build_container, notifier):
    auth_service = build_container(REQUIRE_EMAIL_VERIFICATION=True).auth_service
    await register_user(auth_service, "pending@example.com")
    sent_before = len(notifier.emails)

    unknown, error = await auth_service.resend_verification("nobody@example.com", ip=IP)
    assert error is None
    known, error = await auth_service.resend_verification("pending@example.com", ip=IP)
    assert error is None
    assert unknown.detail == known.detail
    assert len(notifier.emails) == sent_before + 1


# --- Вход ---


async def test_login_unknown_email_and_wrong_password_look_the_same(auth_service):
    await register_user(auth_service, "same@example.com")
    _, unknown = await auth_service.login(login_request("ghost@example.com"), ip=IP)
    _, wrong = await auth_service.login(login_request("same@example.com", password="Wr0ng!Password"), ip=IP)
    assert unknown.code == wrong.code == ErrorCode.AUTH_INVALID_CREDENTIALS
    assert unknown.public_message == wrong.public_message


async def test_login_rate_limit(auth_service):
    for _ in range(10):
        _, error = await auth_service.login(login_request("ghost@example.com"), ip=IP)
        assert error.code == ErrorCode.AUTH_INVALID_CREDENTIALS

    _, error = await auth_service.login(login_request("ghost@example.com"), ip=IP)
    assert error.code == ErrorCode.RATE_LIMIT_EXCEEDED
    assert error.retry_after > 0

    # другой адрес клиента считается отдельно
    _, error = await auth_service.login(login_request("ghost@example.com"), ip="10.9.9.9")
    assert error.code == ErrorCode.AUTH_INVALID_CREDENTIALS


async def test_account_lockout_and_lazy_release(auth_service, container, clock):
    registered = await register_user(auth_service, "locked@example.com")
    for _ in range(5):
        _, error = await auth_service.login(login_request("locked@example.com", password="Wr0ng!Password"), ip=IP)
        assert error.code == ErrorCode.AUTH_INVALID_CREDENTIALS

    # даже верный пароль не проходит, пока аккаунт заблокирован
    _, error = await auth_service.login(login_request("locked@example.com"), ip=IP)
    assert error.code == ErrorCode.AUTH_ACCOUNT_LOCKED
    assert error.http_status == 423
    assert error.retry_after == 1800

    clock.advance(seconds=1801)
    result, error = await auth_service.login(login_request("locked@example.com"), ip=IP)
    assert error is None
    assert result.user.status == "active"

    async with container.session_factory() as db:
        events = [e.event_type for e in await AuditRepository(db).list_for_user(registered.user.id)]
    assert "account_locked" in events
    assert events.count("login_failed") == 5


async def test_successful_login_resets_failure_counter(auth_service):
    await register_user(auth_service, "reset@example.com")
    for _ in range(4):
        await auth_service.login(login_request("reset@example.com", password="Wr0ng!Password"), ip=IP)
    _, error = await auth_service.login(login_request("reset@example.com"), ip=IP)
    assert error is None
    _, error = await auth_service.login(login_request("reset@example.com", password="Wr0ng!Password"), ip=IP)
    assert error.code == ErrorCode.AUTH_INVALID_CREDENTIALS
    _, error = await auth_service.login(login_request("reset@example.com"), ip=IP)
    assert error is None


async def test_expired_password_is_flagged(auth_service, clock):
    await register_user(auth_service, "old@example.com")
    clock.advance(days=91)
    result, error = await auth_service.login(login_request("old@example.com"), ip=IP)
    assert error is None
    assert result.password_expired is True
    assert result.tokens is not None


# --- Токены и выход ---


async def test_refresh_rotates_tokens(auth_service):
    registered = await register_user(auth_service, "rotate@example.com")
    refreshed, error = await auth_service.refresh(registered.tokens.refresh_token)
    assert error is None
    assert refreshed.session_id == registered.session_id
    assert refreshed.tokens.refresh_token != registered.tokens.refresh_token

    _, error = await auth_service.authenticate(refreshed.tokens.access_token)
    assert error is None


async def test_refresh_token_replay_terminates_session(auth_service):
    registered = await register_user(auth_service, "replay@example.com")
    refreshed, _ = await auth_service.refresh(registered.tokens.refresh_token)

    _, error = await auth_service.refresh(registered.tokens.refresh_token)
    assert error.code == ErrorCode.AUTH_TOKEN_REVOKED

    # скомпрометированная сессия завершена целиком, вместе с новой парой
    _, error = await auth_service.authenticate(refreshed.tokens.access_token)
    assert error.code == ErrorCode.AUTH_SESSION_EXPIRED
    _, error = await auth_service.refresh(refreshed.tokens.refresh_token)
    assert error.code == ErrorCode.AUTH_TOKEN_REVOKED


async def test_refresh_rejects_garbage_and_access_tokens(auth_service):
    registered = await register_user(auth_service, "garbage@example.com")
    _, error = await auth_service.refresh("not-a-token")
    assert error.code == ErrorCode.AUTH_TOKEN_INVALID
    _, error = await auth_service.refresh(registered.tokens.access_token)
    assert error.code == ErrorCode.AUTH_TOKEN_INVALID


async def test_refresh_token_expiry(auth_service, clock):
    registered = await register_user(auth_service, "expire@example.com")
    clock.advance(seconds=604800)
    _, error = await auth_service.refresh(registered.tokens.refresh_token)
    assert error.code == ErrorCode.AUTH_TOKEN_EXPIRED


async def test_access_token_expiry(build_container, clock):
    auth_service = build_container(AUTH_ACCESS_TTL=900).auth_service
    registered = await register_user(auth_service, "short@example.com")
    clock.advance(seconds=900)
    _, error = await auth_service.authenticate(registered.tokens.access_token)
    assert error.code == ErrorCode.AUTH_TOKEN_EXPIRED


async def test_logout_is_idempotent(auth_service):
    registered = await register_user(auth_service, "bye@example.com")
    user_id, session_id = registered.user.id, registered.session_id

    first, error = await auth_service.logout(user_id, session_id)
    assert error is None and first.sessions_terminated == 1
    second, error = await auth_service.logout(user_id, session_id)
    assert error is None and second.sessions_terminated == 0

    _, error = await auth_service.authenticate(registered.tokens.access_token)
    assert error.code == ErrorCode.AUTH_SESSION_EXPIRED
    _, error = await auth_service.refresh(registered.tokens.refresh_token)
    assert error.code == ErrorCode.AUTH_TOKEN_REVOKED


async def test_logout_all(auth_service, clock):
    registered = await register_user(auth_service, "all@example.com")
    clock.advance(seconds=1)
    await auth_service.login(login_request("all@example.com"), ip=IP)
    clock.advance(seconds=1)
    await auth_service.login(login_request("all@example.com"), ip=IP)

    result, error = await auth_service.logout_all(registered.user.id)
    assert error is None
    assert result.sessions_terminated == 3
    sessions, _ = await auth_service.list_sessions(registered.user.id)
    assert sessions == []


# --- Пароль ---


async def test_change_password_requires_current_and_ends_other_sessions(auth_service, clock):
    registered = await register_user(auth_service, "change@example.com")
    clock.advance(seconds=1)
    other, _ = await auth_service.login(login_request("change@example.com"), ip=IP)

    user_id, session_id = registered.user.id, registered.session_id
    _, error = await auth_service.set_password(user_id, session_id, "N3w!Password")
    assert error.code == ErrorCode.VALIDATION_FAILED
    assert error.errors[0].field == "currentPassword"

    _, error = await auth_service.set_password(user_id, session_id, "N3w!Password", "Wr0ng!Password")
    assert error.code == ErrorCode.AUTH_INVALID_CREDENTIALS

    result, error = await auth_service.set_password(user_id, session_id, "N3w!Password", STRONG_PASSWORD)
    assert error is None
    assert result.sessions_terminated == 1

    _, error = await auth_service.authenticate(other.tokens.access_token)
    assert error.code == ErrorCode.AUTH_SESSION_EXPIRED
    _, error = await auth_service.authenticate(registered.tokens.access_token)
    assert error is None

    _, error = await auth_service.login(login_request("change@example.com"), ip=IP)
    assert error.code == ErrorCode.AUTH_INVALID_CREDENTIALS
    _, error = await auth_service.login(login_request("change@example.com", password="N3w!Password"), ip=IP)
    assert error is None


# --- Сброс пароля ---


async def request_reset(auth_service, notifier, email: str) -> str:
    _, error = await auth_service.forgot_password(email, ip=IP, user_agent="pytest")
    assert error is None
    return notifier.last_email_token()


async def test_forgot_password_does_not_reveal_accounts(auth_service, notifier):
    await register_user(auth_service, "known@example.com")
    sent_before = len(notifier.emails)

    unknown, error = await auth_service.forgot_password("nobody@example.com", ip=IP)
    assert error is None
    known, error = await auth_service.forgot_password("known@example.com", ip=IP)
    assert error is None
    assert unknown.detail == known.detail
    assert len(notifier.emails) == sent_before + 1
    assert notifier.emails[-1][0] == "known@example.com"


async def test_reset_password_ends_all_sessions(auth_service, notifier, clock):
    registered = await register_user(auth_service, "reset@example.com")
    clock.advance(seconds=1)
    other, _ = await auth_service.login(login_request("reset@example.com"), ip=IP)
    token = await request_reset(auth_service, notifier, "reset@example.com")

    status, error = await auth_service.verify_reset_token(token)
    assert error is None
    assert status.token_valid is True
    assert status.expires_at is not None

    result, error = await auth_service.reset_password(token, "N3w!Password", "N3w!Password", ip=IP)
    assert error is None
    assert result.sessions_terminated == 2
    for tokens in (registered.tokens, other.tokens):
        _, error = await auth_service.authenticate(tokens.access_token)
        assert error.code == ErrorCode.AUTH_SESSION_EXPIRED

    _, error = await auth_service.login(login_request("reset@example.com"), ip=IP)
    assert error.code == ErrorCode.AUTH_INVALID_CREDENTIALS
    _, error = await auth_service.login(login_request("reset@example.com", password="N3w!Password"), ip=IP)
    assert error is None

    # токен одноразовый
    _, error = await auth_service.reset_password(token, "An0ther!Password")
    assert error.code == ErrorCode.VALIDATION_FAILED
    assert error.errors[0].field == "token"
    status, _ = await auth_service.verify_reset_token(token)
    assert status.token_valid is False


async def test_reset_token_dies_with_credential_change(auth_service, notifier):
    registered = await register_user(auth_service, "rotate@example.com")
    token = await request_reset(auth_service, notifier, "rotate@example.com")

    _, error = await auth_service.set_password(
        registered.user.id, registered.session_id, "N3w!Password", STRONG_PASSWORD
    )
    assert error is None

    status, _ = await auth_service.verify_reset_token(token)
    assert status.token_valid is False
    _, error = await auth_service.reset_password(token, "An0ther!Password")
    assert error.code == ErrorCode.VALIDATION_FAILED
    _, error = await auth_service.login(login_request("rotate@example.com", password="N3w!Password"), ip=IP)
    assert error is None


async def test_reset_token_expires(build_container, notifier, clock):
    auth_service = build_container(PASSWORD_RESET_TTL=3600).auth_service
    await register_user(auth_service, "slow@example.com")
    token = await request_reset(auth_service, notifier, "slow@example.com")
    clock.advance(seconds=3601)

    status, _ = await auth_service.verify_reset_token(token)
    assert status.token_valid is False
    _, error = await auth_service.reset_password(token, "N3w!Password")
    assert error.code == ErrorCode.VALIDATION_FAILED
    assert error.errors[0].field == "token"


async def test_rejected_new_password_keeps_reset_token(auth_service, notifier):
    await register_user(auth_service, "keep@example.com")
    token = await request_reset(auth_service, notifier, "keep@example.com")

    _, error = await auth_service.reset_password(token, "N3w!Password", "N3w!Passw0rd")
    assert error.code == ErrorCode.VALIDATION_FAILED
    assert error.errors[0].field == "confirmPassword"

    _, error = await auth_service.reset_password(token, "password")
    assert error.code == ErrorCode.VALIDATION_FAILED
    assert {e.field for e in error.errors} == {"newPassword"}

    result, error = await auth_service.reset_password(token, "N3w!Password")
    assert error is None
    assert result.password_set is True


async def test_unknown_reset_token(auth_service):
    status, error = await auth_service.verify_reset_token("no-such-token")
    assert error is None
    assert status.token_valid is False
    assert status.expires_at is None


@pytest.mark.usefixtures("anyio_backend")
def test_password_policy_mirrors_settings(build_container):
    policy = build_container(PASSWORD_EXPIRY_DAYS=90).auth_service.password_policy()
    assert policy.min_length == 8
    assert policy.require_special is True
    assert policy.expiry_days == 90


# --- Администрирование ---


async def test_suspend_and_reactivate(auth_service, container):
    admin = await register_user(auth_service, "admin@example.com")
    await promote_to_admin(container, admin.user.id)
    target = await register_user(auth_service, "target@example.com")

    suspended, error = await auth_service.suspend_account(target.user.id, actor_id=admin.user.id, reason="abuse")
    assert error is None
    assert suspended.status == "suspended"

    _, error = await auth_service.authenticate(target.tokens.access_token)
    assert error.code == ErrorCode.AUTH_SESSION_EXPIRED
    _, error = await auth_service.login(login_request("target@example.com"), ip=IP)
    assert error.code == ErrorCode.AUTH_ACCOUNT_SUSPENDED

    # unlock применим только к заблокированному аккаунту
    _, error = await auth_service.unlock_account(target.user.id, actor_id=admin.user.id)
    assert error.code == ErrorCode.VALIDATION_FAILED

    reactivated, error = await auth_service.reactivate_account(target.user.id, actor_id=admin.user.id)
    assert error is None
    assert reactivated.status == "active"
    _, error = await auth_service.login(login_request("target@example.com"), ip=IP)
    assert error is None


async def test_admin_unlock_clears_lockout(auth_service):
    target = await register_user(auth_service, "unlock@example.com")
    for _ in range(5):
        await auth_service.login(login_request("unlock@example.com", password="Wr0ng!Password"), ip=IP)

    result, error = await auth_service.unlock_account(target.user.id)
    assert error is None
    assert result.status == "active"
    assert result.locked_until is None

    _, error = await auth_service.login(login_request("unlock@example.com"), ip=IP)
    assert error is None


# --- История входов ---


async def test_session_activity_pages_newest_first(auth_service, clock):
    registered = await register_user(auth_service, "history@example.com")
    clock.advance(seconds=1)
    await auth_service.login(login_request("history@example.com"), ip=IP)
    clock.advance(seconds=1)
    await auth_service.login(login_request("history@example.com", password="Wr0ng!Password"), ip="10.0.0.9")
    clock.advance(seconds=1)
    await auth_service.login(login_request("history@example.com"), ip=IP)

    page, error = await auth_service.session_activity(registered.user.id, limit=2)
    assert error is None
    # регистрация тоже открывает сессию
    assert page.total == 4
    assert page.has_more is True
    assert [a.event for a in page.activities] == ["login", "login_failed"]
    assert page.activities[1].success is False
    assert page.activities[1].ip == "10.0.0.9"

    rest, _ = await auth_service.session_activity(registered.user.id, limit=2, offset=2)
    assert [a.event for a in rest.activities] == ["login", "login"]
    assert rest.has_more is False

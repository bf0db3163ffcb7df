# tests/integration/test_oauth_linking.py
import pytest

from libs.app.errors import ErrorCode
from libs.domain.dto.oauth import OAuthProfile
from tests.helpers import enable_totp, login_request, register_user

pytestmark = pytest.mark.anyio

IP = "10.0.0.1"


def profile(provider: str, provider_id: str, email: str, verified: bool = True, name: str = "Jane Doe") -> OAuthProfile:
    return OAuthProfile(provider=provider, provider_id=provider_id, email=email, email_verified=verified, name=name)


async def oauth_login(auth_service, oauth_service, provider: str, code: str):
    authorize, error = await oauth_service.authorization_url(provider)
    assert error is None, error
    return await auth_service.oauth_login(provider, code, authorize.state, ip=IP, user_agent="pytest")


async def test_authorization_url_carries_state(oauth_service):
    result, error = await oauth_service.authorization_url("google")
    assert error is None
    assert result.provider == "google"
    assert result.expires_in == 600
    assert f"state={result.state}" in result.auth_url
    assert "google/callback" in result.auth_url


async def test_unsupported_provider(oauth_service):
    _, error = await oauth_service.authorization_url("myspace")
    assert error.code == ErrorCode.OAUTH_UNSUPPORTED_PROVIDER
    assert error.http_status == 404


async def test_redirect_uri_must_be_allowed(auth_service, oauth_service, oauth_client):
    _, error = await oauth_service.authorization_url("google", "https://evil.example/steal")
    assert error.code == ErrorCode.VALIDATION_FAILED
    assert error.errors[0].field == "redirectUri"

    allowed, error = await oauth_service.authorization_url("google", "https://app.example/cb")
    assert error is None
    assert "redirect_uri=https://app.example/cb" in allowed.auth_url

    registered = await register_user(auth_service, "careful@example.com")
    oauth_client.add_profile("gh-code", profile("github", "gh-7", "careful@example.com"))
    _, error = await oauth_service.link(
        registered.user.id, "github", "gh-code", redirect_uri="https://evil.example/steal"
    )
    assert error.code == ErrorCode.VALIDATION_FAILED
    assert oauth_client.exchanged == []


async def test_first_oauth_login_creates_account(auth_service, oauth_service, oauth_client):
    oauth_client.add_profile("code-1", profile("google", "g-1", "new@example.com"))
    result, error = await oauth_login(auth_service, oauth_service, "google", "code-1")
    assert error is None
    assert result.tokens is not None
    assert result.user.email == "new@example.com"
    assert result.user.has_password is False
    assert result.user.email_verified is True
    assert (result.user.first_name, result.user.last_name) == ("Jane", "Doe")

    linked, _ = await oauth_service.list_linked(result.user.id)
    assert [(a.provider, a.is_primary, a.email) for a in linked] == [("google", True, "n***@example.com")]

    # повторный вход тем же аккаунтом провайдера находит того же пользователя
    oauth_client.add_profile("code-2", profile("google", "g-1", "new@example.com"))
    again, error = await oauth_login(auth_service, oauth_service, "google", "code-2")
    assert error is None
    assert again.user.id == result.user.id


async def test_state_is_single_use(auth_service, oauth_service, oauth_client):
    oauth_client.add_profile("code-1", profile("google", "g-1", "once@example.com"))
    authorize, _ = await oauth_service.authorization_url("google")
    _, error = await auth_service.oauth_login("google", "code-1", authorize.state)
    assert error is None
    _, error = await auth_service.oauth_login("google", "code-1", authorize.state)
    assert error.code == ErrorCode.OAUTH_INVALID_STATE


async def test_state_is_bound_to_provider_and_expires(auth_service, oauth_service, oauth_client, clock):
    oauth_client.add_profile("code-1", profile("github", "gh-1", "bound@example.com"))
    authorize, _ = await oauth_service.authorization_url("google")
    _, error = await auth_service.oauth_login("github", "code-1", authorize.state)
    assert error.code == ErrorCode.OAUTH_INVALID_STATE

    authorize, _ = await oauth_service.authorization_url("github")
    clock.advance(seconds=601)
    _, error = await auth_service.oauth_login("github", "code-1", authorize.state)
    assert error.code == ErrorCode.OAUTH_INVALID_STATE

    _, error = await auth_service.oauth_login("github", "code-1", "forged-state")
    assert error.code == ErrorCode.OAUTH_INVALID_STATE


async def test_provider_failure_is_reported(auth_service, oauth_service):
    _, error = await oauth_login(auth_service, oauth_service, "google", "unknown-code")
    assert error.code == ErrorCode.OAUTH_PROVIDER_ERROR
    assert error.http_status == 502


async def test_unverified_email_is_not_trusted(auth_service, oauth_service, oauth_client):
    await register_user(auth_service, "victim@example.com")
    oauth_client.add_profile("code-1", profile("github", "gh-1", "victim@example.com", verified=False))
    _, error = await oauth_login(auth_service, oauth_service, "github", "code-1")
    assert error.code == ErrorCode.OAUTH_EMAIL_UNVERIFIED


async def test_verified_email_links_existing_account(auth_service, oauth_service, oauth_client):
    registered = await register_user(auth_service, "owner@example.com")
    oauth_client.add_profile("code-1", profile("google", "g-7", "Owner@Example.com"))
    result, error = await oauth_login(auth_service, oauth_service, "google", "code-1")
    assert error is None
    assert result.user.id == registered.user.id
    assert result.user.has_password is True

    linked, _ = await oauth_service.list_linked(registered.user.id)
    assert [a.provider for a in linked] == ["google"]


async def test_oauth_login_respects_mfa_and_status(auth_service, oauth_service, mfa_service, oauth_client, clock):
    oauth_client.add_profile("code-1", profile("google", "g-1", "guarded@example.com"))
    first, _ = await oauth_login(auth_service, oauth_service, "google", "code-1")
    await enable_totp(mfa_service, clock, first.user.id)

    oauth_client.add_profile("code-2", profile("google", "g-1", "guarded@example.com"))
    second, error = await oauth_login(auth_service, oauth_service, "google", "code-2")
    assert error is None
    assert second.requires_mfa is True
    assert second.tokens is None

    await auth_service.suspend_account(first.user.id)
    oauth_client.add_profile("code-3", profile("google", "g-1", "guarded@example.com"))
    _, error = await oauth_login(auth_service, oauth_service, "google", "code-3")
    assert error.code == ErrorCode.AUTH_ACCOUNT_SUSPENDED


# --- Привязка и отвязка из настроек ---


async def test_link_and_unlink(auth_service, oauth_service, oauth_client):
    registered = await register_user(auth_service, "linker@example.com")
    user_id = registered.user.id
    oauth_client.add_profile("gh-code", profile("github", "gh-42", "linker@example.com"))

    linked, error = await oauth_service.link(user_id, "github", "gh-code")
    assert error is None
    assert linked.provider == "github"
    assert linked.is_primary is True

    _, error = await oauth_service.link(user_id, "github", "gh-code")
    assert error.code == ErrorCode.OAUTH_ALREADY_LINKED

    result, error = await oauth_service.unlink(user_id, "github")
    assert error is None and result.unlinked is True
    linked_accounts, _ = await oauth_service.list_linked(user_id)
    assert linked_accounts == []

    _, error = await oauth_service.unlink(user_id, "github")
    assert error.code == ErrorCode.NOT_FOUND


async def test_provider_account_belongs_to_one_user(auth_service, oauth_service, oauth_client):
    first = await register_user(auth_service, "first@example.com")
    second = await register_user(auth_service, "second@example.com")
    oauth_client.add_profile("code-a", profile("github", "gh-shared", "first@example.com"))
    oauth_client.add_profile("code-b", profile("github", "gh-shared", "first@example.com"))

    _, error = await oauth_service.link(first.user.id, "github", "code-a")
    assert error is None
    _, error = await oauth_service.link(second.user.id, "github", "code-b")
    assert error.code == ErrorCode.OAUTH_LINKED_TO_ANOTHER


async def test_last_sign_in_method_cannot_be_removed(auth_service, oauth_service, oauth_client):
    oauth_client.add_profile("code-1", profile("google", "g-1", "only@example.com"))
    result, _ = await oauth_login(auth_service, oauth_service, "google", "code-1")
    user_id, session_id = result.user.id, result.session_id

    _, error = await oauth_service.unlink(user_id, "google")
    assert error.code == ErrorCode.OAUTH_LAST_METHOD
    assert error.http_status == 409

    # первый пароль задаётся без текущего, после этого отвязка разрешена
    changed, error = await auth_service.set_password(user_id, session_id, "F1rst!Password")
    assert error is None
    assert changed.sessions_terminated == 0

    _, error = await oauth_service.unlink(user_id, "google")
    assert error is None

    login, error = await auth_service.login(login_request("only@example.com", password="F1rst!Password"), ip=IP)
    assert error is None
    assert login.user.has_password is True


async def test_second_provider_allows_unlinking_the_first(auth_service, oauth_service, oauth_client):
    oauth_client.add_profile("code-1", profile("google", "g-1", "two@example.com"))
    result, _ = await oauth_login(auth_service, oauth_service, "google", "code-1")
    user_id = result.user.id

    oauth_client.add_profile("gh-code", profile("github", "gh-1", "two@example.com"))
    linked, error = await oauth_service.link(user_id, "github", "gh-code")
    assert error is None
    assert linked.is_primary is False

    _, error = await oauth_service.unlink(user_id, "google")
    assert error is None
    remaining, _ = await oauth_service.list_linked(user_id)
    assert [(a.provider, a.is_primary) for a in remaining] == [("github", True)]

    _, error = await oauth_service.unlink(user_id, "github")
    assert error.code == ErrorCode.OAUTH_LAST_METHOD

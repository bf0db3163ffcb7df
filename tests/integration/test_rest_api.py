# tests/integration/test_rest_api.py
import httpx
import pytest

from apps.auth_svc.auth_svc_main import create_app
from libs.domain.dto.oauth import OAuthProfile
from tests.helpers import STRONG_PASSWORD, promote_to_admin, totp_code

pytestmark = pytest.mark.anyio


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def register(client, email: str, **extra) -> dict:
    response = await client.post("/v1/auth/register", json={"email": email, "password": STRONG_PASSWORD, **extra})
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def test_register_returns_camel_case_envelope(client):
    response = await client.post(
        "/v1/auth/register",
        json={"email": "rest@example.com", "password": STRONG_PASSWORD, "firstName": "Rest", "device": {"deviceId": "web-1"}},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["errorCode"] is None
    data = body["data"]
    assert data["user"]["email"] == "rest@example.com"
    assert data["user"]["firstName"] == "Rest"
    assert data["user"]["hasPassword"] is True
    assert data["tokens"]["tokenType"] == "Bearer"
    assert data["tokens"]["expiresIn"] == 86400
    assert data["requiresEmailVerification"] is False
    assert "password_hash" not in response.text


async def test_auth_responses_are_not_cacheable(client):
    response = await client.post("/v1/auth/login", json={"email": "nobody@example.com", "password": "x"})
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-request-id"]

    response = await client.get("/health/live", headers={"x-request-id": "req-42"})
    assert response.headers["x-request-id"] == "req-42"
    assert "cache-control" not in response.headers


async def test_login_and_me(client):
    await register(client, "me@example.com", username="me_user")
    response = await client.post("/v1/auth/login", json={"email": "ME@example.com", "password": STRONG_PASSWORD})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["requiresMfa"] is False
    assert data["passwordExpired"] is False

    response = await client.get("/v1/auth/me", headers=bearer(data["tokens"]["accessToken"]))
    assert response.status_code == 200
    assert response.json()["data"]["username"] == "me_user"


async def test_invalid_credentials_envelope(client):
    await register(client, "wrong@example.com")
    response = await client.post("/v1/auth/login", json={"email": "wrong@example.com", "password": "Nope!Nope1234"})
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    body = response.json()
    assert body == {"success": False, "message": body["message"], "errorCode": "auth.invalid_credentials"}


async def test_missing_or_malformed_bearer(client):
    response = await client.get("/v1/auth/me")
    assert response.status_code == 401
    assert response.json()["errorCode"] == "auth.token_invalid"

    response = await client.get("/v1/auth/me", headers={"Authorization": "Basic abc"})
    assert response.status_code == 401

    response = await client.get("/v1/auth/me", headers=bearer("not-a-jwt"))
    assert response.status_code == 401
    assert response.json()["errorCode"] == "auth.token_invalid"


async def test_validation_errors_hide_secrets(client):
    response = await client.post(
        "/v1/auth/register",
        json={"email": "not-an-email", "password": "p" * 300, "unexpected": True},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["errorCode"] == "validation.failed"
    by_field = {e["field"]: e for e in body["errors"]}
    assert by_field["email"]["value"] == "not-an-email"
    assert by_field["password"]["value"] is None
    assert "unexpected" in by_field
    assert "p" * 300 not in response.text


async def test_weak_password_is_reported_per_field(client):
    response = await client.post("/v1/auth/register", json={"email": "weak@example.com", "password": "short"})
    assert response.status_code == 400
    body = response.json()
    assert body["errorCode"] == "validation.failed"
    assert {e["field"] for e in body["errors"]} == {"password"}


async def test_duplicate_registration(client):
    await register(client, "dup@example.com")
    response = await client.post("/v1/auth/register", json={"email": "dup@example.com", "password": STRONG_PASSWORD})
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "email"


async def test_rate_limit_sets_retry_after(client):
    for _ in range(10):
        await client.post("/v1/auth/login", json={"email": "flood@example.com", "password": "x"})
    response = await client.post("/v1/auth/login", json={"email": "flood@example.com", "password": "x"})
    assert response.status_code == 429
    assert response.json()["errorCode"] == "rate_limit.exceeded"
    assert int(response.headers["retry-after"]) > 0


async def test_rate_limit_ignores_spoofed_forwarded_for(client):
    for i in range(10):
        await client.post(
            "/v1/auth/login",
            json={"email": "victim@example.com", "password": "x"},
            headers={"X-Forwarded-For": f"10.0.0.{i}"},
        )
    response = await client.post(
        "/v1/auth/login",
        json={"email": "victim@example.com", "password": "x"},
        headers={"X-Forwarded-For": "10.0.0.99"},
    )
    assert response.status_code == 429
    assert response.json()["errorCode"] == "rate_limit.exceeded"


async def test_trusted_proxy_forwards_client_address(build_container):
    container = build_container(TRUSTED_PROXIES=["127.0.0.1"])
    app = create_app(container.settings)
    app.state.container = container
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as proxied:
        for i in range(11):
            response = await proxied.post(
                "/v1/auth/login",
                json={"email": "office@example.com", "password": "x"},
                headers={"X-Forwarded-For": f"198.51.100.{i}"},
            )
            assert response.status_code == 401

        for _ in range(10):
            await proxied.post(
                "/v1/auth/login",
                json={"email": "office@example.com", "password": "x"},
                headers={"X-Forwarded-For": "198.51.100.200"},
            )
        response = await proxied.post(
            "/v1/auth/login",
            json={"email": "office@example.com", "password": "x"},
            headers={"X-Forwarded-For": "198.51.100.200"},
        )
        assert response.status_code == 429


async def test_refresh_logout_cycle(client):
    data = await register(client, "cycle@example.com")
    refresh_token = data["tokens"]["refreshToken"]

    response = await client.post("/v1/auth/refresh", json={"refreshToken": refresh_token})
    assert response.status_code == 200
    tokens = response.json()["data"]["tokens"]
    assert tokens["refreshToken"] != refresh_token

    response = await client.post("/v1/auth/refresh", json={"refreshToken": refresh_token})
    assert response.status_code == 401
    assert response.json()["errorCode"] == "auth.token_revoked"

    # выход работает и для уже завершённой сессии
    for _ in range(2):
        response = await client.post("/v1/auth/logout", headers=bearer(tokens["accessToken"]))
        assert response.status_code == 200
        assert response.json()["data"]["loggedOut"] is True


async def test_set_password_requires_current(client):
    data = await register(client, "pw@example.com")
    headers = bearer(data["tokens"]["accessToken"])

    response = await client.post("/v1/auth/password", headers=headers, json={"newPassword": "N3w!Password99"})
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "currentPassword"

    response = await client.post(
        "/v1/auth/password",
        headers=headers,
        json={"newPassword": "N3w!Password99", "currentPassword": STRONG_PASSWORD},
    )
    assert response.status_code == 200
    assert response.json()["data"]["passwordSet"] is True


async def test_password_reset_endpoints(client, notifier):
    data = await register(client, "forgot@example.com")

    response = await client.post("/v1/auth/forgot-password", json={"email": "forgot@example.com"})
    assert response.status_code == 200
    assert response.json()["data"]["ok"] is True
    token = notifier.last_email_token()

    response = await client.post("/v1/auth/reset-password/verify", json={"token": token})
    assert response.json()["data"]["tokenValid"] is True

    response = await client.post(
        "/v1/auth/reset-password",
        json={"token": token, "newPassword": "N3w!Password99", "confirmPassword": "different"},
    )
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "confirmPassword"
    assert "different" not in response.text

    response = await client.post(
        "/v1/auth/reset-password",
        json={"token": token, "newPassword": "N3w!Password99", "confirmPassword": "N3w!Password99"},
    )
    assert response.status_code == 200
    assert response.json()["data"]["sessionsTerminated"] == 1
    assert (await client.get("/v1/auth/me", headers=bearer(data["tokens"]["accessToken"]))).status_code == 401

    response = await client.post("/v1/auth/reset-password", json={"token": token, "newPassword": "N3w!Password99"})
    assert response.status_code == 400
    assert response.json()["errorCode"] == "validation.failed"


async def test_password_policy_is_public(client):
    response = await client.get("/v1/auth/password/policy")
    assert response.status_code == 200
    policy = response.json()["data"]
    assert policy["minLength"] == 8
    assert policy["requireUppercase"] is True
    assert "expiryDays" in policy


async def test_mfa_endpoints(client, clock):
    data = await register(client, "mfa-rest@example.com")
    headers = bearer(data["tokens"]["accessToken"])

    response = await client.post("/v1/auth/mfa/setup", headers=headers, json={"method": "totp"})
    assert response.status_code == 200
    setup = response.json()["data"]
    assert setup["qrCode"].startswith("data:image/png;base64,")
    assert setup["otpauthUrl"].startswith("otpauth://totp/")

    response = await client.post(
        "/v1/auth/mfa/verify-setup",
        headers=headers,
        json={"method": "totp", "code": totp_code(setup["secret"], clock.now(), periods=-1)},
    )
    assert response.status_code == 200
    assert response.json()["data"]["primaryMethod"] == "totp"

    response = await client.post("/v1/auth/mfa/backup-codes", headers=headers)
    assert len(response.json()["data"]["codes"]) == 10

    status = (await client.get("/v1/auth/mfa/status", headers=headers)).json()["data"]
    assert status["isEnabled"] is True
    assert status["backupCodesRemaining"] == 10
    assert "secret" not in status

    response = await client.post("/v1/auth/login", json={"email": "mfa-rest@example.com", "password": STRONG_PASSWORD})
    login = response.json()["data"]
    assert login["requiresMfa"] is True
    assert login["tokens"] is None
    challenge_id = login["challenge"]["challengeId"]

    response = await client.post(
        "/v1/auth/mfa/verify", json={"challengeId": challenge_id, "method": "totp", "code": "000000"}
    )
    assert response.status_code == 401
    assert response.json()["errorCode"] == "mfa.invalid"

    response = await client.post(
        "/v1/auth/mfa/verify",
        json={"challengeId": challenge_id, "method": "totp", "code": totp_code(setup["secret"], clock.now())},
    )
    assert response.status_code == 200
    assert response.json()["data"]["tokens"]["accessToken"]

    response = await client.post(
        "/v1/auth/mfa/disable", headers=headers, json={"method": "totp", "password": STRONG_PASSWORD}
    )
    assert response.status_code == 200
    assert response.json()["data"]["isEnabled"] is False


async def test_session_endpoints(client, clock):
    first = await register(client, "sess@example.com", device={"deviceId": "laptop"})
    headers = bearer(first["tokens"]["accessToken"])
    clock.advance(seconds=1)
    second = (await client.post(
        "/v1/auth/login", json={"email": "sess@example.com", "password": STRONG_PASSWORD}
    )).json()["data"]

    current = (await client.get("/v1/auth/session", headers=headers)).json()["data"]
    assert current["isCurrent"] is True
    assert current["deviceInfo"]["device_id"] == "laptop"

    sessions = (await client.get("/v1/auth/session/all", headers=headers)).json()["data"]
    assert len(sessions) == 2

    response = await client.post("/v1/auth/session/trust-device", headers=headers, json={"deviceName": "Laptop"})
    assert response.status_code == 200
    devices = (await client.get("/v1/auth/session/trusted-devices", headers=headers)).json()["data"]
    assert [d["deviceId"] for d in devices] == ["laptop"]
    response = await client.delete("/v1/auth/session/trusted-devices/laptop", headers=headers)
    assert response.status_code == 200

    response = await client.delete(f"/v1/auth/session/{second['sessionId']}", headers=headers)
    assert response.json()["data"]["terminated"] == 1
    response = await client.get("/v1/auth/me", headers=bearer(second["tokens"]["accessToken"]))
    assert response.status_code == 401
    assert response.json()["errorCode"] == "auth.session_expired"

    response = await client.post("/v1/auth/session/terminate-all", headers=headers, json={"includeCurrent": True})
    assert response.json()["data"]["terminated"] == 1
    assert (await client.get("/v1/auth/me", headers=headers)).status_code == 401


async def test_session_activity_endpoint(client):
    data = await register(client, "activity@example.com")
    headers = bearer(data["tokens"]["accessToken"])
    await client.post("/v1/auth/login", json={"email": "activity@example.com", "password": "Wr0ng!Password"})

    response = await client.get("/v1/auth/session/activity", headers=headers, params={"limit": 1})
    assert response.status_code == 200
    page = response.json()["data"]
    assert page["total"] == 2
    assert page["hasMore"] is True
    assert page["activities"][0]["createdAt"]

    response = await client.get("/v1/auth/session/activity", headers=headers, params={"limit": 500})
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "limit"
    assert (await client.get("/v1/auth/session/activity")).status_code == 401


async def test_admin_routes_require_admin(client, container):
    admin = await register(client, "admin@example.com")
    target = await register(client, "target@example.com")
    admin_headers = bearer(admin["tokens"]["accessToken"])
    target_id = target["user"]["id"]

    response = await client.post(f"/v1/auth/admin/users/{target_id}/suspend", headers=admin_headers)
    assert response.status_code == 403
    assert response.json()["errorCode"] == "auth.forbidden"

    await promote_to_admin(container, admin["user"]["id"])
    response = await client.post(
        f"/v1/auth/admin/users/{target_id}/suspend", headers=admin_headers, json={"reason": "abuse"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "suspended"

    response = await client.get("/v1/auth/me", headers=bearer(target["tokens"]["accessToken"]))
    assert response.status_code in (401, 403)

    response = await client.post(f"/v1/auth/admin/users/{target_id}/reactivate", headers=admin_headers)
    assert response.json()["data"]["status"] == "active"


async def test_oauth_callback_flow(client, oauth_client):
    response = await client.get("/v1/auth/oauth/google", params={"redirectUri": "https://evil.example/steal"})
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "redirectUri"

    response = await client.get("/v1/auth/oauth/google", params={"redirectUri": "https://app.example/cb"})
    assert response.status_code == 200
    authorize = response.json()["data"]
    assert "redirect_uri=https://app.example/cb" in authorize["authUrl"]

    oauth_client.add_profile(
        "good-code",
        OAuthProfile(provider="google", provider_id="g-1", email="cb@example.com", email_verified=True, name="Cb"),
    )
    response = await client.get(
        "/v1/auth/oauth/google/callback", params={"code": "good-code", "state": authorize["state"], "deviceId": "web"}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["hasPassword"] is False
    assert oauth_client.exchanged[-1] == ("google", "good-code", "https://app.example/cb")

    headers = bearer(data["tokens"]["accessToken"])
    linked = (await client.get("/v1/auth/oauth/linked", headers=headers)).json()["data"]
    assert [a["provider"] for a in linked] == ["google"]

    response = await client.delete("/v1/auth/oauth/unlink/google", headers=headers)
    assert response.status_code == 409
    assert response.json()["errorCode"] == "oauth.last_method"

    response = await client.get(
        "/v1/auth/oauth/google/callback", params={"code": "good-code", "state": authorize["state"]}
    )
    assert response.status_code == 400
    assert response.json()["errorCode"] == "oauth.invalid_state"


async def test_unknown_provider_and_route(client):
    response = await client.get("/v1/auth/oauth/myspace")
    assert response.status_code == 404
    assert response.json()["errorCode"] == "oauth.unsupported_provider"

    response = await client.get("/v1/auth/nowhere")
    assert response.status_code == 404
    assert response.json()["errorCode"] == "common.not_found"

# tests/unit/test_jwt_manager.py
import uuid
from datetime import timedelta

import jwt
import pytest

from apps.auth_svc.utils.jwt_manager import REFRESH_TOKEN_TYPE, JwtManager
from libs.app.errors import ErrorCode

SECRET = "unit-test-secret-0123456789abcdef0123456789"


@pytest.fixture
def manager(clock):
    return JwtManager(SECRET, clock)


def test_access_token_roundtrip(manager):
    user_id, session_id = uuid.uuid4(), uuid.uuid4()
    token = manager.create_access_token(user_id, "user", session_id, timedelta(minutes=15))
    payload, error = manager.decode_token(token)
    assert error is None
    assert payload["sub"] == str(user_id)
    assert payload["sid"] == str(session_id)
    assert payload["role"] == "user"


def test_expiry_follows_injected_clock(manager, clock):
    token = manager.create_access_token(uuid.uuid4(), "user", uuid.uuid4(), timedelta(minutes=15))
    clock.advance(minutes=14, seconds=59)
    assert manager.decode_token(token)[1] is None
    clock.advance(seconds=1)
    assert manager.decode_token(token) == (None, ErrorCode.AUTH_TOKEN_EXPIRED)


def test_refresh_token_is_not_an_access_token(manager):
    token, jti = manager.create_refresh_token(uuid.uuid4(), uuid.uuid4(), timedelta(days=7))
    assert manager.decode_token(token) == (None, ErrorCode.AUTH_TOKEN_INVALID)
    payload, error = manager.decode_token(token, REFRESH_TOKEN_TYPE)
    assert error is None
    assert payload["jti"] == str(jti)


def test_tampered_and_foreign_tokens(manager, clock):
    token = manager.create_access_token(uuid.uuid4(), "user", uuid.uuid4(), timedelta(minutes=15))
    assert manager.decode_token(token[:-2] + "xx")[1] == ErrorCode.AUTH_TOKEN_INVALID

    foreign = JwtManager("another-secret-0123456789abcdef0123456789", clock)
    assert foreign.decode_token(token)[1] == ErrorCode.AUTH_TOKEN_INVALID

    forged = jwt.encode({"sub": "x", "typ": "access"}, SECRET, algorithm="HS256")
    assert manager.decode_token(forged)[1] == ErrorCode.AUTH_TOKEN_INVALID

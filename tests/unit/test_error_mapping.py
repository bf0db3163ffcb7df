# tests/unit/test_error_mapping.py
import pytest
from fastapi import status

from libs.app.errors import (
    DEFAULT_MESSAGES,
    ERROR_CODE_TO_HTTP_STATUS,
    ErrorCode,
    ServiceError,
    get_http_status,
    validation_error,
)
from libs.app.exception_handlers import ServiceHTTPException


# Используем параметризацию pytest, чтобы не писать много одинаковых тестов
@pytest.mark.parametrize(
    "error_code, expected_status",
    [
        (ErrorCode.AUTH_INVALID_CREDENTIALS, status.HTTP_401_UNAUTHORIZED),
        (ErrorCode.AUTH_ACCOUNT_LOCKED, status.HTTP_423_LOCKED),
        (ErrorCode.AUTH_ACCOUNT_SUSPENDED, status.HTTP_403_FORBIDDEN),
        (ErrorCode.AUTH_TOKEN_REVOKED, status.HTTP_401_UNAUTHORIZED),
        (ErrorCode.AUTH_SESSION_LIMIT, status.HTTP_409_CONFLICT),
        (ErrorCode.MFA_INVALID, status.HTTP_401_UNAUTHORIZED),
        (ErrorCode.MFA_LOCKED, status.HTTP_423_LOCKED),
        (ErrorCode.MFA_TOO_MANY_ATTEMPTS, status.HTTP_429_TOO_MANY_REQUESTS),
        (ErrorCode.RATE_LIMIT_EXCEEDED, status.HTTP_429_TOO_MANY_REQUESTS),
        (ErrorCode.OAUTH_LAST_METHOD, status.HTTP_409_CONFLICT),
        (ErrorCode.OAUTH_INVALID_STATE, status.HTTP_400_BAD_REQUEST),
        (ErrorCode.OAUTH_PROVIDER_ERROR, status.HTTP_502_BAD_GATEWAY),
        (ErrorCode.VALIDATION_FAILED, status.HTTP_400_BAD_REQUEST),
        (ErrorCode.NOTIFICATION_UNAVAILABLE, status.HTTP_503_SERVICE_UNAVAILABLE),
        (ErrorCode.INTERNAL_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR),
        (
            "some.unknown.error",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        ),  # Проверяем статус по умолчанию
    ],
)
def test_error_code_to_http_status_mapping(error_code: str, expected_status: int):
    """
    Проверяет, что функция get_http_status корректно мапит
    коды ошибок в HTTP-статусы.
    """
    http_status = get_http_status(error_code)
    assert http_status == expected_status


def test_every_error_code_has_status_and_message():
    for code in ErrorCode:
        assert code in ERROR_CODE_TO_HTTP_STATUS, code
        assert code in DEFAULT_MESSAGES, code


def test_retry_after_header_for_lockouts():
    exc = ServiceHTTPException(ServiceError(code=ErrorCode.RATE_LIMIT_EXCEEDED, retry_after=42))
    assert exc.status_code == 429
    assert exc.headers == {"Retry-After": "42"}


def test_unauthorized_carries_bearer_challenge():
    exc = ServiceHTTPException(ServiceError(code=ErrorCode.AUTH_TOKEN_EXPIRED))
    assert exc.headers == {"WWW-Authenticate": "Bearer"}


def test_public_message_falls_back_to_default():
    error = validation_error("email", "Email is already registered.", "a@b.c")
    assert error.http_status == 400
    assert error.public_message == "Validation failed."
    assert error.errors[0].field == "email"

# libs/app/errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from fastapi import status


class ErrorCode(str, Enum):
    # Auth
    AUTH_INVALID_CREDENTIALS = "auth.invalid_credentials"
    AUTH_ACCOUNT_LOCKED = "auth.account_locked"
    AUTH_ACCOUNT_SUSPENDED = "auth.account_suspended"
    AUTH_ACCOUNT_INACTIVE = "auth.account_inactive"
    AUTH_EMAIL_NOT_VERIFIED = "auth.email_not_verified"
    AUTH_FORBIDDEN = "auth.forbidden"

    # Токены и сессии
    AUTH_TOKEN_INVALID = "auth.token_invalid"
    AUTH_TOKEN_EXPIRED = "auth.token_expired"
    AUTH_TOKEN_REVOKED = "auth.token_revoked"
    AUTH_SESSION_EXPIRED = "auth.session_expired"
    AUTH_SESSION_LIMIT = "auth.session_limit"

    # MFA
    MFA_REQUIRED = "mfa.required"
    MFA_INVALID = "mfa.invalid"
    MFA_EXPIRED = "mfa.expired"
    MFA_LOCKED = "mfa.locked"
    MFA_TOO_MANY_ATTEMPTS = "mfa.too_many_attempts"
    MFA_NOT_ENABLED = "mfa.not_enabled"
    MFA_ALREADY_ENABLED = "mfa.already_enabled"
    MFA_METHOD_NOT_ALLOWED = "mfa.method_not_allowed"

    # Rate limit
    RATE_LIMIT_EXCEEDED = "rate_limit.exceeded"

    # OAuth
    OAUTH_ALREADY_LINKED = "oauth.already_linked"
    OAUTH_LINKED_TO_ANOTHER = "oauth.linked_to_another"
    OAUTH_LAST_METHOD = "oauth.last_method"
    OAUTH_INVALID_STATE = "oauth.invalid_state"
    OAUTH_UNSUPPORTED_PROVIDER = "oauth.unsupported_provider"
    OAUTH_PROVIDER_ERROR = "oauth.provider_error"
    OAUTH_EMAIL_UNVERIFIED = "oauth.email_unverified"

    # Validation
    VALIDATION_FAILED = "validation.failed"

    # Common
    NOT_FOUND = "common.not_found"
    NOTIFICATION_UNAVAILABLE = "common.notification_unavailable"
    INTERNAL_ERROR = "common.internal_error"


# Карта для преобразования кодов ошибок в HTTP статусы
ERROR_CODE_TO_HTTP_STATUS = {
    ErrorCode.AUTH_INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTH_ACCOUNT_LOCKED: status.HTTP_423_LOCKED,
    ErrorCode.AUTH_ACCOUNT_SUSPENDED: status.HTTP_403_FORBIDDEN,
    ErrorCode.AUTH_ACCOUNT_INACTIVE: status.HTTP_403_FORBIDDEN,
    ErrorCode.AUTH_EMAIL_NOT_VERIFIED: status.HTTP_403_FORBIDDEN,
    ErrorCode.AUTH_FORBIDDEN: status.HTTP_403_FORBIDDEN,

    ErrorCode.AUTH_TOKEN_INVALID: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTH_TOKEN_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTH_TOKEN_REVOKED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTH_SESSION_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTH_SESSION_LIMIT: status.HTTP_409_CONFLICT,

    ErrorCode.MFA_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.MFA_INVALID: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.MFA_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.MFA_LOCKED: status.HTTP_423_LOCKED,
    ErrorCode.MFA_TOO_MANY_ATTEMPTS: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.MFA_NOT_ENABLED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.MFA_ALREADY_ENABLED: status.HTTP_409_CONFLICT,
    ErrorCode.MFA_METHOD_NOT_ALLOWED: status.HTTP_400_BAD_REQUEST,

    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,

    ErrorCode.OAUTH_ALREADY_LINKED: status.HTTP_409_CONFLICT,
    ErrorCode.OAUTH_LINKED_TO_ANOTHER: status.HTTP_409_CONFLICT,
    ErrorCode.OAUTH_LAST_METHOD: status.HTTP_409_CONFLICT,
    ErrorCode.OAUTH_INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.OAUTH_UNSUPPORTED_PROVIDER: status.HTTP_404_NOT_FOUND,
    ErrorCode.OAUTH_PROVIDER_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.OAUTH_EMAIL_UNVERIFIED: status.HTTP_400_BAD_REQUEST,

    ErrorCode.VALIDATION_FAILED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.NOTIFICATION_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# Сообщения по умолчанию; клиенту никогда не уходят внутренние детали
DEFAULT_MESSAGES = {
    ErrorCode.AUTH_INVALID_CREDENTIALS: "Invalid email or password.",
    ErrorCode.AUTH_ACCOUNT_LOCKED: "Account is temporarily locked.",
    ErrorCode.AUTH_ACCOUNT_SUSPENDED: "Account is suspended.",
    ErrorCode.AUTH_ACCOUNT_INACTIVE: "Account is inactive.",
    ErrorCode.AUTH_EMAIL_NOT_VERIFIED: "Email address is not verified.",
    ErrorCode.AUTH_FORBIDDEN: "Access denied.",
    ErrorCode.AUTH_TOKEN_INVALID: "Token is invalid.",
    ErrorCode.AUTH_TOKEN_EXPIRED: "Token has expired.",
    ErrorCode.AUTH_TOKEN_REVOKED: "Token has been revoked.",
    ErrorCode.AUTH_SESSION_EXPIRED: "Session has expired.",
    ErrorCode.AUTH_SESSION_LIMIT: "Maximum number of concurrent sessions reached.",
    ErrorCode.MFA_REQUIRED: "Multi-factor authentication is required.",
    ErrorCode.MFA_INVALID: "Invalid verification code.",
    ErrorCode.MFA_EXPIRED: "Verification challenge has expired.",
    ErrorCode.MFA_LOCKED: "Too many failed verification attempts. Try again later.",
    ErrorCode.MFA_TOO_MANY_ATTEMPTS: "Too many codes requested. Try again later.",
    ErrorCode.MFA_NOT_ENABLED: "Multi-factor authentication is not enabled.",
    ErrorCode.MFA_ALREADY_ENABLED: "This MFA method is already enabled.",
    ErrorCode.MFA_METHOD_NOT_ALLOWED: "This MFA method is not available.",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Too many attempts. Please try again later.",
    ErrorCode.OAUTH_ALREADY_LINKED: "This provider is already linked to your account.",
    ErrorCode.OAUTH_LINKED_TO_ANOTHER: "This provider account is linked to another user.",
    ErrorCode.OAUTH_LAST_METHOD: "Cannot remove the last sign-in method. Set a password first.",
    ErrorCode.OAUTH_INVALID_STATE: "Invalid or expired OAuth state.",
    ErrorCode.OAUTH_UNSUPPORTED_PROVIDER: "Unsupported OAuth provider.",
    ErrorCode.OAUTH_PROVIDER_ERROR: "OAuth provider request failed.",
    ErrorCode.OAUTH_EMAIL_UNVERIFIED: "Provider did not return a verified email address.",
    ErrorCode.VALIDATION_FAILED: "Validation failed.",
    ErrorCode.NOT_FOUND: "Resource not found.",
    ErrorCode.NOTIFICATION_UNAVAILABLE: "Unable to deliver the verification code.",
    ErrorCode.INTERNAL_ERROR: "Internal server error.",
}


def get_http_status(error_code: str) -> int:
    """Возвращает HTTP статус для кода ошибки, по умолчанию 500."""
    return ERROR_CODE_TO_HTTP_STATUS.get(error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def get_default_message(error_code: str) -> str:
    return DEFAULT_MESSAGES.get(error_code, DEFAULT_MESSAGES[ErrorCode.INTERNAL_ERROR])


@dataclass
class FieldError:
    field: str
    message: str
    value: Any = None


@dataclass
class ServiceError:
    """
    Ошибка сервисного слоя. Сервисы возвращают её вторым элементом кортежа
    (result, error), REST-слой превращает её в HTTP-ответ.
    """

    code: ErrorCode
    message: Optional[str] = None
    errors: List[FieldError] = field(default_factory=list)
    retry_after: Optional[int] = None

    @property
    def http_status(self) -> int:
        return get_http_status(self.code)

    @property
    def public_message(self) -> str:
        return self.message or get_default_message(self.code)


def fail(code: ErrorCode, message: str | None = None, **kwargs: Any) -> ServiceError:
    return ServiceError(code=code, message=message, **kwargs)


def validation_error(field_name: str, message: str, value: Any = None) -> ServiceError:
    return ServiceError(
        code=ErrorCode.VALIDATION_FAILED,
        errors=[FieldError(field=field_name, message=message, value=value)],
    )

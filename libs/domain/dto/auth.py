# libs/domain/dto/auth.py
from __future__ import annotations
import uuid
from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import EmailStr, Field, StringConstraints

from .base import CamelModel, CamelRequest
from .mfa import MfaChallengeInfo


# ----- DEVICE -----
class DeviceInfo(CamelRequest):
    """Сведения об устройстве клиента. ip и userAgent сервер дополняет сам."""

    device_id: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=128)]] = None
    device_name: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=128)]] = None
    platform: Optional[Annotated[str, StringConstraints(max_length=64)]] = None
    browser: Optional[Annotated[str, StringConstraints(max_length=64)]] = None
    user_agent: Optional[Annotated[str, StringConstraints(max_length=512)]] = None
    ip: Optional[Annotated[str, StringConstraints(max_length=64)]] = None


# ----- TOKENS -----
class TokenPair(CamelModel):
    access_token: str
    refresh_token: str
    expires_in: int = Field(..., description="Время жизни access-токена, сек")
    token_type: str = "Bearer"


class TokenClaims(CamelModel):
    """Проверенные claims access-токена."""

    user_id: uuid.UUID
    session_id: uuid.UUID
    role: str
    jti: str
    exp: int


# ----- USER -----
class UserPublic(CamelModel):
    id: uuid.UUID
    email: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    status: str
    role: str
    email_verified: bool
    has_password: bool
    created_at: datetime


# ----- REGISTER -----
class RegisterRequest(CamelRequest):
    email: EmailStr
    password: Annotated[str, StringConstraints(min_length=1, max_length=256)]
    username: Optional[Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=50)]] = None
    first_name: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]] = None
    last_name: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]] = None
    device: Optional[DeviceInfo] = None


class RegisterResult(CamelModel):
    user: UserPublic
    tokens: Optional[TokenPair] = None
    session_id: Optional[uuid.UUID] = None
    requires_email_verification: bool = False


# ----- LOGIN -----
class LoginRequest(CamelRequest):
    email: EmailStr
    password: Annotated[str, StringConstraints(min_length=1, max_length=256)]
    device: Optional[DeviceInfo] = None


class LoginResult(CamelModel):
    """Либо токены и сессия, либо MFA-challenge (requiresMfa=true)."""

    requires_mfa: bool = False
    challenge: Optional[MfaChallengeInfo] = None
    user: Optional[UserPublic] = None
    tokens: Optional[TokenPair] = None
    session_id: Optional[uuid.UUID] = None
    # пароль просрочен по PASSWORD_EXPIRY_DAYS: вход разрешён, клиент предлагает смену
    password_expired: bool = False


# ----- REFRESH / LOGOUT -----
class RefreshRequest(CamelRequest):
    refresh_token: Annotated[str, StringConstraints(min_length=1)]
    device_id: Optional[str] = None


class RefreshResult(CamelModel):
    tokens: TokenPair
    session_id: uuid.UUID


class LogoutResult(CamelModel):
    logged_out: bool = True
    sessions_terminated: int = 0


# ----- EMAIL VERIFICATION / PASSWORD -----
class VerifyEmailRequest(CamelRequest):
    token: Annotated[str, StringConstraints(min_length=1, max_length=256)]


class ResendVerificationRequest(CamelRequest):
    email: EmailStr


class SetPasswordRequest(CamelRequest):
    new_password: Annotated[str, StringConstraints(min_length=1, max_length=256)]
    current_password: Optional[str] = None


class PasswordChangedResult(CamelModel):
    password_set: bool = True
    sessions_terminated: int = 0


# ----- PASSWORD RESET -----
class ForgotPasswordRequest(CamelRequest):
    email: EmailStr


class ResetTokenRequest(CamelRequest):
    token: Annotated[str, StringConstraints(min_length=1, max_length=256)]


class ResetTokenStatus(CamelModel):
    token_valid: bool
    expires_at: Optional[datetime] = None


class ResetPasswordRequest(CamelRequest):
    token: Annotated[str, StringConstraints(min_length=1, max_length=256)]
    new_password: Annotated[str, StringConstraints(min_length=1, max_length=256)]
    confirm_password: Optional[str] = None


class PasswordPolicy(CamelModel):
    """Правила, по которым сервер проверяет новые пароли."""

    min_length: int
    max_length: int
    require_lowercase: bool = True
    require_uppercase: bool = True
    require_digit: bool = True
    require_special: bool = True
    # None: срок действия пароля не ограничен
    expiry_days: Optional[int] = None


# ----- ADMIN -----
class SuspendAccountRequest(CamelRequest):
    reason: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]] = None


class AccountStatusResult(CamelModel):
    user_id: uuid.UUID
    status: str
    locked_until: Optional[datetime] = None


class MessageResult(CamelModel):
    ok: bool = True
    detail: Optional[str] = None


__all__: List[str] = [
    "DeviceInfo",
    "TokenPair",
    "TokenClaims",
    "UserPublic",
    "RegisterRequest",
    "RegisterResult",
    "LoginRequest",
    "LoginResult",
    "RefreshRequest",
    "RefreshResult",
    "LogoutResult",
    "VerifyEmailRequest",
    "ResendVerificationRequest",
    "SetPasswordRequest",
    "PasswordChangedResult",
    "ForgotPasswordRequest",
    "ResetTokenRequest",
    "ResetTokenStatus",
    "ResetPasswordRequest",
    "PasswordPolicy",
    "SuspendAccountRequest",
    "AccountStatusResult",
    "MessageResult",
]

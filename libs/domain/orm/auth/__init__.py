# libs/domain/orm/auth/__init__.py
from .user import User
from .credentials import Credentials
from .auth_provider import AuthProvider
from .mfa import MfaConfig, BackupCode, MfaVerificationEvent
from .session import UserSession, TrustedDevice
from .refresh_token import RefreshToken
from .audit import AuthEvent
from .enums import (
    AccountStatus,
    AccountRole,
    MfaMethod,
    OAuthProviderName,
    BACKUP_CODE_METHOD,
)

__all__ = [
    "User",
    "Credentials",
    "AuthProvider",
    "MfaConfig",
    "BackupCode",
    "MfaVerificationEvent",
    "UserSession",
    "TrustedDevice",
    "RefreshToken",
    "AuthEvent",
    "AccountStatus",
    "AccountRole",
    "MfaMethod",
    "OAuthProviderName",
    "BACKUP_CODE_METHOD",
]

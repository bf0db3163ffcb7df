from .base import CamelModel as CamelModel, CamelRequest as CamelRequest
from .errors import FieldErrorDTO as FieldErrorDTO
from .auth import (
    DeviceInfo as DeviceInfo,
    TokenPair as TokenPair,
    TokenClaims as TokenClaims,
    UserPublic as UserPublic,
    RegisterRequest as RegisterRequest,
    RegisterResult as RegisterResult,
    LoginRequest as LoginRequest,
    LoginResult as LoginResult,
    RefreshRequest as RefreshRequest,
    RefreshResult as RefreshResult,
    LogoutResult as LogoutResult,
)
from .mfa import (
    MfaChallengeInfo as MfaChallengeInfo,
    MfaSetupResult as MfaSetupResult,
    MfaStatus as MfaStatus,
    BackupCodesResult as BackupCodesResult,
)
from .oauth import OAuthProfile as OAuthProfile, LinkedAccount as LinkedAccount
from .session import SessionInfo as SessionInfo, TrustedDeviceInfo as TrustedDeviceInfo

# tests/helpers.py
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pyotp
from sqlalchemy import update

from apps.auth_svc.config.settings_auth import AuthServiceSettings
from apps.auth_svc.oauth.i_oauth_provider_client import IOAuthProviderClient, OAuthProviderError
from libs.domain.dto.auth import DeviceInfo, LoginRequest, RegisterRequest
from libs.domain.dto.oauth import OAuthProfile
from libs.domain.orm.auth import AccountRole, User
from libs.domain.orm.base import Base
from libs.notifications.i_notification_sender import INotificationSender

STRONG_PASSWORD = "Str0ng!Passw0rd"
START = datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc)

_CODE_RE = re.compile(r"\b(\d{4,10})\b")


class FrozenClock:
    """Часы, которые двигаются только вручную."""

    def __init__(self, now: datetime = START):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


class RecordingNotifier(INotificationSender):
    """Запоминает отправленные сообщения; available=False имитирует отказ доставки."""

    def __init__(self):
        self.sms: List[Tuple[str, str]] = []
        self.emails: List[Tuple[str, str, str]] = []
        self.available = True

    async def send_sms(self, phone: str, message: str) -> bool:
        if not self.available:
            return False
        self.sms.append((phone, message))
        return True

    async def send_email(self, to: str, subject: str, body: str) -> bool:
        if not self.available:
            return False
        self.emails.append((to, subject, body))
        return True

    def last_sms_code(self) -> str:
        return _CODE_RE.search(self.sms[-1][1]).group(1)

    def last_email_code(self) -> str:
        return _CODE_RE.search(self.emails[-1][2]).group(1)

    def last_email_token(self) -> str:
        return self.emails[-1][2].rsplit(" ", 1)[-1]


class FakeOAuthClient(IOAuthProviderClient):
    """Провайдер без сети: код авторизации -> заранее заданный профиль."""

    def __init__(self, providers: Optional[Set[str]] = None):
        self.providers = providers or {"google", "github", "linkedin", "microsoft"}
        self.profiles: Dict[str, OAuthProfile] = {}
        self.exchanged: List[Tuple[str, str, str]] = []

    def add_profile(self, code: str, profile: OAuthProfile) -> None:
        self.profiles[code] = profile

    def supports(self, provider: str) -> bool:
        return provider in self.providers

    def authorization_url(self, provider: str, redirect_uri: str, state: str) -> str:
        return f"https://{provider}.example/authorize?redirect_uri={redirect_uri}&state={state}"

    async def exchange_code(self, provider: str, code: str, redirect_uri: str) -> OAuthProfile:
        self.exchanged.append((provider, code, redirect_uri))
        profile = self.profiles.get(code)
        if profile is None or profile.provider != provider:
            raise OAuthProviderError(f"unknown code for {provider}")
        return profile


def totp_code(secret: str, when: datetime, *, periods: int = 0, period: int = 30) -> str:
    return pyotp.TOTP(secret, interval=period).at(when + timedelta(seconds=periods * period))


def register_request(email: str, password: str = STRONG_PASSWORD, device_id: Optional[str] = None, **kwargs) -> RegisterRequest:
    device = DeviceInfo(device_id=device_id) if device_id else None
    return RegisterRequest(email=email, password=password, device=device, **kwargs)


def login_request(email: str, password: str = STRONG_PASSWORD, device_id: Optional[str] = None) -> LoginRequest:
    device = DeviceInfo(device_id=device_id) if device_id else None
    return LoginRequest(email=email, password=password, device=device)


async def register_user(auth_service, email: str, **kwargs):
    result, error = await auth_service.register(register_request(email, **kwargs), ip="10.0.0.1", user_agent="pytest")
    assert error is None, error
    return result


async def enable_totp(mfa_service, clock: FrozenClock, user_id) -> str:
    """Подключает TOTP пользователю и возвращает секрет."""
    setup, error = await mfa_service.setup(user_id, "totp")
    assert error is None, error
    _, error = await mfa_service.verify_setup(user_id, "totp", totp_code(setup.secret, clock.now()))
    assert error is None, error
    # код входа должен быть из более позднего шага, чем код подтверждения
    clock.advance(seconds=60)
    return setup.secret


def make_settings(database_url: str, **overrides) -> AuthServiceSettings:
    values = dict(
        JWT_SECRET="test-secret-please-change-0123456789abcdef",
        AUTH_PASSWORD_BCRYPT_ROUNDS=4,
        DATABASE_URL=database_url,
        OAUTH_GOOGLE_CLIENT_ID="google-client",
        OAUTH_GOOGLE_CLIENT_SECRET="google-secret",
        OAUTH_GITHUB_CLIENT_ID="github-client",
        OAUTH_GITHUB_CLIENT_SECRET="github-secret",
        OAUTH_ALLOWED_REDIRECT_URIS=["https://app.example/cb"],
    )
    values.update(overrides)
    return AuthServiceSettings(**values)


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def promote_to_admin(container, user_id) -> None:
    async with container.session_factory() as db:
        await db.execute(update(User).where(User.id == user_id).values(role=AccountRole.ADMIN))
        await db.commit()

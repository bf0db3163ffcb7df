# libs/containers/auth_container.py

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from libs.infra.central_redis_client import CentralRedisClient
from libs.infra.db import build_engine, build_session_factory
from libs.notifications.i_notification_sender import INotificationSender
from libs.notifications.logging_notification_sender import LoggingNotificationSender
from libs.utils.clock import Clock, SystemClock
from libs.utils.randomness import SecureRandom
from apps.auth_svc.config.settings_auth import AuthServiceSettings
from apps.auth_svc.oauth.authlib_provider_client import AuthlibProviderClient
from apps.auth_svc.oauth.i_oauth_provider_client import IOAuthProviderClient
from apps.auth_svc.oauth.providers import PROVIDERS
from apps.auth_svc.services.auth_service import AuthService
from apps.auth_svc.services.mfa_service import MfaService
from apps.auth_svc.services.oauth_service import OAuthService
from apps.auth_svc.services.rate_limiter import SlidingWindowRateLimiter
from apps.auth_svc.services.session_manager import SessionManager
from apps.auth_svc.services.token_service import TokenService
from apps.auth_svc.utils.jwt_manager import JwtManager
from apps.auth_svc.utils.password_manager import CodeHasher, PasswordManager


@dataclass
class AuthContainer:
    """DI-контейнер сервиса аутентификации: инфраструктура и собранные сервисы."""

    settings: AuthServiceSettings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    redis: CentralRedisClient
    clock: Clock
    notifier: INotificationSender
    token_service: TokenService
    session_manager: SessionManager
    mfa_service: MfaService
    oauth_service: OAuthService
    auth_service: AuthService

    @classmethod
    def build(
        cls,
        settings: AuthServiceSettings,
        *,
        engine: AsyncEngine,
        redis: CentralRedisClient,
        clock: Optional[Clock] = None,
        random: Optional[SecureRandom] = None,
        notifier: Optional[INotificationSender] = None,
        provider_client: Optional[IOAuthProviderClient] = None,
    ) -> "AuthContainer":
        """Собирает граф сервисов поверх готовых engine и redis (в тестах подменяются часы, notifier и OAuth-клиент)."""
        clock = clock or SystemClock()
        random = random or SecureRandom()
        notifier = notifier or LoggingNotificationSender()
        if provider_client is None:
            provider_client = AuthlibProviderClient(
                {name: settings.oauth_credentials(name) for name in PROVIDERS},
                timeout=settings.OAUTH_HTTP_TIMEOUT,
            )

        session_factory = build_session_factory(engine)
        password_manager = PasswordManager(
            rounds=settings.AUTH_PASSWORD_BCRYPT_ROUNDS,
            min_length=settings.PASSWORD_MIN_LENGTH,
            max_length=settings.PASSWORD_MAX_LENGTH,
        )
        code_hasher = CodeHasher(settings.code_pepper)
        jwt_manager = JwtManager(
            secret=settings.JWT_SECRET,
            clock=clock,
            algorithm=settings.AUTH_JWT_ALG,
            issuer=settings.AUTH_JWT_ISS,
            audience=settings.AUTH_JWT_AUD,
        )

        token_service = TokenService(jwt_manager, password_manager, settings, clock)
        session_manager = SessionManager(settings, token_service, clock)
        mfa_service = MfaService(
            session_factory, redis, notifier, password_manager, code_hasher, settings, clock, random
        )
        oauth_service = OAuthService(session_factory, redis, provider_client, settings, clock, random)
        auth_service = AuthService(
            session_factory=session_factory,
            redis=redis,
            settings=settings,
            clock=clock,
            random=random,
            password_manager=password_manager,
            code_hasher=code_hasher,
            token_service=token_service,
            session_manager=session_manager,
            mfa_service=mfa_service,
            oauth_service=oauth_service,
            rate_limiter=SlidingWindowRateLimiter(redis, clock),
            notifier=notifier,
        )

        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            redis=redis,
            clock=clock,
            notifier=notifier,
            token_service=token_service,
            session_manager=session_manager,
            mfa_service=mfa_service,
            oauth_service=oauth_service,
            auth_service=auth_service,
        )

    @classmethod
    async def create(cls, settings: Optional[AuthServiceSettings] = None) -> "AuthContainer":
        """Фабричный метод для асинхронной инициализации контейнера."""
        settings = settings or AuthServiceSettings()
        engine = build_engine(settings.DATABASE_URL, schema=settings.DB_SCHEMA, echo=settings.DB_ECHO)
        redis_client = CentralRedisClient(redis_url=settings.REDIS_URL, password=settings.REDIS_PASSWORD)
        await redis_client.connect()
        return cls.build(settings, engine=engine, redis=redis_client)

    async def shutdown(self):
        await asyncio.gather(self.redis.close(), self.engine.dispose(), return_exceptions=True)

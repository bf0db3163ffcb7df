# apps/auth_svc/services/oauth_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from libs.app.errors import ErrorCode, ServiceError, validation_error
from libs.domain.dto.oauth import LinkedAccount, OAuthAuthorizeResult, OAuthProfile, OAuthUnlinkResult
from libs.domain.orm.auth import AccountStatus, User
from libs.infra.central_redis_client import CentralRedisClient
from libs.utils.clock import Clock, as_utc
from libs.utils.masking import mask_email
from libs.utils.randomness import SecureRandom
from libs.utils.redis_keys import key_oauth_state
from libs.utils.service_boundary import service_boundary
from ..config.settings_auth import AuthServiceSettings
from ..db.audit_repository import AuditRepository
from ..db.auth_repository import AuthRepository
from ..oauth.i_oauth_provider_client import IOAuthProviderClient, OAuthProviderError

log = logging.getLogger(__name__)

# Сколько раз повторять compare-and-swap при параллельной смене способов входа
CAS_ATTEMPTS = 3


@dataclass
class ResolvedIdentity:
    user: User
    created: bool
    linked: bool


class OAuthService:
    """
    Привязка OAuth-аккаунтов: вход через провайдера, привязка и отвязка.
    Набор способов входа меняется только с CAS по users.credential_version,
    поэтому у аккаунта всегда остаётся пароль или хотя бы одна привязка.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: CentralRedisClient,
        provider_client: IOAuthProviderClient,
        settings: AuthServiceSettings,
        clock: Clock,
        random: SecureRandom,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.provider_client = provider_client
        self.settings = settings
        self.clock = clock
        self.random = random

    def default_redirect_uri(self, provider: str) -> str:
        return f"{self.settings.OAUTH_REDIRECT_BASE_URL.rstrip('/')}/{provider}/callback"

    def resolve_redirect_uri(
        self, provider: str, redirect_uri: Optional[str]
    ) -> Tuple[Optional[str], Optional[ServiceError]]:
        """Клиент может указать только свой колбэк по умолчанию или адрес из OAUTH_ALLOWED_REDIRECT_URIS."""
        default = self.default_redirect_uri(provider)
        if not redirect_uri or redirect_uri == default:
            return default, None
        if redirect_uri in self.settings.OAUTH_ALLOWED_REDIRECT_URIS:
            return redirect_uri, None
        log.warning(f"Отклонён redirect_uri для {provider}", extra={"provider": provider})
        return None, validation_error("redirectUri", "Redirect URI is not allowed.", redirect_uri)

    def _unsupported(self, provider: str) -> Optional[ServiceError]:
        if not self.provider_client.supports(provider):
            return ServiceError(code=ErrorCode.OAUTH_UNSUPPORTED_PROVIDER)
        return None

    # --- state ---

    @service_boundary
    async def authorization_url(
        self, provider: str, redirect_uri: Optional[str] = None
    ) -> Tuple[Optional[OAuthAuthorizeResult], Optional[ServiceError]]:
        """URL авторизации и одноразовый state, живущий OAUTH_STATE_TTL секунд."""
        if error := self._unsupported(provider):
            return None, error

        redirect_uri, error = self.resolve_redirect_uri(provider, redirect_uri)
        if error:
            return None, error
        state = self.random.token_urlsafe(32)
        ttl = self.settings.OAUTH_STATE_TTL
        await self.redis.set_json(
            key_oauth_state(state),
            {
                "provider": provider,
                "redirect_uri": redirect_uri,
                "expires_at": self.clock.now() + timedelta(seconds=ttl),
            },
            ex=ttl,
        )
        url = self.provider_client.authorization_url(provider, redirect_uri, state)
        return OAuthAuthorizeResult(provider=provider, auth_url=url, state=state, expires_in=ttl), None

    async def consume_state(self, provider: str, state: str) -> Tuple[Optional[Dict[str, Any]], Optional[ServiceError]]:
        """State одноразовый: выигрывает тот, чьё удаление вернуло 1."""
        key = key_oauth_state(state)
        payload = await self.redis.get_json(key)
        if payload is None or await self.redis.delete(key) != 1:
            return None, ServiceError(code=ErrorCode.OAUTH_INVALID_STATE)
        if payload.get("provider") != provider:
            return None, ServiceError(code=ErrorCode.OAUTH_INVALID_STATE)
        if as_utc(datetime.fromisoformat(payload["expires_at"])) <= self.clock.now():
            return None, ServiceError(code=ErrorCode.OAUTH_INVALID_STATE)
        return payload, None

    async def exchange(
        self, provider: str, code: str, redirect_uri: str
    ) -> Tuple[Optional[OAuthProfile], Optional[ServiceError]]:
        try:
            profile = await self.provider_client.exchange_code(provider, code, redirect_uri)
        except OAuthProviderError:
            return None, ServiceError(code=ErrorCode.OAUTH_PROVIDER_ERROR)
        return profile, None

    async def fetch_callback_profile(
        self, provider: str, code: str, state: str
    ) -> Tuple[Optional[OAuthProfile], Optional[ServiceError]]:
        """Проверка state и обмен кода; в БД ничего не пишет."""
        if error := self._unsupported(provider):
            return None, error
        payload, error = await self.consume_state(provider, state)
        if error:
            return None, error
        return await self.exchange(provider, code, payload["redirect_uri"])

    # --- Вход через провайдера ---

    async def resolve_identity_in(
        self,
        db: AsyncSession,
        profile: OAuthProfile,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[ResolvedIdentity], Optional[ServiceError]]:
        """
        Существующая привязка -> её владелец. Иначе аккаунт с тем же email
        получает привязку, а если его нет, создаётся новый. По email связываем
        и создаём только при email, подтверждённом провайдером.
        """
        repo = AuthRepository(db)
        now = self.clock.now()

        link = await repo.get_provider_link(profile.provider, profile.provider_id)
        if link is not None:
            user = await repo.get_by_id(link.user_id, fresh=True)
            return ResolvedIdentity(user=user, created=False, linked=False), None

        if not profile.email or not profile.email_verified:
            return None, ServiceError(code=ErrorCode.OAUTH_EMAIL_UNVERIFIED)

        user = await repo.get_by_email(profile.email)
        if user is not None:
            if await repo.get_user_provider(user.id, profile.provider) is not None:
                # у аккаунта уже есть другая учётка этого провайдера
                return None, ServiceError(code=ErrorCode.OAUTH_ALREADY_LINKED)
            await self._add_link(db, user, profile, now)
            await AuditRepository(db).record(
                "oauth_linked", now=now, user_id=user.id, ip=ip, user_agent=user_agent,
                detail={"provider": profile.provider, "via": "email"},
            )
            return ResolvedIdentity(user=user, created=False, linked=True), None

        first_name, last_name = _split_name(profile.name)
        user = await repo.create_user(
            email=profile.email,
            password_hash=None,
            status=AccountStatus.ACTIVE,
            now=now,
            first_name=first_name,
            last_name=last_name,
            email_verified=True,
        )
        await repo.add_provider(
            user.id,
            provider=profile.provider,
            provider_id=profile.provider_id,
            provider_data=profile.to_provider_data(),
            is_primary=True,
            now=now,
        )
        await AuditRepository(db).record(
            "oauth_registered", now=now, user_id=user.id, ip=ip, user_agent=user_agent,
            detail={"provider": profile.provider},
        )
        log.info(f"Создан аккаунт через {profile.provider}", extra={"user_id": str(user.id), "provider": profile.provider})
        return ResolvedIdentity(user=user, created=True, linked=True), None

    async def _add_link(self, db: AsyncSession, user: User, profile: OAuthProfile, now: datetime) -> None:
        repo = AuthRepository(db)
        is_primary = await repo.count_providers(user.id) == 0
        await repo.add_provider(
            user.id,
            provider=profile.provider,
            provider_id=profile.provider_id,
            provider_data=profile.to_provider_data(),
            is_primary=is_primary,
            now=now,
        )
        fresh = await repo.get_by_id(user.id, fresh=True)
        await repo.bump_credential_version(user.id, fresh.credential_version, now)

    # --- Управление привязками из настроек аккаунта ---

    @service_boundary
    async def link(
        self,
        user_id: uuid.UUID,
        provider: str,
        code: str,
        *,
        redirect_uri: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[LinkedAccount], Optional[ServiceError]]:
        if error := self._unsupported(provider):
            return None, error
        redirect_uri, error = self.resolve_redirect_uri(provider, redirect_uri)
        if error:
            return None, error

        async with self.session_factory() as db:
            repo = AuthRepository(db)
            user = await repo.get_by_id(user_id)
            if user is None:
                return None, ServiceError(code=ErrorCode.NOT_FOUND)
            if await repo.get_user_provider(user_id, provider) is not None:
                return None, ServiceError(code=ErrorCode.OAUTH_ALREADY_LINKED)

        profile, error = await self.exchange(provider, code, redirect_uri)
        if error:
            return None, error

        async with self.session_factory() as db:
            repo = AuthRepository(db)
            existing = await repo.get_provider_link(provider, profile.provider_id)
            if existing is not None:
                if existing.user_id == user_id:
                    return None, ServiceError(code=ErrorCode.OAUTH_ALREADY_LINKED)
                return None, ServiceError(code=ErrorCode.OAUTH_LINKED_TO_ANOTHER)
            if await repo.get_user_provider(user_id, provider) is not None:
                return None, ServiceError(code=ErrorCode.OAUTH_ALREADY_LINKED)

            user = await repo.get_by_id(user_id, fresh=True)
            now = self.clock.now()
            await self._add_link(db, user, profile, now)
            await AuditRepository(db).record(
                "oauth_linked", now=now, user_id=user_id, ip=ip, user_agent=user_agent,
                detail={"provider": provider, "via": "settings"},
            )
            await db.commit()
            link = await repo.get_user_provider(user_id, provider)

        log.info(f"Привязан провайдер {provider}", extra={"user_id": str(user_id), "provider": provider})
        return _to_linked_account(link), None

    @service_boundary
    async def unlink(
        self,
        user_id: uuid.UUID,
        provider: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[OAuthUnlinkResult], Optional[ServiceError]]:
        """
        Отвязка с CAS по credential_version: если набор способов входа
        изменился между чтением и записью, попытка повторяется заново.
        """
        for attempt in range(1, CAS_ATTEMPTS + 1):
            async with self.session_factory() as db:
                repo = AuthRepository(db)
                user = await repo.get_by_id(user_id, fresh=True)
                if user is None:
                    return None, ServiceError(code=ErrorCode.NOT_FOUND)
                if await repo.get_user_provider(user_id, provider) is None:
                    return None, ServiceError(code=ErrorCode.NOT_FOUND, message="Provider is not linked.")
                if not user.has_password and await repo.count_providers(user_id) <= 1:
                    await AuditRepository(db).record(
                        "oauth_unlink_denied", now=self.clock.now(), user_id=user_id, success=False,
                        ip=ip, user_agent=user_agent, detail={"provider": provider},
                    )
                    await db.commit()
                    return None, ServiceError(code=ErrorCode.OAUTH_LAST_METHOD)

                now = self.clock.now()
                if not await repo.bump_credential_version(user_id, user.credential_version, now):
                    await db.rollback()
                    log.info(f"CAS credential_version не прошёл, попытка {attempt}", extra={"user_id": str(user_id)})
                    continue

                await repo.remove_provider(user_id, provider)
                await repo.promote_primary_provider(user_id)
                await AuditRepository(db).record(
                    "oauth_unlinked", now=now, user_id=user_id, ip=ip, user_agent=user_agent,
                    detail={"provider": provider},
                )
                await db.commit()

            log.info(f"Отвязан провайдер {provider}", extra={"user_id": str(user_id), "provider": provider})
            return OAuthUnlinkResult(provider=provider, unlinked=True), None

        log.warning("Отвязка не удалась из-за параллельных изменений", extra={"user_id": str(user_id)})
        return None, ServiceError(code=ErrorCode.INTERNAL_ERROR, message="Concurrent credential update, retry later.")

    @service_boundary
    async def list_linked(self, user_id: uuid.UUID) -> Tuple[Optional[List[LinkedAccount]], Optional[ServiceError]]:
        async with self.session_factory() as db:
            links = await AuthRepository(db).list_providers(user_id)
        return [_to_linked_account(link) for link in links], None


def _to_linked_account(link) -> LinkedAccount:
    data = link.provider_data or {}
    return LinkedAccount(
        provider=link.provider,
        email=mask_email(data.get("email")),
        name=data.get("name"),
        connected_at=link.connected_at,
        is_primary=link.is_primary,
    )


def _split_name(name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    if not name:
        return None, None
    parts = name.strip().split(" ", 1)
    return parts[0][:100], (parts[1][:100] if len(parts) > 1 else None)

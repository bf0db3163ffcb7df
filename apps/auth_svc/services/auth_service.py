# apps/auth_svc/services/auth_service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from libs.app.errors import ErrorCode, FieldError, ServiceError, validation_error
from libs.domain.dto.auth import (
    AccountStatusResult,
    DeviceInfo,
    LoginRequest,
    LoginResult,
    LogoutResult,
    MessageResult,
    PasswordChangedResult,
    PasswordPolicy,
    RefreshResult,
    RegisterRequest,
    RegisterResult,
    ResetTokenStatus,
    TokenClaims,
    UserPublic,
)
from libs.domain.dto.session import ActivityEntry, ActivityPage, SessionInfo, TerminateResult, TrustedDeviceInfo
from libs.domain.orm.auth import AccountStatus, User, UserSession
from libs.infra.central_redis_client import CentralRedisClient
from libs.notifications.i_notification_sender import INotificationSender
from libs.utils.clock import Clock, as_utc
from libs.utils.randomness import SecureRandom
from libs.utils.redis_keys import key_email_verification, key_password_reset
from libs.utils.service_boundary import service_boundary
from ..config.settings_auth import AuthServiceSettings
from ..db.audit_repository import AuditRepository
from ..db.auth_repository import AuthRepository
from ..utils.password_manager import CodeHasher, PasswordManager
from . import session_manager as sessions
from .mfa_service import MfaService
from .oauth_service import CAS_ATTEMPTS, OAuthService
from .rate_limiter import SlidingWindowRateLimiter
from .session_manager import SessionManager
from .token_service import TokenService

log = logging.getLogger(__name__)

LOGIN_LOCK_REASON = "Too many failed login attempts"

# Сбросить пароль по email можно только в этих статусах
RESETTABLE_STATUSES = (AccountStatus.ACTIVE, AccountStatus.LOCKED, AccountStatus.PENDING_VERIFICATION)

# События журнала, из которых строится история входов
SIGN_IN_EVENTS = (
    "login", "login_mfa", "login_oauth", "login_mfa_required",
    "login_failed", "login_blocked", "account_locked", "rate_limited",
)


def to_user_public(user: User) -> UserPublic:
    return UserPublic(
        id=user.id,
        email=user.email,
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        status=user.status.value,
        role=user.role.value,
        email_verified=user.email_verified,
        has_password=user.has_password,
        created_at=user.created_at,
    )


def to_session_info(user_session: UserSession, current_session_id: Optional[uuid.UUID]) -> SessionInfo:
    return SessionInfo(
        session_id=user_session.id,
        device_info=user_session.device_info or {},
        ip=user_session.ip,
        created_at=user_session.created_at,
        last_activity_at=user_session.last_activity_at,
        expires_at=user_session.expires_at,
        is_current=user_session.id == current_session_id,
    )


class AuthService:
    """
    Сервисный слой аутентификации: регистрация, вход, refresh, выход,
    завершение MFA-входа и входа через OAuth, управление сессиями и
    административные переходы статуса аккаунта.

    Каждый публичный метод - одна транзакция (unit of work). Компоненты
    SessionManager, TokenService и внутренние методы MfaService/OAuthService
    работают в этой же транзакции.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: CentralRedisClient,
        settings: AuthServiceSettings,
        clock: Clock,
        random: SecureRandom,
        password_manager: PasswordManager,
        code_hasher: CodeHasher,
        token_service: TokenService,
        session_manager: SessionManager,
        mfa_service: MfaService,
        oauth_service: OAuthService,
        rate_limiter: SlidingWindowRateLimiter,
        notifier: INotificationSender,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.settings = settings
        self.clock = clock
        self.random = random
        self.password_manager = password_manager
        self.code_hasher = code_hasher
        self.token_service = token_service
        self.session_manager = session_manager
        self.mfa_service = mfa_service
        self.oauth_service = oauth_service
        self.rate_limiter = rate_limiter
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Вспомогательное
    # ------------------------------------------------------------------

    @staticmethod
    def _device_dict(device: Optional[DeviceInfo], ip: Optional[str], user_agent: Optional[str]) -> Dict[str, Any]:
        data = device.model_dump(exclude_none=True) if device else {}
        # адрес и User-Agent берутся из запроса, а не из тела
        if ip:
            data["ip"] = ip
        if user_agent:
            data["user_agent"] = user_agent
        return data

    def _password_expires_at(self, now: datetime) -> Optional[datetime]:
        if self.settings.PASSWORD_EXPIRY_DAYS <= 0:
            return None
        return now + timedelta(days=self.settings.PASSWORD_EXPIRY_DAYS)

    async def _check_rate_limit(
        self, scope: str, email: str, *, ip: Optional[str], user_agent: Optional[str], limit: int, window_sec: int
    ) -> Optional[ServiceError]:
        subject = self.rate_limiter.subject(ip or "unknown", email)
        decision = await self.rate_limiter.hit(scope, subject, limit=limit, window_sec=window_sec)
        if decision.allowed:
            return None
        async with self.session_factory() as db:
            await AuditRepository(db).record(
                "rate_limited", now=self.clock.now(), success=False, ip=ip, user_agent=user_agent,
                detail={"scope": scope},
            )
            await db.commit()
        return ServiceError(code=ErrorCode.RATE_LIMIT_EXCEEDED, retry_after=decision.retry_after)

    async def _release_expired_lock(self, db: AsyncSession, user: User) -> User:
        """Истёкшая блокировка снимается лениво, при следующем входе."""
        now = self.clock.now()
        if user.status == AccountStatus.LOCKED and user.locked_until is not None and user.locked_until <= now:
            repo = AuthRepository(db)
            await repo.unlock_user(user.id, now=now)
            user = await repo.get_by_id(user.id, fresh=True)
            log.info("Блокировка аккаунта истекла", extra={"user_id": str(user.id)})
        return user

    def _status_error(self, user: User) -> Optional[ServiceError]:
        if user.status == AccountStatus.ACTIVE:
            return None
        if user.status == AccountStatus.LOCKED:
            retry_after = None
            if user.locked_until is not None:
                retry_after = max(1, int((user.locked_until - self.clock.now()).total_seconds()))
            return ServiceError(code=ErrorCode.AUTH_ACCOUNT_LOCKED, retry_after=retry_after)
        if user.status == AccountStatus.SUSPENDED:
            return ServiceError(code=ErrorCode.AUTH_ACCOUNT_SUSPENDED)
        if user.status == AccountStatus.PENDING_VERIFICATION:
            return ServiceError(code=ErrorCode.AUTH_EMAIL_NOT_VERIFIED)
        return ServiceError(code=ErrorCode.AUTH_ACCOUNT_INACTIVE)

    async def _start_session(
        self,
        db: AsyncSession,
        user: User,
        device: Dict[str, Any],
        *,
        ip: Optional[str],
        user_agent: Optional[str],
        event: str = "login",
    ) -> Tuple[Optional[LoginResult], Optional[ServiceError]]:
        """Создаёт сессию и выдаёт токены. Общая точка для всех видов входа."""
        user_session, error = await self.session_manager.create(db, user.id, device, ip=ip, user_agent=user_agent)
        if error:
            return None, error
        tokens, _ = await self.token_service.issue_pair(db, user, user_session.id)

        now = self.clock.now()
        await AuthRepository(db).set_last_login(user.id, now)
        await AuditRepository(db).record(
            event, now=now, user_id=user.id, ip=ip, user_agent=user_agent,
            detail={"session_id": str(user_session.id)},
        )
        expires_at = user.credentials.password_expires_at if user.credentials else None
        return LoginResult(
            requires_mfa=False,
            user=to_user_public(user),
            tokens=tokens,
            session_id=user_session.id,
            password_expired=bool(expires_at and expires_at <= now),
        ), None

    async def _second_factor_or_session(
        self,
        db: AsyncSession,
        user: User,
        device: Dict[str, Any],
        *,
        ip: Optional[str],
        user_agent: Optional[str],
        event: str,
    ) -> Tuple[Optional[LoginResult], Optional[ServiceError]]:
        """MFA-challenge, если MFA включена и устройство не доверенное; иначе сразу сессия."""
        if await self.mfa_service.requires_mfa_in(db, user.id):
            trusted = await self.session_manager.is_trusted(db, user.id, device.get("device_id"), user_agent)
            if not trusted:
                challenge, error = await self.mfa_service.create_challenge_in(
                    db, user.id, device=device, ip=ip, user_agent=user_agent
                )
                if error:
                    return None, error
                await AuditRepository(db).record(
                    "login_mfa_required", now=self.clock.now(), user_id=user.id, ip=ip, user_agent=user_agent,
                )
                return LoginResult(requires_mfa=True, challenge=challenge), None
        return await self._start_session(db, user, device, ip=ip, user_agent=user_agent, event=event)

    # ------------------------------------------------------------------
    # Регистрация и вход
    # ------------------------------------------------------------------

    @service_boundary
    async def register(
        self, dto: RegisterRequest, *, ip: Optional[str] = None, user_agent: Optional[str] = None
    ) -> Tuple[Optional[RegisterResult], Optional[ServiceError]]:
        email = str(dto.email)
        error = await self._check_rate_limit(
            "register", email, ip=ip, user_agent=user_agent,
            limit=self.settings.REGISTER_RATE_LIMIT, window_sec=self.settings.REGISTER_RATE_WINDOW_SEC,
        )
        if error:
            return None, error

        problems = self.password_manager.validate_policy(dto.password)
        if problems:
            return None, ServiceError(code=ErrorCode.VALIDATION_FAILED, errors=problems)

        requires_verification = self.settings.REQUIRE_EMAIL_VERIFICATION
        password_hash = self.password_manager.hash_password(dto.password)

        async with self.session_factory() as db:
            repo = AuthRepository(db)
            if await repo.get_by_email(email):
                return None, validation_error("email", "Email is already registered.", email)
            if dto.username and await repo.get_by_username(dto.username):
                return None, validation_error("username", "Username is already taken.", dto.username)

            now = self.clock.now()
            try:
                user = await repo.create_user(
                    email=email,
                    password_hash=password_hash,
                    status=AccountStatus.PENDING_VERIFICATION if requires_verification else AccountStatus.ACTIVE,
                    now=now,
                    password_expires_at=self._password_expires_at(now),
                    username=dto.username,
                    first_name=dto.first_name,
                    last_name=dto.last_name,
                )
            except IntegrityError:
                # параллельная регистрация с тем же email/username
                await db.rollback()
                return None, validation_error("email", "Email is already registered.", email)

            await AuditRepository(db).record("register", now=now, user_id=user.id, ip=ip, user_agent=user_agent)

            result = RegisterResult(user=to_user_public(user), requires_email_verification=requires_verification)
            if not requires_verification:
                started, error = await self._start_session(
                    db, user, self._device_dict(dto.device, ip, user_agent), ip=ip, user_agent=user_agent
                )
                if error:
                    await db.rollback()
                    return None, error
                result.tokens = started.tokens
                result.session_id = started.session_id
            await db.commit()

        if requires_verification:
            await self._send_verification_email(user.id, user.email)

        log.info(f"Зарегистрирован пользователь {user.id}", extra={"user_id": str(user.id), "event": "register"})
        return result, None

    @service_boundary
    async def login(
        self, dto: LoginRequest, *, ip: Optional[str] = None, user_agent: Optional[str] = None
    ) -> Tuple[Optional[LoginResult], Optional[ServiceError]]:
        """
        Порядок проверок: rate limit, поиск аккаунта, блокировка, пароль,
        статус, MFA. Неизвестный email и неверный пароль дают одну и ту же ошибку.
        """
        email = str(dto.email)
        error = await self._check_rate_limit(
            "login", email, ip=ip, user_agent=user_agent,
            limit=self.settings.LOGIN_RATE_LIMIT, window_sec=self.settings.LOGIN_RATE_WINDOW_SEC,
        )
        if error:
            return None, error

        async with self.session_factory() as db:
            repo = AuthRepository(db)
            audit = AuditRepository(db)
            now = self.clock.now()

            user = await repo.get_by_email(email)
            if user is None or not user.has_password:
                self.password_manager.burn_time(dto.password)
                await audit.record(
                    "login_failed", now=now, user_id=user.id if user else None, success=False,
                    ip=ip, user_agent=user_agent, detail={"reason": "unknown_user" if user is None else "no_password"},
                )
                await db.commit()
                return None, ServiceError(code=ErrorCode.AUTH_INVALID_CREDENTIALS)

            user = await self._release_expired_lock(db, user)
            if user.status == AccountStatus.LOCKED:
                await audit.record(
                    "login_blocked", now=now, user_id=user.id, success=False, ip=ip, user_agent=user_agent,
                )
                await db.commit()
                return None, self._status_error(user)

            if not self.password_manager.verify_password(dto.password, user.credentials.password_hash):
                failures = await repo.increment_failed_attempts(user.id)
                await audit.record(
                    "login_failed", now=now, user_id=user.id, success=False, ip=ip, user_agent=user_agent,
                    detail={"reason": "invalid_password", "failures": failures},
                )
                if failures >= self.settings.LOGIN_LOCK_THRESHOLD:
                    locked = await repo.lock_user(
                        user.id,
                        until=now + timedelta(seconds=self.settings.LOGIN_LOCKOUT_SEC),
                        reason=LOGIN_LOCK_REASON,
                        now=now,
                    )
                    if locked:
                        await audit.record(
                            "account_locked", now=now, user_id=user.id, success=False, ip=ip, user_agent=user_agent,
                            detail={"failures": failures},
                        )
                        log.warning(
                            f"Аккаунт заблокирован после {failures} неудачных входов",
                            extra={"user_id": str(user.id), "event": "account_locked"},
                        )
                await db.commit()
                return None, ServiceError(code=ErrorCode.AUTH_INVALID_CREDENTIALS)

            status_error = self._status_error(user)
            if status_error:
                await audit.record(
                    "login_blocked", now=now, user_id=user.id, success=False, ip=ip, user_agent=user_agent,
                    detail={"status": user.status.value},
                )
                await db.commit()
                return None, status_error

            result, error = await self._second_factor_or_session(
                db, user, self._device_dict(dto.device, ip, user_agent), ip=ip, user_agent=user_agent, event="login"
            )
            if error:
                await db.rollback()
                return None, error
            await db.commit()

        if result.requires_mfa:
            log.info("Вход требует MFA", extra={"user_id": str(user.id)})
        else:
            log.info("Успешный вход", extra={"user_id": str(user.id), "session_id": str(result.session_id)})
        return result, None

    @service_boundary
    async def complete_mfa_login(
        self,
        challenge_id: str,
        method: str,
        code: str,
        *,
        trust_device: bool = False,
        device_name: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[LoginResult], Optional[ServiceError]]:
        async with self.session_factory() as db:
            verified, error = await self.mfa_service.verify_challenge_in(
                db, challenge_id, method, code, ip=ip, user_agent=user_agent
            )
            if error:
                # неудачная попытка уже записана в историю и счётчик
                await db.commit()
                return None, error

            user = await AuthRepository(db).get_by_id(verified.user_id, fresh=True)
            if user is None:
                await db.commit()
                return None, ServiceError(code=ErrorCode.AUTH_INVALID_CREDENTIALS)
            status_error = self._status_error(user)
            if status_error:
                await db.commit()
                return None, status_error

            device = dict(verified.device)
            result, error = await self._start_session(
                db, user, device, ip=verified.ip, user_agent=verified.user_agent, event="login_mfa"
            )
            if error:
                await db.commit()
                return None, error

            device_id = device.get("device_id")
            if trust_device and device_id:
                await self.session_manager.trust_device(
                    db, user.id, device_id,
                    user_agent=verified.user_agent,
                    device_name=device_name or device.get("device_name"),
                )
            await db.commit()

        log.info("Вход с MFA завершён", extra={"user_id": str(user.id), "mfa_method": method})
        return result, None

    @service_boundary
    async def oauth_login(
        self,
        provider: str,
        code: str,
        state: str,
        *,
        device: Optional[DeviceInfo] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[LoginResult], Optional[ServiceError]]:
        """Вход через провайдера с теми же проверками статуса и MFA, что и у обычного входа."""
        profile, error = await self.oauth_service.fetch_callback_profile(provider, code, state)
        if error:
            return None, error

        async with self.session_factory() as db:
            identity, error = await self.oauth_service.resolve_identity_in(db, profile, ip=ip, user_agent=user_agent)
            if error:
                return None, error

            user = await self._release_expired_lock(db, identity.user)
            if user.status == AccountStatus.PENDING_VERIFICATION and profile.email_verified and profile.email == user.email:
                # провайдер подтвердил владение адресом
                await AuthRepository(db).mark_email_verified(user.id, self.clock.now())
                user = await AuthRepository(db).get_by_id(user.id, fresh=True)

            status_error = self._status_error(user)
            if status_error:
                await AuditRepository(db).record(
                    "login_blocked", now=self.clock.now(), user_id=user.id, success=False, ip=ip,
                    user_agent=user_agent, detail={"status": user.status.value, "provider": provider},
                )
                await db.commit()
                return None, status_error

            result, error = await self._second_factor_or_session(
                db, user, self._device_dict(device, ip, user_agent), ip=ip, user_agent=user_agent,
                event="login_oauth",
            )
            if error:
                await db.rollback()
                return None, error
            await db.commit()

        return result, None

    # ------------------------------------------------------------------
    # Токены и выход
    # ------------------------------------------------------------------

    @service_boundary
    async def refresh(
        self,
        refresh_token: str,
        device_id: Optional[str] = None,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[RefreshResult], Optional[ServiceError]]:
        async with self.session_factory() as db:
            context, error = await self.token_service.load_refresh(db, refresh_token)
            if error:
                if context is not None and context.record.replaced_by is not None:
                    # уже ротированный токен предъявлен повторно: сессия скомпрометирована
                    await self.session_manager.terminate(
                        db, [context.session_id], reason=sessions.REASON_TOKEN_REUSE
                    )
                    await AuditRepository(db).record(
                        "refresh_token_reuse", now=self.clock.now(), user_id=context.user_id, success=False,
                        ip=ip, user_agent=user_agent, detail={"session_id": str(context.session_id)},
                    )
                    await db.commit()
                    log.warning(
                        "Повторное использование refresh-токена, сессия завершена",
                        extra={"user_id": str(context.user_id), "session_id": str(context.session_id)},
                    )
                return None, error

            user_session, error = await self.session_manager.touch(db, context.session_id, context.user_id)
            if error:
                await db.commit()
                return None, error
            if device_id and user_session.device_id and device_id != user_session.device_id:
                return None, ServiceError(code=ErrorCode.AUTH_TOKEN_INVALID)

            user = await AuthRepository(db).get_by_id(context.user_id, fresh=True)
            status_error = self._status_error(user) if user else ServiceError(code=ErrorCode.AUTH_TOKEN_INVALID)
            if status_error:
                await db.commit()
                return None, status_error

            tokens, error = await self.token_service.rotate(db, context, user)
            if error:
                await db.rollback()
                return None, error
            await db.commit()

        return RefreshResult(tokens=tokens, session_id=context.session_id), None

    def decode_access_token(self, token: str) -> Tuple[Optional[TokenClaims], Optional[ServiceError]]:
        """Только подпись и срок токена; состояние сессии не проверяется (нужно для logout)."""
        return self.token_service.decode_access(token)

    @service_boundary
    async def authenticate(self, token: str) -> Tuple[Optional[TokenClaims], Optional[ServiceError]]:
        """Полная проверка access-токена: подпись, срок, живая сессия, активный аккаунт."""
        claims, error = self.token_service.decode_access(token)
        if error:
            return None, error
        async with self.session_factory() as db:
            _, error = await self.session_manager.touch(db, claims.session_id, claims.user_id)
            if error:
                await db.commit()
                return None, error
            user = await AuthRepository(db).get_by_id(claims.user_id, fresh=True)
            if user is None:
                return None, ServiceError(code=ErrorCode.AUTH_TOKEN_INVALID)
            status_error = self._status_error(user)
            if status_error:
                return None, status_error
            await db.commit()
        claims.role = user.role.value
        return claims, None

    @service_boundary
    async def logout(
        self, user_id: uuid.UUID, session_id: uuid.UUID, *, ip: Optional[str] = None, user_agent: Optional[str] = None
    ) -> Tuple[Optional[LogoutResult], Optional[ServiceError]]:
        """Идемпотентно: повторный выход из завершённой сессии тоже успешен."""
        async with self.session_factory() as db:
            user_session = await self.session_manager.get(db, user_id, session_id)
            terminated = 0
            if user_session is not None:
                terminated = await self.session_manager.terminate(db, [session_id], reason=sessions.REASON_LOGOUT)
            else:
                # истёкшая сессия: токены всё равно отзываются
                await self.token_service.revoke_for_sessions(db, [session_id])
            await AuditRepository(db).record(
                "logout", now=self.clock.now(), user_id=user_id, ip=ip, user_agent=user_agent,
                detail={"session_id": str(session_id)},
            )
            await db.commit()
        return LogoutResult(logged_out=True, sessions_terminated=terminated), None

    @service_boundary
    async def logout_all(
        self, user_id: uuid.UUID, *, ip: Optional[str] = None, user_agent: Optional[str] = None
    ) -> Tuple[Optional[LogoutResult], Optional[ServiceError]]:
        async with self.session_factory() as db:
            count = await self.session_manager.terminate_all(db, user_id, reason=sessions.REASON_LOGOUT_ALL)
            await AuditRepository(db).record(
                "logout_all", now=self.clock.now(), user_id=user_id, ip=ip, user_agent=user_agent,
                detail={"sessions": count},
            )
            await db.commit()
        log.info(f"Завершено сессий: {count}", extra={"user_id": str(user_id), "event": "logout_all"})
        return LogoutResult(logged_out=True, sessions_terminated=count), None

    # ------------------------------------------------------------------
    # Подтверждение email
    # ------------------------------------------------------------------

    def _verification_hash(self, token: str) -> str:
        return self.code_hasher.hash(f"verify:{token}")

    async def _send_verification_email(self, user_id: uuid.UUID, email: str) -> None:
        token = self.random.token_urlsafe(32)
        ttl = self.settings.EMAIL_VERIFICATION_TTL
        await self.redis.set_json(
            key_email_verification(self._verification_hash(token)),
            {"user_id": str(user_id), "expires_at": self.clock.now() + timedelta(seconds=ttl)},
            ex=ttl,
        )
        delivered = await self.notifier.send_email(
            email,
            "Confirm your email address",
            f"Use this token to confirm your email address: {token}",
        )
        if not delivered:
            log.warning("Письмо с подтверждением не принято к отправке", extra={"user_id": str(user_id)})

    @service_boundary
    async def verify_email(self, token: str) -> Tuple[Optional[UserPublic], Optional[ServiceError]]:
        key = key_email_verification(self._verification_hash(token))
        payload = await self.redis.get_json(key)
        invalid = validation_error("token", "Verification token is invalid or expired.")
        if payload is None:
            return None, invalid
        if as_utc(datetime.fromisoformat(payload["expires_at"])) <= self.clock.now():
            await self.redis.delete(key)
            return None, invalid
        if await self.redis.delete(key) != 1:
            return None, invalid

        user_id = uuid.UUID(payload["user_id"])
        async with self.session_factory() as db:
            repo = AuthRepository(db)
            now = self.clock.now()
            await repo.mark_email_verified(user_id, now)
            await AuditRepository(db).record("email_verified", now=now, user_id=user_id)
            await db.commit()
            user = await repo.get_by_id(user_id, fresh=True)
        if user is None:
            return None, ServiceError(code=ErrorCode.NOT_FOUND)
        return to_user_public(user), None

    @service_boundary
    async def resend_verification(
        self, email: str, *, ip: Optional[str] = None, user_agent: Optional[str] = None
    ) -> Tuple[Optional[MessageResult], Optional[ServiceError]]:
        """Ответ одинаковый для любого email, чтобы не раскрывать наличие аккаунта."""
        error = await self._check_rate_limit(
            "resend_verification", email, ip=ip, user_agent=user_agent,
            limit=self.settings.REGISTER_RATE_LIMIT, window_sec=self.settings.REGISTER_RATE_WINDOW_SEC,
        )
        if error:
            return None, error
        async with self.session_factory() as db:
            user = await AuthRepository(db).get_by_email(email)
        if user is not None and user.status == AccountStatus.PENDING_VERIFICATION:
            await self._send_verification_email(user.id, user.email)
        return MessageResult(ok=True, detail="If the account exists, a verification email has been sent."), None

    # ------------------------------------------------------------------
    # Сброс пароля по email
    # ------------------------------------------------------------------

    def _reset_hash(self, token: str) -> str:
        return self.code_hasher.hash(f"reset:{token}")

    async def _load_reset(self, key: str) -> Optional[Dict[str, Any]]:
        payload = await self.redis.get_json(key)
        if payload is None:
            return None
        if as_utc(datetime.fromisoformat(payload["expires_at"])) <= self.clock.now():
            await self.redis.delete(key)
            return None
        return payload

    async def _send_reset_email(self, user: User) -> None:
        token = self.random.token_urlsafe(32)
        ttl = self.settings.PASSWORD_RESET_TTL
        # версия учётных данных в токене: смена пароля или способов входа делает его недействительным
        await self.redis.set_json(
            key_password_reset(self._reset_hash(token)),
            {
                "user_id": str(user.id),
                "credential_version": user.credential_version,
                "expires_at": self.clock.now() + timedelta(seconds=ttl),
            },
            ex=ttl,
        )
        delivered = await self.notifier.send_email(
            user.email,
            "Reset your password",
            f"The token is valid for {ttl // 60} minutes. Use this token to reset your password: {token}",
        )
        if not delivered:
            log.warning("Письмо для сброса пароля не принято к отправке", extra={"user_id": str(user.id)})

    @service_boundary
    async def forgot_password(
        self, email: str, *, ip: Optional[str] = None, user_agent: Optional[str] = None
    ) -> Tuple[Optional[MessageResult], Optional[ServiceError]]:
        """Ответ одинаковый для любого email, чтобы не раскрывать наличие аккаунта."""
        error = await self._check_rate_limit(
            "forgot_password", email, ip=ip, user_agent=user_agent,
            limit=self.settings.REGISTER_RATE_LIMIT, window_sec=self.settings.REGISTER_RATE_WINDOW_SEC,
        )
        if error:
            return None, error

        async with self.session_factory() as db:
            user = await AuthRepository(db).get_by_email(email)
            if user is not None and user.status in RESETTABLE_STATUSES:
                await AuditRepository(db).record(
                    "password_reset_requested", now=self.clock.now(), user_id=user.id, ip=ip, user_agent=user_agent,
                )
                await db.commit()
                await self._send_reset_email(user)
        return MessageResult(ok=True, detail="If the account exists, a password reset email has been sent."), None

    @service_boundary
    async def verify_reset_token(self, token: str) -> Tuple[Optional[ResetTokenStatus], Optional[ServiceError]]:
        """Проверка без погашения: клиент решает, показывать ли форму нового пароля."""
        payload = await self._load_reset(key_password_reset(self._reset_hash(token)))
        if payload is None:
            return ResetTokenStatus(token_valid=False), None
        async with self.session_factory() as db:
            user = await AuthRepository(db).get_by_id(uuid.UUID(payload["user_id"]))
        valid = (
            user is not None
            and user.status in RESETTABLE_STATUSES
            and user.credential_version == payload["credential_version"]
        )
        if not valid:
            return ResetTokenStatus(token_valid=False), None
        return ResetTokenStatus(token_valid=True, expires_at=datetime.fromisoformat(payload["expires_at"])), None

    @service_boundary
    async def reset_password(
        self,
        token: str,
        new_password: str,
        confirm_password: Optional[str] = None,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[PasswordChangedResult], Optional[ServiceError]]:
        """
        Новый пароль по токену из письма. Токен одноразовый; после сброса
        завершаются все сессии пользователя.
        """
        if confirm_password is not None and confirm_password != new_password:
            return None, validation_error("confirmPassword", "Passwords do not match.")
        problems = self.password_manager.validate_policy(new_password, field="newPassword")
        if problems:
            return None, ServiceError(code=ErrorCode.VALIDATION_FAILED, errors=problems)

        invalid = validation_error("token", "Reset token is invalid or expired.")
        key = key_password_reset(self._reset_hash(token))
        payload = await self._load_reset(key)
        if payload is None or await self.redis.delete(key) != 1:
            return None, invalid

        user_id = uuid.UUID(payload["user_id"])
        new_hash = self.password_manager.hash_password(new_password)
        async with self.session_factory() as db:
            repo = AuthRepository(db)
            user = await repo.get_by_id(user_id, fresh=True)
            if user is None or user.status not in RESETTABLE_STATUSES:
                return None, invalid

            now = self.clock.now()
            if not await repo.bump_credential_version(user_id, payload["credential_version"], now):
                await db.rollback()
                return None, invalid
            await repo.set_password_hash(user_id, new_hash, now=now, expires_at=self._password_expires_at(now))
            terminated = await self.session_manager.terminate_all(db, user_id, reason=sessions.REASON_PASSWORD_RESET)
            await AuditRepository(db).record("password_reset", now=now, user_id=user_id, ip=ip, user_agent=user_agent)
            await db.commit()

        log.info("Пароль сброшен по email", extra={"user_id": str(user_id)})
        return PasswordChangedResult(password_set=True, sessions_terminated=terminated), None

    def password_policy(self) -> PasswordPolicy:
        return PasswordPolicy(
            min_length=self.password_manager.min_length,
            max_length=self.password_manager.max_length,
            expiry_days=self.settings.PASSWORD_EXPIRY_DAYS or None,
        )

    # ------------------------------------------------------------------
    # Пароль и профиль
    # ------------------------------------------------------------------

    @service_boundary
    async def set_password(
        self,
        user_id: uuid.UUID,
        session_id: uuid.UUID,
        new_password: str,
        current_password: Optional[str] = None,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[PasswordChangedResult], Optional[ServiceError]]:
        """
        Первый пароль для аккаунта только с OAuth или смена существующего.
        Смена требует текущий пароль и завершает остальные сессии.
        """
        problems = self.password_manager.validate_policy(new_password, field="newPassword")
        if problems:
            return None, ServiceError(code=ErrorCode.VALIDATION_FAILED, errors=problems)
        new_hash = self.password_manager.hash_password(new_password)

        for _ in range(CAS_ATTEMPTS):
            async with self.session_factory() as db:
                repo = AuthRepository(db)
                user = await repo.get_by_id(user_id, fresh=True)
                if user is None:
                    return None, ServiceError(code=ErrorCode.NOT_FOUND)

                had_password = user.has_password
                if had_password:
                    if not current_password:
                        return None, ServiceError(
                            code=ErrorCode.VALIDATION_FAILED,
                            errors=[FieldError(field="currentPassword", message="Current password is required.")],
                        )
                    if not self.password_manager.verify_password(current_password, user.credentials.password_hash):
                        await AuditRepository(db).record(
                            "password_change_denied", now=self.clock.now(), user_id=user_id, success=False,
                            ip=ip, user_agent=user_agent,
                        )
                        await db.commit()
                        return None, ServiceError(code=ErrorCode.AUTH_INVALID_CREDENTIALS)

                now = self.clock.now()
                if not await repo.bump_credential_version(user_id, user.credential_version, now):
                    await db.rollback()
                    continue
                await repo.set_password_hash(user_id, new_hash, now=now, expires_at=self._password_expires_at(now))

                terminated = 0
                if had_password:
                    terminated = await self.session_manager.terminate_all(
                        db, user_id, reason=sessions.REASON_PASSWORD_CHANGED, except_session_id=session_id
                    )
                await AuditRepository(db).record(
                    "password_changed" if had_password else "password_set",
                    now=now, user_id=user_id, ip=ip, user_agent=user_agent,
                )
                await db.commit()

            log.info("Пароль обновлён", extra={"user_id": str(user_id)})
            return PasswordChangedResult(password_set=True, sessions_terminated=terminated), None

        return None, ServiceError(code=ErrorCode.INTERNAL_ERROR, message="Concurrent credential update, retry later.")

    @service_boundary
    async def get_profile(self, user_id: uuid.UUID) -> Tuple[Optional[UserPublic], Optional[ServiceError]]:
        async with self.session_factory() as db:
            user = await AuthRepository(db).get_by_id(user_id)
        if user is None:
            return None, ServiceError(code=ErrorCode.NOT_FOUND)
        return to_user_public(user), None

    # ------------------------------------------------------------------
    # Сессии и доверенные устройства
    # ------------------------------------------------------------------

    @service_boundary
    async def list_sessions(
        self, user_id: uuid.UUID, current_session_id: Optional[uuid.UUID] = None
    ) -> Tuple[Optional[List[SessionInfo]], Optional[ServiceError]]:
        async with self.session_factory() as db:
            active = await self.session_manager.list_active(db, user_id)
            await db.commit()
        return [to_session_info(s, current_session_id) for s in active], None

    @service_boundary
    async def session_activity(
        self, user_id: uuid.UUID, *, limit: int = 20, offset: int = 0
    ) -> Tuple[Optional[ActivityPage], Optional[ServiceError]]:
        """История входов из журнала безопасности, свежие первыми."""
        async with self.session_factory() as db:
            events, total = await AuditRepository(db).page_for_user(
                user_id, SIGN_IN_EVENTS, limit=limit, offset=offset
            )
        activities = [
            ActivityEntry(
                event=event.event_type,
                success=event.success,
                ip=event.ip,
                user_agent=event.user_agent,
                created_at=event.created_at,
            )
            for event in events
        ]
        return ActivityPage(activities=activities, total=total, has_more=offset + len(activities) < total), None

    @service_boundary
    async def get_session(
        self, user_id: uuid.UUID, session_id: uuid.UUID, current_session_id: Optional[uuid.UUID] = None
    ) -> Tuple[Optional[SessionInfo], Optional[ServiceError]]:
        async with self.session_factory() as db:
            user_session = await self.session_manager.get(db, user_id, session_id)
        if user_session is None:
            return None, ServiceError(code=ErrorCode.NOT_FOUND)
        return to_session_info(user_session, current_session_id), None

    @service_boundary
    async def terminate_session(
        self, user_id: uuid.UUID, session_id: uuid.UUID, *, ip: Optional[str] = None, user_agent: Optional[str] = None
    ) -> Tuple[Optional[TerminateResult], Optional[ServiceError]]:
        async with self.session_factory() as db:
            user_session = await self.session_manager.get(db, user_id, session_id)
            if user_session is None:
                return None, ServiceError(code=ErrorCode.NOT_FOUND)
            count = await self.session_manager.terminate(db, [session_id], reason=sessions.REASON_TERMINATED)
            await AuditRepository(db).record(
                "session_terminated", now=self.clock.now(), user_id=user_id, ip=ip, user_agent=user_agent,
                detail={"session_id": str(session_id)},
            )
            await db.commit()
        return TerminateResult(terminated=count), None

    @service_boundary
    async def terminate_sessions(
        self,
        user_id: uuid.UUID,
        current_session_id: uuid.UUID,
        include_current: bool = False,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[TerminateResult], Optional[ServiceError]]:
        async with self.session_factory() as db:
            if include_current:
                count = await self.session_manager.terminate_all(db, user_id, reason=sessions.REASON_TERMINATED)
            else:
                count = await self.session_manager.terminate_others(db, user_id, current_session_id)
            await AuditRepository(db).record(
                "sessions_terminated", now=self.clock.now(), user_id=user_id, ip=ip, user_agent=user_agent,
                detail={"count": count, "include_current": include_current},
            )
            await db.commit()
        return TerminateResult(terminated=count), None

    @service_boundary
    async def trust_device(
        self, user_id: uuid.UUID, session_id: uuid.UUID, device_name: Optional[str] = None
    ) -> Tuple[Optional[TrustedDeviceInfo], Optional[ServiceError]]:
        """Доверяет устройству текущей сессии: MFA на нём не запрашивается до истечения срока."""
        async with self.session_factory() as db:
            user_session = await self.session_manager.get(db, user_id, session_id)
            if user_session is None:
                return None, ServiceError(code=ErrorCode.NOT_FOUND)
            if not user_session.device_id:
                return None, validation_error("deviceId", "Session has no device id; send device.deviceId at login.")
            device = await self.session_manager.trust_device(
                db,
                user_id,
                user_session.device_id,
                user_agent=user_session.user_agent,
                device_name=device_name or (user_session.device_info or {}).get("device_name"),
            )
            await AuditRepository(db).record(
                "device_trusted", now=self.clock.now(), user_id=user_id, detail={"device_id": device.device_id}
            )
            await db.commit()
        return TrustedDeviceInfo.model_validate(device), None

    @service_boundary
    async def list_trusted_devices(self, user_id: uuid.UUID) -> Tuple[Optional[List[TrustedDeviceInfo]], Optional[ServiceError]]:
        async with self.session_factory() as db:
            devices = await self.session_manager.list_trusted(db, user_id)
        return [TrustedDeviceInfo.model_validate(d) for d in devices], None

    @service_boundary
    async def remove_trusted_device(self, user_id: uuid.UUID, device_id: str) -> Tuple[Optional[MessageResult], Optional[ServiceError]]:
        async with self.session_factory() as db:
            removed = await self.session_manager.remove_trusted_device(db, user_id, device_id)
            if not removed:
                return None, ServiceError(code=ErrorCode.NOT_FOUND)
            await AuditRepository(db).record(
                "device_untrusted", now=self.clock.now(), user_id=user_id, detail={"device_id": device_id}
            )
            await db.commit()
        return MessageResult(ok=True), None

    # ------------------------------------------------------------------
    # Администрирование
    # ------------------------------------------------------------------

    async def _admin_transition(
        self,
        user_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        event: str,
        *,
        from_statuses: List[AccountStatus],
        to_status: AccountStatus,
        reason: Optional[str] = None,
        terminate_sessions: bool = False,
    ) -> Tuple[Optional[AccountStatusResult], Optional[ServiceError]]:
        async with self.session_factory() as db:
            repo = AuthRepository(db)
            user = await repo.get_by_id(user_id)
            if user is None:
                return None, ServiceError(code=ErrorCode.NOT_FOUND)

            now = self.clock.now()
            if to_status == AccountStatus.ACTIVE and user.status == AccountStatus.LOCKED:
                changed = await repo.unlock_user(user_id, now=now)
            else:
                changed = await repo.transition_status(
                    user_id, from_statuses=from_statuses, to_status=to_status, now=now, reason=reason
                )
            if not changed and user.status != to_status:
                return None, validation_error(
                    "status", f"Cannot change status from '{user.status.value}' to '{to_status.value}'."
                )
            if changed and terminate_sessions:
                await self.session_manager.terminate_all(db, user_id, reason=sessions.REASON_SUSPENDED)
            await AuditRepository(db).record(
                event, now=now, user_id=user_id,
                detail={"actor_id": str(actor_id) if actor_id else None, "changed": changed},
            )
            await db.commit()
            user = await repo.get_by_id(user_id, fresh=True)

        log.info(f"Статус аккаунта: {user.status.value}", extra={"user_id": str(user_id), "event": event})
        return AccountStatusResult(user_id=user.id, status=user.status.value, locked_until=user.locked_until), None

    @service_boundary
    async def unlock_account(self, user_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None):
        return await self._admin_transition(
            user_id, actor_id, "account_unlocked",
            from_statuses=[AccountStatus.LOCKED], to_status=AccountStatus.ACTIVE,
        )

    @service_boundary
    async def suspend_account(
        self, user_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None, reason: Optional[str] = None
    ):
        return await self._admin_transition(
            user_id, actor_id, "account_suspended",
            from_statuses=[
                AccountStatus.ACTIVE,
                AccountStatus.LOCKED,
                AccountStatus.INACTIVE,
                AccountStatus.PENDING_VERIFICATION,
            ],
            to_status=AccountStatus.SUSPENDED,
            reason=reason,
            terminate_sessions=True,
        )

    @service_boundary
    async def reactivate_account(self, user_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None):
        return await self._admin_transition(
            user_id, actor_id, "account_reactivated",
            from_statuses=[AccountStatus.SUSPENDED, AccountStatus.INACTIVE],
            to_status=AccountStatus.ACTIVE,
        )

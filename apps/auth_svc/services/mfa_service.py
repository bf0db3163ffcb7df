# apps/auth_svc/services/mfa_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from libs.app.errors import ErrorCode, ServiceError, validation_error
from libs.domain.dto.mfa import (
    BackupCodesResult,
    MfaChallengeInfo,
    MfaCodeSent,
    MfaMethodStatus,
    MfaSetupResult,
    MfaStatus,
    MfaVerifySetupResult,
)
from libs.domain.orm.auth import BACKUP_CODE_METHOD, MfaConfig, MfaMethod, User
from libs.infra.central_redis_client import CentralRedisClient
from libs.notifications.i_notification_sender import INotificationSender
from libs.utils.clock import Clock, as_utc
from libs.utils.ids import new_challenge_id
from libs.utils.masking import mask_email, mask_phone
from libs.utils.randomness import SecureRandom
from libs.utils.redis_keys import key_mfa_challenge, key_mfa_otp
from libs.utils.service_boundary import service_boundary
from ..config.settings_auth import AuthServiceSettings
from ..db.audit_repository import AuditRepository
from ..db.auth_repository import AuthRepository
from ..db.mfa_repository import MfaRepository
from ..utils.password_manager import CodeHasher, PasswordManager
from ..utils.totp import match_totp_step, provisioning_uri, qr_code_data_url
from . import mfa_policy

log = logging.getLogger(__name__)

OTP_PURPOSE_SETUP = "setup"
OTP_PURPOSE_CHALLENGE = "challenge"

BACKUP_CODE_GROUP = 4


@dataclass
class VerifiedChallenge:
    """Успешно пройденный challenge: кому и с какого устройства выдавать сессию."""

    challenge_id: str
    user_id: uuid.UUID
    method: str
    device: Dict[str, Any] = field(default_factory=dict)
    ip: Optional[str] = None
    user_agent: Optional[str] = None


class MfaService:
    """
    Второй фактор: настройка методов, challenge при входе, резервные коды,
    блокировка после серии неудач.

    Публичные методы открывают свою транзакцию. Методы с суффиксом _in
    работают в транзакции вызывающего (их использует AuthService при входе).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: CentralRedisClient,
        notifier: INotificationSender,
        password_manager: PasswordManager,
        code_hasher: CodeHasher,
        settings: AuthServiceSettings,
        clock: Clock,
        random: SecureRandom,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.notifier = notifier
        self.password_manager = password_manager
        self.code_hasher = code_hasher
        self.settings = settings
        self.clock = clock
        self.random = random

    # ------------------------------------------------------------------
    # Настройка методов
    # ------------------------------------------------------------------

    @service_boundary
    async def setup(
        self,
        user_id: uuid.UUID,
        method: str,
        *,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Tuple[Optional[MfaSetupResult], Optional[ServiceError]]:
        """Начинает подключение метода. Метод включается только после verify_setup."""
        async with self.session_factory() as db:
            user = await AuthRepository(db).get_by_id(user_id)
            if user is None:
                return None, ServiceError(code=ErrorCode.NOT_FOUND)

            repo = MfaRepository(db)
            now = self.clock.now()
            config = await repo.get_or_create_config(
                user_id,
                now=now,
                totp_algorithm=self.settings.MFA_TOTP_ALGORITHM,
                totp_digits=self.settings.MFA_TOTP_DIGITS,
                totp_period=self.settings.MFA_TOTP_PERIOD,
            )
            if method in (config.enabled_methods or []):
                await db.commit()
                return None, ServiceError(code=ErrorCode.MFA_ALREADY_ENABLED)

            if method == MfaMethod.TOTP.value:
                result = self._setup_totp(config, user)
                await db.commit()
                log.info(f"Начата настройка TOTP для {user_id}", extra={"user_id": str(user_id), "mfa_method": method})
                return result, None

            if method == MfaMethod.SMS.value:
                if not phone_number:
                    await db.commit()
                    return None, validation_error("phoneNumber", "Phone number is required for SMS.")
                config.sms_phone = phone_number
                config.sms_verified = False
                destination = phone_number
            elif method == MfaMethod.EMAIL.value:
                destination = (email or user.email).strip().lower()
                config.email_address = destination
                config.email_verified = False
            else:
                await db.commit()
                return None, ServiceError(code=ErrorCode.MFA_METHOD_NOT_ALLOWED)

            sent, error = await self._issue_otp(db, user_id, method, destination, OTP_PURPOSE_SETUP)
            await db.commit()
            if error:
                return None, error

        return MfaSetupResult(method=method, destination=sent.destination, expires_in=sent.expires_in), None

    def _setup_totp(self, config: MfaConfig, user: User) -> MfaSetupResult:
        secret = self.random.base32_secret()
        config.totp_secret = secret
        config.totp_verified = False
        config.totp_last_step = None
        config.totp_algorithm = self.settings.MFA_TOTP_ALGORITHM
        config.totp_digits = self.settings.MFA_TOTP_DIGITS
        config.totp_period = self.settings.MFA_TOTP_PERIOD

        uri = provisioning_uri(
            secret,
            user.email,
            self.settings.MFA_TOTP_ISSUER,
            algorithm=config.totp_algorithm,
            digits=config.totp_digits,
            period=config.totp_period,
        )
        return MfaSetupResult(
            method=MfaMethod.TOTP.value,
            secret=secret,
            otpauth_url=uri,
            qr_code=qr_code_data_url(uri),
            algorithm=config.totp_algorithm,
            digits=config.totp_digits,
            period=config.totp_period,
        )

    @service_boundary
    async def verify_setup(
        self,
        user_id: uuid.UUID,
        method: str,
        code: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[MfaVerifySetupResult], Optional[ServiceError]]:
        async with self.session_factory() as db:
            repo = MfaRepository(db)
            config = await repo.get_config(user_id)
            if config is None or not self._setup_pending(config, method):
                return None, ServiceError(code=ErrorCode.MFA_NOT_ENABLED, message="MFA setup has not been started.")
            if method in (config.enabled_methods or []):
                return None, ServiceError(code=ErrorCode.MFA_ALREADY_ENABLED)

            lock_error = await self._check_lock(db, config, method, ip=ip, user_agent=user_agent)
            if lock_error:
                await db.commit()
                return None, lock_error

            if method == MfaMethod.TOTP.value:
                failure = await self._accept_totp(db, config, code)
            else:
                failure = await self._consume_otp(user_id, method, code, OTP_PURPOSE_SETUP)

            if failure:
                error = await self._register_failure(db, user_id, method, failure, ip=ip, user_agent=user_agent)
                await db.commit()
                return None, error

            if method == MfaMethod.TOTP.value:
                config.totp_verified = True
            elif method == MfaMethod.SMS.value:
                config.sms_verified = True
            else:
                config.email_verified = True

            transition = mfa_policy.enable_method(config.enabled_methods or [], config.primary_method, method)
            config.enabled_methods = transition.enabled_methods
            config.primary_method = transition.primary_method
            config.is_enabled = transition.is_enabled
            await db.flush()

            await self._register_success(db, user_id, method, ip=ip, user_agent=user_agent)
            await AuditRepository(db).record(
                "mfa_enabled", now=self.clock.now(), user_id=user_id, ip=ip, user_agent=user_agent,
                detail={"method": method},
            )
            await db.commit()

        log.info(f"MFA метод '{method}' включён", extra={"user_id": str(user_id), "mfa_method": method})
        return MfaVerifySetupResult(
            method=method,
            is_enabled=transition.is_enabled,
            primary_method=transition.primary_method,
            enabled_methods=transition.enabled_methods,
        ), None

    @staticmethod
    def _setup_pending(config: MfaConfig, method: str) -> bool:
        if method == MfaMethod.TOTP.value:
            return bool(config.totp_secret)
        if method == MfaMethod.SMS.value:
            return bool(config.sms_phone)
        if method == MfaMethod.EMAIL.value:
            return bool(config.email_address)
        return False

    # ------------------------------------------------------------------
    # Challenge при входе
    # ------------------------------------------------------------------

    async def requires_mfa_in(self, db: AsyncSession, user_id: uuid.UUID) -> bool:
        config = await MfaRepository(db).get_config(user_id)
        return bool(config and config.is_enabled and config.enabled_methods)

    async def create_challenge_in(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        device: Optional[Dict[str, Any]] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[MfaChallengeInfo], Optional[ServiceError]]:
        repo = MfaRepository(db)
        config = await repo.get_config(user_id)
        if config is None or not config.is_enabled:
            return None, ServiceError(code=ErrorCode.MFA_NOT_ENABLED)

        unused = await repo.count_unused_backup_codes(user_id)
        methods = mfa_policy.challenge_methods(config.enabled_methods or [], unused)

        now = self.clock.now()
        ttl = self.settings.MFA_CHALLENGE_TTL
        expires_at = now + timedelta(seconds=ttl)
        challenge_id = new_challenge_id()
        await self.redis.set_json(
            key_mfa_challenge(challenge_id),
            {
                "user_id": str(user_id),
                "methods": methods,
                "device": device or {},
                "ip": ip,
                "user_agent": user_agent,
                "expires_at": expires_at,
            },
            ex=ttl,
        )
        return MfaChallengeInfo(challenge_id=challenge_id, methods=methods, expires_in=ttl, expires_at=expires_at), None

    async def _load_challenge(self, challenge_id: str) -> Optional[Dict[str, Any]]:
        payload = await self.redis.get_json(key_mfa_challenge(challenge_id))
        if payload is None:
            return None
        if as_utc(datetime.fromisoformat(payload["expires_at"])) <= self.clock.now():
            await self.redis.delete(key_mfa_challenge(challenge_id))
            return None
        return payload

    @service_boundary
    async def send_challenge_code(
        self, challenge_id: str, method: str
    ) -> Tuple[Optional[MfaCodeSent], Optional[ServiceError]]:
        """Отправляет SMS/email код для незавершённого входа."""
        challenge = await self._load_challenge(challenge_id)
        if challenge is None:
            return None, ServiceError(code=ErrorCode.MFA_EXPIRED)
        if method not in challenge["methods"] or method not in (MfaMethod.SMS.value, MfaMethod.EMAIL.value):
            return None, ServiceError(code=ErrorCode.MFA_METHOD_NOT_ALLOWED)

        user_id = uuid.UUID(challenge["user_id"])
        async with self.session_factory() as db:
            config = await MfaRepository(db).get_config(user_id)
            if config is None:
                return None, ServiceError(code=ErrorCode.MFA_NOT_ENABLED)
            lock = mfa_policy.evaluate_lock(config.is_locked, config.locked_until, self.clock.now())
            if lock.locked:
                return None, self._locked_error(lock.locked_until)

            destination = config.sms_phone if method == MfaMethod.SMS.value else config.email_address
            if not destination:
                return None, ServiceError(code=ErrorCode.MFA_METHOD_NOT_ALLOWED)
            sent, error = await self._issue_otp(db, user_id, method, destination, OTP_PURPOSE_CHALLENGE)
            await db.commit()
            return sent, error

    async def verify_challenge_in(
        self,
        db: AsyncSession,
        challenge_id: str,
        method: str,
        code: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[VerifiedChallenge], Optional[ServiceError]]:
        """
        Проверяет код по challenge. Каждая попытка пишется в историю;
        неудачи меняют счётчик, поэтому вызывающий обязан закоммитить
        транзакцию и при ошибке.
        """
        challenge = await self._load_challenge(challenge_id)
        if challenge is None:
            return None, ServiceError(code=ErrorCode.MFA_EXPIRED)
        if method not in challenge["methods"]:
            return None, ServiceError(code=ErrorCode.MFA_METHOD_NOT_ALLOWED)

        user_id = uuid.UUID(challenge["user_id"])
        ip = ip or challenge.get("ip")
        user_agent = user_agent or challenge.get("user_agent")

        config = await MfaRepository(db).get_config(user_id)
        if config is None or not config.is_enabled:
            return None, ServiceError(code=ErrorCode.MFA_NOT_ENABLED)

        lock_error = await self._check_lock(db, config, method, ip=ip, user_agent=user_agent)
        if lock_error:
            return None, lock_error

        failure = await self._evaluate_code(db, config, user_id, method, code)
        if failure:
            error = await self._register_failure(db, user_id, method, failure, ip=ip, user_agent=user_agent)
            return None, error

        # один challenge выдаёт одну сессию: удаление решает, кто победил.
        # Проигравший откатывает транзакцию, чтобы не сжечь резервный код и шаг TOTP.
        if await self.redis.delete(key_mfa_challenge(challenge_id)) != 1:
            await db.rollback()
            return None, ServiceError(code=ErrorCode.MFA_EXPIRED)

        await self._register_success(db, user_id, method, ip=ip, user_agent=user_agent)
        return VerifiedChallenge(
            challenge_id=challenge_id,
            user_id=user_id,
            method=method,
            device=challenge.get("device") or {},
            ip=ip,
            user_agent=user_agent,
        ), None

    @service_boundary
    async def verify_challenge(
        self,
        challenge_id: str,
        method: str,
        code: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[VerifiedChallenge], Optional[ServiceError]]:
        async with self.session_factory() as db:
            result, error = await self.verify_challenge_in(db, challenge_id, method, code, ip=ip, user_agent=user_agent)
            await db.commit()
            return result, error

    async def _accept_totp(self, db: AsyncSession, config: MfaConfig, code: str) -> Optional[str]:
        """Каждый временной шаг принимается один раз, в том числе между разными challenge."""
        step = match_totp_step(
            config.totp_secret,
            code,
            self.clock.now(),
            algorithm=config.totp_algorithm,
            digits=config.totp_digits,
            period=config.totp_period,
            window=self.settings.MFA_TOTP_WINDOW,
        )
        if step is None:
            return "invalid_code"
        if not await MfaRepository(db).claim_totp_step(config.user_id, step, self.clock.now()):
            return "code_reused"
        return None

    async def _evaluate_code(
        self, db: AsyncSession, config: MfaConfig, user_id: uuid.UUID, method: str, code: str
    ) -> Optional[str]:
        """None при успехе, иначе причина неудачи для истории."""
        if method == MfaMethod.TOTP.value:
            if not config.totp_verified or not config.totp_secret:
                return "method_not_configured"
            return await self._accept_totp(db, config, code)

        if method in (MfaMethod.SMS.value, MfaMethod.EMAIL.value):
            return await self._consume_otp(user_id, method, code, OTP_PURPOSE_CHALLENGE)

        if method == BACKUP_CODE_METHOD:
            if not is_backup_code_format(code):
                return "invalid_code"
            redeemed = await MfaRepository(db).redeem_backup_code(
                user_id, self.code_hasher.hash_backup_code(code), self.clock.now()
            )
            return None if redeemed else "invalid_code"

        return "method_not_allowed"

    # ------------------------------------------------------------------
    # Отключение, резервные коды, статус
    # ------------------------------------------------------------------

    @service_boundary
    async def disable(
        self,
        user_id: uuid.UUID,
        method: str,
        password: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[MfaStatus], Optional[ServiceError]]:
        async with self.session_factory() as db:
            auth_repo = AuthRepository(db)
            user = await auth_repo.get_by_id(user_id)
            if user is None:
                return None, ServiceError(code=ErrorCode.NOT_FOUND)
            if not user.has_password:
                return None, validation_error("password", "Set a password before disabling MFA.")
            if not self.password_manager.verify_password(password, user.credentials.password_hash):
                await AuditRepository(db).record(
                    "mfa_disable_denied", now=self.clock.now(), user_id=user_id, success=False,
                    ip=ip, user_agent=user_agent, detail={"method": method},
                )
                await db.commit()
                return None, ServiceError(code=ErrorCode.AUTH_INVALID_CREDENTIALS)

            repo = MfaRepository(db)
            config = await repo.get_config(user_id)
            if config is None or method not in (config.enabled_methods or []):
                return None, ServiceError(code=ErrorCode.MFA_NOT_ENABLED)

            provider_count = await auth_repo.count_providers(user_id)
            if not mfa_policy.can_disable_method(
                config.enabled_methods, method, has_password=user.has_password, provider_count=provider_count
            ):
                return None, ServiceError(code=ErrorCode.OAUTH_LAST_METHOD)

            transition = mfa_policy.disable_method(config.enabled_methods, config.primary_method, method)
            config.enabled_methods = transition.enabled_methods
            config.primary_method = transition.primary_method
            config.is_enabled = transition.is_enabled
            if method == MfaMethod.TOTP.value:
                config.totp_secret = None
                config.totp_verified = False
                config.totp_last_step = None
            elif method == MfaMethod.SMS.value:
                config.sms_verified = False
            else:
                config.email_verified = False
            await db.flush()

            if not transition.is_enabled:
                await repo.delete_backup_codes(user_id)

            await AuditRepository(db).record(
                "mfa_disabled", now=self.clock.now(), user_id=user_id, ip=ip, user_agent=user_agent,
                detail={"method": method},
            )
            await db.commit()
            status = await self._status_in(db, user_id)

        log.info(f"MFA метод '{method}' отключён", extra={"user_id": str(user_id), "mfa_method": method})
        return status, None

    @service_boundary
    async def generate_backup_codes(self, user_id: uuid.UUID) -> Tuple[Optional[BackupCodesResult], Optional[ServiceError]]:
        """Новая партия из MFA_BACKUP_CODE_COUNT кодов; прежние коды перестают действовать."""
        async with self.session_factory() as db:
            repo = MfaRepository(db)
            config = await repo.get_config(user_id)
            if config is None or not config.is_enabled:
                return None, ServiceError(code=ErrorCode.MFA_NOT_ENABLED)

            codes = self._new_backup_codes(self.settings.MFA_BACKUP_CODE_COUNT)
            now = self.clock.now()
            await repo.replace_backup_codes(user_id, [self.code_hasher.hash_backup_code(c) for c in codes], now)
            await AuditRepository(db).record("mfa_backup_codes_generated", now=now, user_id=user_id)
            await db.commit()

        log.info("Сгенерированы резервные коды", extra={"user_id": str(user_id)})
        return BackupCodesResult(codes=codes, generated_at=now), None

    def _new_backup_codes(self, count: int) -> List[str]:
        codes: List[str] = []
        while len(codes) < count:
            raw = self.random.token_hex(BACKUP_CODE_GROUP).upper()
            code = f"{raw[:BACKUP_CODE_GROUP]}-{raw[BACKUP_CODE_GROUP:]}"
            if code not in codes:
                codes.append(code)
        return codes

    @service_boundary
    async def status(self, user_id: uuid.UUID) -> Tuple[Optional[MfaStatus], Optional[ServiceError]]:
        async with self.session_factory() as db:
            return await self._status_in(db, user_id), None

    async def _status_in(self, db: AsyncSession, user_id: uuid.UUID) -> MfaStatus:
        repo = MfaRepository(db)
        config = await repo.get_config(user_id)
        if config is None:
            return MfaStatus(
                is_enabled=False,
                enabled_methods=[],
                methods=[MfaMethodStatus(method=m.value, enabled=False, verified=False) for m in MfaMethod],
                backup_codes_remaining=0,
                is_locked=False,
            )

        enabled = config.enabled_methods or []
        lock = mfa_policy.evaluate_lock(config.is_locked, config.locked_until, self.clock.now())
        return MfaStatus(
            is_enabled=config.is_enabled,
            primary_method=config.primary_method,
            enabled_methods=list(enabled),
            methods=[
                MfaMethodStatus(method="totp", enabled="totp" in enabled, verified=config.totp_verified),
                MfaMethodStatus(
                    method="sms", enabled="sms" in enabled, verified=config.sms_verified,
                    destination=mask_phone(config.sms_phone),
                ),
                MfaMethodStatus(
                    method="email", enabled="email" in enabled, verified=config.email_verified,
                    destination=mask_email(config.email_address),
                ),
            ],
            backup_codes_remaining=await repo.count_unused_backup_codes(user_id),
            backup_codes_generated_at=config.backup_codes_generated_at,
            is_locked=lock.locked,
            locked_until=lock.locked_until if lock.locked else None,
            last_success_at=config.last_success_at,
        )

    @service_boundary
    async def unlock(self, user_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None) -> Tuple[bool, Optional[ServiceError]]:
        """Ручная разблокировка MFA администратором."""
        async with self.session_factory() as db:
            if not await MfaRepository(db).unlock(user_id):
                return False, ServiceError(code=ErrorCode.NOT_FOUND)
            await AuditRepository(db).record(
                "mfa_unlocked", now=self.clock.now(), user_id=user_id,
                detail={"actor_id": str(actor_id) if actor_id else None},
            )
            await db.commit()
        log.info("MFA разблокирована администратором", extra={"user_id": str(user_id)})
        return True, None

    # ------------------------------------------------------------------
    # Счётчик неудач, история, блокировка
    # ------------------------------------------------------------------

    def _locked_error(self, locked_until: Optional[datetime]) -> ServiceError:
        retry_after = None
        if locked_until is not None:
            retry_after = max(1, int((locked_until - self.clock.now()).total_seconds()))
        return ServiceError(code=ErrorCode.MFA_LOCKED, retry_after=retry_after)

    async def _check_lock(
        self, db: AsyncSession, config: MfaConfig, method: str, *, ip: Optional[str], user_agent: Optional[str]
    ) -> Optional[ServiceError]:
        """
        Заблокированная MFA отклоняет попытку, не проверяя код и не трогая
        счётчик; попытка всё равно попадает в историю.
        """
        now = self.clock.now()
        lock = mfa_policy.evaluate_lock(config.is_locked, config.locked_until, now)
        if lock.expired:
            await MfaRepository(db).release_expired_lock(config.user_id, now)
            return None
        if not lock.locked:
            return None
        await self._append_history(db, config.user_id, method, False, "locked", ip=ip, user_agent=user_agent)
        return self._locked_error(lock.locked_until)

    async def _register_failure(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        method: str,
        reason: str,
        *,
        ip: Optional[str],
        user_agent: Optional[str],
    ) -> ServiceError:
        repo = MfaRepository(db)
        now = self.clock.now()
        failures = await repo.register_failure(user_id, now)
        await self._append_history(db, user_id, method, False, reason, ip=ip, user_agent=user_agent)

        if mfa_policy.should_lock(failures, self.settings.MFA_MAX_FAILURES):
            locked = await repo.lock(
                user_id,
                until=mfa_policy.lock_deadline(now, self.settings.MFA_LOCKOUT_SEC),
                reason=mfa_policy.MFA_LOCK_REASON,
            )
            if locked:
                await AuditRepository(db).record(
                    "mfa_locked", now=now, user_id=user_id, success=False, ip=ip, user_agent=user_agent,
                    detail={"failures": failures},
                )
                log.warning(
                    f"MFA заблокирована после {failures} неудачных попыток",
                    extra={"user_id": str(user_id), "event": "mfa_locked"},
                )

        log.info(f"Неудачная MFA-проверка ({reason})", extra={"user_id": str(user_id), "mfa_method": method})
        if reason == "code_expired":
            return ServiceError(code=ErrorCode.MFA_EXPIRED)
        return ServiceError(code=ErrorCode.MFA_INVALID)

    async def _register_success(
        self, db: AsyncSession, user_id: uuid.UUID, method: str, *, ip: Optional[str], user_agent: Optional[str]
    ) -> None:
        await MfaRepository(db).register_success(user_id, self.clock.now())
        await self._append_history(db, user_id, method, True, None, ip=ip, user_agent=user_agent)

    async def _append_history(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        method: str,
        success: bool,
        failure_reason: Optional[str],
        *,
        ip: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        await MfaRepository(db).append_history(
            user_id,
            method=method,
            success=success,
            now=self.clock.now(),
            ip=ip,
            user_agent=user_agent,
            failure_reason=failure_reason,
            limit=self.settings.MFA_HISTORY_LIMIT,
        )

    # ------------------------------------------------------------------
    # Одноразовые SMS/email коды
    # ------------------------------------------------------------------

    def _otp_hash(self, user_id: uuid.UUID, method: str, code: str) -> str:
        return self.code_hasher.hash(f"otp:{user_id}:{method}:{code.strip()}")

    async def _issue_otp(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        method: str,
        destination: str,
        purpose: str,
    ) -> Tuple[Optional[MfaCodeSent], Optional[ServiceError]]:
        """Резервирует отправку в дневном лимите, кладёт хеш кода в Redis и отправляет код."""
        repo = MfaRepository(db)
        now = self.clock.now()
        reserved = await repo.reserve_send(
            user_id,
            method,
            now=now,
            reset_at=mfa_policy.send_window_reset_at(now),
            cap=self.settings.MFA_DAILY_SEND_LIMIT,
        )
        if not reserved:
            await AuditRepository(db).record(
                "mfa_send_limited", now=now, user_id=user_id, success=False, detail={"method": method}
            )
            log.warning("Дневной лимит отправки кодов исчерпан", extra={"user_id": str(user_id), "mfa_method": method})
            return None, ServiceError(code=ErrorCode.MFA_TOO_MANY_ATTEMPTS)

        ttl = self.settings.MFA_OTP_TTL
        code = self.random.numeric_code(self.settings.MFA_OTP_LENGTH)
        key = key_mfa_otp(purpose, str(user_id), method)
        await self.redis.set_json(
            key,
            {"hash": self._otp_hash(user_id, method, code), "expires_at": now + timedelta(seconds=ttl)},
            ex=ttl,
        )

        minutes = max(1, ttl // 60)
        if method == MfaMethod.SMS.value:
            delivered = await self.notifier.send_sms(
                destination, f"Your verification code is {code}. It expires in {minutes} minutes."
            )
            masked = mask_phone(destination)
        else:
            delivered = await self.notifier.send_email(
                destination,
                "Your verification code",
                f"Your verification code is {code}. It expires in {minutes} minutes.",
            )
            masked = mask_email(destination)

        if not delivered:
            await self.redis.delete(key)
            return None, ServiceError(code=ErrorCode.NOTIFICATION_UNAVAILABLE)
        return MfaCodeSent(method=method, destination=masked, expires_in=ttl), None

    async def _consume_otp(self, user_id: uuid.UUID, method: str, code: str, purpose: str) -> Optional[str]:
        """Одноразовый код гасится удалением ключа: из параллельных попыток проходит одна."""
        key = key_mfa_otp(purpose, str(user_id), method)
        payload = await self.redis.get_json(key)
        if payload is None:
            return "invalid_code"
        if as_utc(datetime.fromisoformat(payload["expires_at"])) <= self.clock.now():
            await self.redis.delete(key)
            return "code_expired"
        if not self.code_hasher.matches(f"otp:{user_id}:{method}:{code.strip()}", payload["hash"]):
            return "invalid_code"
        if await self.redis.delete(key) != 1:
            return "invalid_code"
        return None


def is_backup_code_format(code: str) -> bool:
    normalized = CodeHasher.normalize_backup_code(code)
    return len(normalized) == BACKUP_CODE_GROUP * 2 and all(c in "0123456789ABCDEF" for c in normalized)

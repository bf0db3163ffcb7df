# apps/auth_svc/services/session_manager.py
from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from libs.app.errors import ErrorCode, ServiceError
from libs.domain.orm.auth import TrustedDevice, UserSession
from libs.utils.clock import Clock
from ..config.settings_auth import AuthServiceSettings
from ..db.session_repository import SessionRepository
from .token_service import TokenService

log = logging.getLogger(__name__)

# Причины завершения сессии (termination_reason)
REASON_LOGOUT = "logout"
REASON_LOGOUT_ALL = "logout_all"
REASON_TERMINATED = "terminated"
REASON_EVICTED = "evicted"
REASON_IDLE = "idle_timeout"
REASON_EXPIRED = "expired"
REASON_TOKEN_REUSE = "token_reuse"
REASON_PASSWORD_CHANGED = "password_changed"
REASON_PASSWORD_RESET = "password_reset"
REASON_SUSPENDED = "account_suspended"


def device_fingerprint(device_id: str, user_agent: Optional[str]) -> str:
    return hashlib.sha256(f"{device_id}:{user_agent or ''}".encode("utf-8")).hexdigest()


class SessionManager:
    """
    Сессии и доверенные устройства. Все методы работают в транзакции
    вызывающего; завершение сессии всегда отзывает её refresh-токены.
    """

    def __init__(self, settings: AuthServiceSettings, token_service: TokenService, clock: Clock):
        self.settings = settings
        self.token_service = token_service
        self.clock = clock
        self.idle_timeout = timedelta(seconds=settings.SESSION_IDLE_TIMEOUT_SEC)
        self.session_ttl = timedelta(seconds=settings.SESSION_TTL)

    def expiry_reason(self, user_session: UserSession) -> Optional[str]:
        """Причина, по которой открытая сессия уже считается истёкшей, или None."""
        now = self.clock.now()
        if user_session.expires_at <= now:
            return REASON_EXPIRED
        if now - user_session.last_activity_at > self.idle_timeout:
            return REASON_IDLE
        return None

    async def _open_sessions(self, db: AsyncSession, user_id: uuid.UUID) -> List[UserSession]:
        """Открытые сессии без истёкших; истёкшие попутно завершаются."""
        repo = SessionRepository(db)
        alive: List[UserSession] = []
        for user_session in await repo.list_open(user_id):
            reason = self.expiry_reason(user_session)
            if reason:
                await self.terminate(db, [user_session.id], reason=reason)
            else:
                alive.append(user_session)
        return alive

    async def create(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        device_info: Optional[Dict[str, Any]] = None,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[UserSession], Optional[ServiceError]]:
        device_info = dict(device_info or {})
        # Подсчёт и вставка сессий одного пользователя идут строго по очереди
        await SessionRepository(db).lock_owner(user_id)
        open_sessions = await self._open_sessions(db, user_id)

        limit = self.settings.SESSION_MAX_CONCURRENT
        if len(open_sessions) >= limit:
            if self.settings.SESSION_LIMIT_POLICY == "reject":
                log.info(f"Лимит сессий исчерпан для пользователя {user_id}", extra={"user_id": str(user_id)})
                return None, ServiceError(code=ErrorCode.AUTH_SESSION_LIMIT)
            evicted = [s.id for s in open_sessions[: len(open_sessions) - limit + 1]]
            await self.terminate(db, evicted, reason=REASON_EVICTED)
            log.info(
                f"Вытеснено сессий: {len(evicted)} (лимит {limit})",
                extra={"user_id": str(user_id), "event": "session_evicted"},
            )

        now = self.clock.now()
        user_session = UserSession(
            id=uuid.uuid4(),
            user_id=user_id,
            device_id=device_info.get("device_id"),
            device_info=device_info,
            ip=ip,
            user_agent=user_agent,
            created_at=now,
            last_activity_at=now,
            expires_at=now + self.session_ttl,
        )
        await SessionRepository(db).add(user_session)
        return user_session, None

    async def touch(
        self, db: AsyncSession, session_id: uuid.UUID, user_id: Optional[uuid.UUID] = None
    ) -> Tuple[Optional[UserSession], Optional[ServiceError]]:
        """
        Проверяет сессию и продлевает активность. Простоявшая дольше
        SESSION_IDLE_TIMEOUT_SEC или пережившая SESSION_TTL сессия завершается здесь же.
        """
        repo = SessionRepository(db)
        user_session = await repo.get(session_id)
        if user_session is None or (user_id is not None and user_session.user_id != user_id):
            return None, ServiceError(code=ErrorCode.AUTH_SESSION_EXPIRED)
        if user_session.terminated_at is not None:
            return None, ServiceError(code=ErrorCode.AUTH_SESSION_EXPIRED)

        reason = self.expiry_reason(user_session)
        if reason:
            await self.terminate(db, [user_session.id], reason=reason)
            return None, ServiceError(code=ErrorCode.AUTH_SESSION_EXPIRED)

        now = self.clock.now()
        await repo.touch(session_id, now)
        user_session.last_activity_at = now
        return user_session, None

    async def get(self, db: AsyncSession, user_id: uuid.UUID, session_id: uuid.UUID) -> Optional[UserSession]:
        user_session = await SessionRepository(db).get(session_id)
        if user_session is None or user_session.user_id != user_id or user_session.terminated_at is not None:
            return None
        if self.expiry_reason(user_session):
            return None
        return user_session

    async def list_active(self, db: AsyncSession, user_id: uuid.UUID) -> List[UserSession]:
        return await self._open_sessions(db, user_id)

    async def terminate(self, db: AsyncSession, session_ids: List[uuid.UUID], *, reason: str) -> int:
        """Идемпотентно: уже завершённые сессии не считаются."""
        if not session_ids:
            return 0
        terminated = await SessionRepository(db).terminate(session_ids, now=self.clock.now(), reason=reason)
        await self.token_service.revoke_for_sessions(db, session_ids)
        return terminated

    async def terminate_all(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        reason: str = REASON_LOGOUT_ALL,
        except_session_id: Optional[uuid.UUID] = None,
    ) -> int:
        ids = await SessionRepository(db).terminate_for_user(
            user_id, now=self.clock.now(), reason=reason, except_session_id=except_session_id
        )
        await self.token_service.revoke_for_sessions(db, ids)
        return len(ids)

    async def terminate_others(self, db: AsyncSession, user_id: uuid.UUID, current_session_id: uuid.UUID) -> int:
        return await self.terminate_all(
            db, user_id, reason=REASON_TERMINATED, except_session_id=current_session_id
        )

    # --- Доверенные устройства ---

    async def trust_device(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        device_id: str,
        *,
        user_agent: Optional[str],
        device_name: Optional[str] = None,
    ) -> TrustedDevice:
        """Добавляет устройство или продлевает доверие к уже известному."""
        repo = SessionRepository(db)
        now = self.clock.now()
        expires_at = now + timedelta(seconds=self.settings.TRUSTED_DEVICE_TTL)
        fingerprint = device_fingerprint(device_id, user_agent)

        device = await repo.get_trusted_device(user_id, fingerprint)
        if device is not None:
            device.expires_at = expires_at
            device.last_used_at = now
            if device_name:
                device.device_name = device_name
            await db.flush()
            return device

        return await repo.add_trusted_device(
            TrustedDevice(
                id=uuid.uuid4(),
                user_id=user_id,
                device_id=device_id,
                fingerprint=fingerprint,
                device_name=device_name,
                added_at=now,
                expires_at=expires_at,
            )
        )

    async def is_trusted(
        self, db: AsyncSession, user_id: uuid.UUID, device_id: Optional[str], user_agent: Optional[str]
    ) -> bool:
        if not device_id:
            return False
        repo = SessionRepository(db)
        device = await repo.get_trusted_device(user_id, device_fingerprint(device_id, user_agent))
        now = self.clock.now()
        if device is None or device.expires_at <= now:
            return False
        await repo.mark_trusted_device_used(device.id, now)
        return True

    async def list_trusted(self, db: AsyncSession, user_id: uuid.UUID) -> List[TrustedDevice]:
        return await SessionRepository(db).list_trusted_devices(user_id, self.clock.now())

    async def remove_trusted_device(self, db: AsyncSession, user_id: uuid.UUID, device_id: str) -> bool:
        return await SessionRepository(db).remove_trusted_device(user_id, device_id) > 0

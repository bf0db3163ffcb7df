# apps/auth_svc/services/token_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from libs.app.errors import ErrorCode, ServiceError
from libs.domain.dto.auth import TokenClaims, TokenPair
from libs.domain.orm.auth import RefreshToken, User
from libs.utils.clock import Clock
from libs.utils.ids import parse_uuid
from ..config.settings_auth import AuthServiceSettings
from ..db.token_repository import TokenRepository
from ..utils.jwt_manager import ACCESS_TOKEN_TYPE, REFRESH_TOKEN_TYPE, JwtManager
from ..utils.password_manager import PasswordManager

log = logging.getLogger(__name__)


@dataclass
class RefreshContext:
    """Проверенный refresh-токен, готовый к ротации."""

    record: RefreshToken
    user_id: uuid.UUID
    session_id: uuid.UUID


class TokenService:
    """
    Выдача и проверка токенов. Работает внутри транзакции вызывающего
    (принимает AsyncSession), собственных сессий не открывает.
    """

    def __init__(
        self,
        jwt_manager: JwtManager,
        password_manager: PasswordManager,
        settings: AuthServiceSettings,
        clock: Clock,
    ):
        self.jwt_manager = jwt_manager
        self.password_manager = password_manager
        self.clock = clock
        self.access_token_expires = timedelta(seconds=settings.AUTH_ACCESS_TTL)
        self.refresh_token_expires = timedelta(seconds=settings.AUTH_REFRESH_TTL)

    async def issue_pair(self, db: AsyncSession, user: User, session_id: uuid.UUID) -> Tuple[TokenPair, uuid.UUID]:
        """Создаёт access/refresh пару, сохраняет хеш refresh-токена. Возвращает (пара, jti)."""
        now = self.clock.now()
        access_token = self.jwt_manager.create_access_token(
            user_id=user.id,
            role=user.role.value,
            session_id=session_id,
            expires_delta=self.access_token_expires,
            now=now,
        )
        refresh_token, jti = self.jwt_manager.create_refresh_token(
            user_id=user.id,
            session_id=session_id,
            expires_delta=self.refresh_token_expires,
            now=now,
        )
        await TokenRepository(db).create_refresh_token(
            jti=jti,
            user_id=user.id,
            session_id=session_id,
            token_hash=self.password_manager.hash_refresh_token(refresh_token),
            created_at=now,
            expires_at=now + self.refresh_token_expires,
        )
        pair = TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_token_expires.total_seconds()),
            token_type="Bearer",
        )
        return pair, jti

    def decode_access(self, token: str) -> Tuple[Optional[TokenClaims], Optional[ServiceError]]:
        """Проверка подписи и срока access-токена. Состояние сессии проверяет вызывающий."""
        payload, error = self.jwt_manager.decode_token(token, ACCESS_TOKEN_TYPE)
        if error:
            return None, ServiceError(code=error)
        user_id = parse_uuid(payload.get("sub"))
        session_id = parse_uuid(payload.get("sid"))
        if user_id is None or session_id is None:
            return None, ServiceError(code=ErrorCode.AUTH_TOKEN_INVALID)
        claims = TokenClaims(
            user_id=user_id,
            session_id=session_id,
            role=str(payload.get("role", "user")),
            jti=str(payload["jti"]),
            exp=int(payload["exp"]),
        )
        return claims, None

    async def load_refresh(self, db: AsyncSession, refresh_token: str) -> Tuple[Optional[RefreshContext], Optional[ServiceError]]:
        """
        Проверяет refresh-токен: подпись, срок, наличие в БД, совпадение хеша, отзыв.
        Повторное предъявление уже ротированного токена возвращает
        AUTH_TOKEN_REVOKED и помечается в контексте для завершения сессии.
        """
        payload, error = self.jwt_manager.decode_token(refresh_token, REFRESH_TOKEN_TYPE)
        if error:
            return None, ServiceError(code=error)

        jti = parse_uuid(payload.get("jti"))
        session_id = parse_uuid(payload.get("sid"))
        user_id = parse_uuid(payload.get("sub"))
        if jti is None or session_id is None or user_id is None:
            return None, ServiceError(code=ErrorCode.AUTH_TOKEN_INVALID)

        record = await TokenRepository(db).get_by_jti(jti)
        if record is None or record.user_id != user_id or record.session_id != session_id:
            return None, ServiceError(code=ErrorCode.AUTH_TOKEN_INVALID)
        if record.token_hash != self.password_manager.hash_refresh_token(refresh_token):
            return None, ServiceError(code=ErrorCode.AUTH_TOKEN_INVALID)

        context = RefreshContext(record=record, user_id=user_id, session_id=session_id)
        if record.revoked_at is not None:
            return context, ServiceError(code=ErrorCode.AUTH_TOKEN_REVOKED)
        if record.expires_at <= self.clock.now():
            return None, ServiceError(code=ErrorCode.AUTH_TOKEN_EXPIRED)
        return context, None

    async def rotate(self, db: AsyncSession, context: RefreshContext, user: User) -> Tuple[Optional[TokenPair], Optional[ServiceError]]:
        """Выдаёт новую пару в той же сессии и атомарно отзывает старый refresh-токен."""
        pair, new_jti = await self.issue_pair(db, user, context.session_id)
        consumed = await TokenRepository(db).consume(
            context.record.jti, now=self.clock.now(), replaced_by=new_jti
        )
        if not consumed:
            # параллельная ротация успела первой
            return None, ServiceError(code=ErrorCode.AUTH_TOKEN_REVOKED)
        return pair, None

    async def revoke_for_sessions(self, db: AsyncSession, session_ids: list[uuid.UUID]) -> int:
        return await TokenRepository(db).revoke_for_sessions(session_ids, self.clock.now())

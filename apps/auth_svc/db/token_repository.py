# apps/auth_svc/db/token_repository.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from libs.domain.orm.auth import RefreshToken


class TokenRepository:
    """Хранилище хешей refresh-токенов."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_refresh_token(
        self,
        *,
        jti: uuid.UUID,
        user_id: uuid.UUID,
        session_id: uuid.UUID,
        token_hash: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> RefreshToken:
        """Сохраняет новый refresh-токен в БД."""
        new_token = RefreshToken(
            jti=jti,
            user_id=user_id,
            session_id=session_id,
            token_hash=token_hash,
            created_at=created_at,
            expires_at=expires_at,
        )
        self.session.add(new_token)
        await self.session.flush()
        return new_token

    async def get_by_jti(self, jti: uuid.UUID) -> Optional[RefreshToken]:
        """Находит refresh-токен по JTI, в том числе отозванный (нужно для обнаружения повторного использования)."""
        stmt = (
            select(RefreshToken)
            .where(RefreshToken.jti == jti)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def consume(self, jti: uuid.UUID, *, now: datetime, replaced_by: uuid.UUID) -> bool:
        """
        Отзывает токен при ротации. Условие revoked_at IS NULL гарантирует,
        что из двух параллельных обновлений по одному токену выиграет одно.
        """
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.jti == jti, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now, replaced_by=replaced_by)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke_for_sessions(self, session_ids: Sequence[uuid.UUID], now: datetime) -> int:
        if not session_ids:
            return 0
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.session_id.in_(list(session_ids)), RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

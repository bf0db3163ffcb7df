# apps/auth_svc/db/session_repository.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from libs.domain.orm.auth import TrustedDevice, User, UserSession


def owner_lock_statement(user_id: uuid.UUID):
    return select(User.id).where(User.id == user_id).with_for_update()


class SessionRepository:
    """Сессии пользователя и доверенные устройства."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def lock_owner(self, user_id: uuid.UUID) -> None:
        """SELECT ... FOR UPDATE по строке пользователя; держится до конца транзакции."""
        await self.session.execute(owner_lock_statement(user_id))

    async def add(self, user_session: UserSession) -> UserSession:
        self.session.add(user_session)
        await self.session.flush()
        return user_session

    async def get(self, session_id: uuid.UUID) -> Optional[UserSession]:
        stmt = (
            select(UserSession)
            .where(UserSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_open(self, user_id: uuid.UUID) -> List[UserSession]:
        """Незавершённые сессии, от старых к новым. Истечение проверяет SessionManager."""
        stmt = (
            select(UserSession)
            .where(UserSession.user_id == user_id, UserSession.terminated_at.is_(None))
            .order_by(UserSession.created_at, UserSession.id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def touch(self, session_id: uuid.UUID, now: datetime) -> bool:
        result = await self.session.execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.terminated_at.is_(None))
            .values(last_activity_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def terminate(self, session_ids: Sequence[uuid.UUID], *, now: datetime, reason: str) -> int:
        """Завершает ещё открытые сессии; уже завершённые не трогаются (идемпотентно)."""
        if not session_ids:
            return 0
        result = await self.session.execute(
            update(UserSession)
            .where(UserSession.id.in_(list(session_ids)), UserSession.terminated_at.is_(None))
            .values(terminated_at=now, termination_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def terminate_for_user(
        self,
        user_id: uuid.UUID,
        *,
        now: datetime,
        reason: str,
        except_session_id: uuid.UUID | None = None,
    ) -> List[uuid.UUID]:
        stmt = select(UserSession.id).where(
            UserSession.user_id == user_id, UserSession.terminated_at.is_(None)
        )
        if except_session_id is not None:
            stmt = stmt.where(UserSession.id != except_session_id)
        ids = list((await self.session.execute(stmt)).scalars().all())
        await self.terminate(ids, now=now, reason=reason)
        return ids

    # --- Доверенные устройства ---

    async def get_trusted_device(self, user_id: uuid.UUID, fingerprint: str) -> Optional[TrustedDevice]:
        stmt = (
            select(TrustedDevice)
            .where(TrustedDevice.user_id == user_id, TrustedDevice.fingerprint == fingerprint)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def add_trusted_device(self, device: TrustedDevice) -> TrustedDevice:
        self.session.add(device)
        await self.session.flush()
        return device

    async def list_trusted_devices(self, user_id: uuid.UUID, now: datetime) -> List[TrustedDevice]:
        stmt = (
            select(TrustedDevice)
            .where(TrustedDevice.user_id == user_id, TrustedDevice.expires_at > now)
            .order_by(TrustedDevice.added_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def remove_trusted_device(self, user_id: uuid.UUID, device_id: str) -> int:
        result = await self.session.execute(
            delete(TrustedDevice)
            .where(TrustedDevice.user_id == user_id, TrustedDevice.device_id == device_id)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def mark_trusted_device_used(self, device_pk: uuid.UUID, now: datetime) -> None:
        await self.session.execute(
            update(TrustedDevice)
            .where(TrustedDevice.id == device_pk)
            .values(last_used_at=now)
            .execution_options(synchronize_session=False)
        )

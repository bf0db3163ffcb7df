# apps/auth_svc/db/audit_repository.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from libs.domain.orm.auth import AuthEvent


class AuditRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        event_type: str,
        *,
        now: datetime,
        user_id: Optional[uuid.UUID] = None,
        success: bool = True,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.session.add(
            AuthEvent(
                id=uuid.uuid4(),
                user_id=user_id,
                event_type=event_type,
                success=success,
                ip=ip,
                user_agent=user_agent,
                detail=detail or {},
                created_at=now,
            )
        )
        await self.session.flush()

    async def list_for_user(self, user_id: uuid.UUID, event_type: str | None = None) -> List[AuthEvent]:
        stmt = select(AuthEvent).where(AuthEvent.user_id == user_id)
        if event_type:
            stmt = stmt.where(AuthEvent.event_type == event_type)
        result = await self.session.execute(stmt.order_by(AuthEvent.created_at))
        return list(result.scalars().all())

    async def page_for_user(
        self, user_id: uuid.UUID, event_types: Sequence[str], *, limit: int, offset: int
    ) -> Tuple[List[AuthEvent], int]:
        """Страница событий пользователя, свежие первыми, и общее их число."""
        condition = (AuthEvent.user_id == user_id) & AuthEvent.event_type.in_(list(event_types))
        total = (await self.session.execute(select(func.count()).select_from(AuthEvent).where(condition))).scalar_one()
        result = await self.session.execute(
            select(AuthEvent)
            .where(condition)
            .order_by(AuthEvent.created_at.desc(), AuthEvent.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total)

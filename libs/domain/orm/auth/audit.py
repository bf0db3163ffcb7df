# libs/domain/orm/auth/audit.py
from __future__ import annotations
import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Boolean, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from libs.domain.orm.base import Base, JSONType, UTCDateTime, utcnow


class AuthEvent(Base):
    """Журнал событий безопасности: входы, блокировки, rate-limit, привязки OAuth."""

    __tablename__ = "auth_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # без внешнего ключа: событие может относиться к несуществующему email
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(512))
    detail: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

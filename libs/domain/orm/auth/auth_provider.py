# libs/domain/orm/auth/auth_provider.py
from __future__ import annotations
import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from libs.domain.orm.base import Base, JSONType, UTCDateTime, utcnow


class AuthProvider(Base):
    """Привязка внешней OAuth-учётки к локальному пользователю."""

    __tablename__ = "auth_providers"
    __table_args__ = (
        UniqueConstraint("provider", "provider_id", name="uq_auth_providers_provider_identity"),
        UniqueConstraint("user_id", "provider", name="uq_auth_providers_user_provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # Профиль провайдера без токенов доступа
    provider_data: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    connected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

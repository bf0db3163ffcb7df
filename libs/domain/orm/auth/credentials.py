# libs/domain/orm/auth/credentials.py
from __future__ import annotations
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from libs.domain.orm.base import Base, UTCDateTime

if TYPE_CHECKING:
    from .user import User


class Credentials(Base):
    __tablename__ = "credentials"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )

    # NULL для аккаунтов, созданных только через OAuth
    password_hash: Mapped[str | None] = mapped_column(String(255))
    password_updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    password_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    failed_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Связи
    user: Mapped["User"] = relationship(back_populates="credentials", uselist=False)

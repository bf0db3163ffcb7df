# libs/domain/orm/auth/user.py
from __future__ import annotations
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Enum, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from libs.domain.orm.base import Base, UTCDateTime, utcnow
from .enums import AccountRole, AccountStatus, enum_values


if TYPE_CHECKING:
    from .credentials import Credentials


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # email хранится в нижнем регистре, поэтому уникальность регистронезависимая
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    username: Mapped[str | None] = mapped_column(String(50), unique=True)

    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))

    status: Mapped[AccountStatus] = mapped_column(
        Enum(AccountStatus, name="account_status_enum", values_callable=enum_values),
        nullable=False,
        default=AccountStatus.ACTIVE,
    )
    role: Mapped[AccountRole] = mapped_column(
        Enum(AccountRole, name="account_role_enum", values_callable=enum_values),
        nullable=False,
        default=AccountRole.USER,
    )
    locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime)
    lock_reason: Mapped[str | None] = mapped_column(String(255))

    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Увеличивается при каждом изменении набора способов входа (CAS-защита инварианта)
    credential_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # Связи
    credentials: Mapped["Credentials"] = relationship(
        back_populates="user", uselist=False, lazy="joined"
    )

    @property
    def has_password(self) -> bool:
        return bool(self.credentials and self.credentials.password_hash)

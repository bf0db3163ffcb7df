# libs/domain/orm/auth/mfa.py
from __future__ import annotations
import uuid
from datetime import datetime
from typing import List

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from libs.domain.orm.base import Base, JSONType, UTCDateTime, utcnow


class MfaConfig(Base):
    """
    Настройки MFA пользователя (1:1). Только данные: переходы состояний
    описаны в apps/auth_svc/services/mfa_policy.py, атомарные обновления
    счётчиков делает MfaRepository.
    """

    __tablename__ = "mfa_configs"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    primary_method: Mapped[str | None] = mapped_column(String(16))
    enabled_methods: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    # --- TOTP ---
    totp_secret: Mapped[str | None] = mapped_column(String(64))
    totp_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    totp_algorithm: Mapped[str] = mapped_column(String(8), nullable=False, default="SHA1")
    totp_digits: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    totp_period: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    totp_last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    # последний принятый временной шаг; коды этого и более ранних шагов не принимаются
    totp_last_step: Mapped[int | None] = mapped_column(BigInteger)

    # --- SMS ---
    sms_phone: Mapped[str | None] = mapped_column(String(32))
    sms_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sms_sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sms_sent_count_reset_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # --- Email ---
    email_address: Mapped[str | None] = mapped_column(String(255))
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    email_sent_count_reset_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    backup_codes_generated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # --- Блокировка после неудачных проверок ---
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime)
    lock_reason: Mapped[str | None] = mapped_column(String(255))

    last_verification_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    last_success_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class BackupCode(Base):
    __tablename__ = "mfa_backup_codes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # HMAC-SHA256 нормализованного кода; открытый код нигде не хранится
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class MfaVerificationEvent(Base):
    """Запись истории проверок. На пользователя хранится не больше MFA_HISTORY_LIMIT записей."""

    __tablename__ = "mfa_verification_events"

    # монотонный id задаёт порядок записей даже при одинаковом timestamp
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    method: Mapped[str] = mapped_column(String(16), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(512))
    failure_reason: Mapped[str | None] = mapped_column(String(255))
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

# apps/auth_svc/db/mfa_repository.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from libs.domain.orm.auth import BackupCode, MfaConfig, MfaVerificationEvent


class MfaRepository:
    """
    Хранилище MFA-конфигурации, резервных кодов и истории проверок.
    Все счётчики меняются атомарным UPDATE; погашение резервного кода:
    условный UPDATE ... WHERE is_used = false с проверкой rowcount.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_config(self, user_id: uuid.UUID) -> Optional[MfaConfig]:
        stmt = (
            select(MfaConfig)
            .where(MfaConfig.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_config(
        self,
        user_id: uuid.UUID,
        *,
        now: datetime,
        totp_algorithm: str,
        totp_digits: int,
        totp_period: int,
    ) -> MfaConfig:
        config = await self.get_config(user_id)
        if config is None:
            config = MfaConfig(
                user_id=user_id,
                is_enabled=False,
                enabled_methods=[],
                totp_algorithm=totp_algorithm,
                totp_digits=totp_digits,
                totp_period=totp_period,
                consecutive_failures=0,
                sms_sent_count=0,
                email_sent_count=0,
                created_at=now,
            )
            self.session.add(config)
            await self.session.flush()
        return config

    # --- Счётчик неудач и блокировка ---

    async def register_failure(self, user_id: uuid.UUID, now: datetime) -> int:
        await self.session.execute(
            update(MfaConfig)
            .where(MfaConfig.user_id == user_id)
            .values(
                consecutive_failures=MfaConfig.consecutive_failures + 1,
                last_verification_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            select(MfaConfig.consecutive_failures).where(MfaConfig.user_id == user_id)
        )
        return int(result.scalar_one())

    async def register_success(self, user_id: uuid.UUID, now: datetime) -> None:
        await self.session.execute(
            update(MfaConfig)
            .where(MfaConfig.user_id == user_id)
            .values(consecutive_failures=0, last_verification_at=now, last_success_at=now)
            .execution_options(synchronize_session=False)
        )

    async def claim_totp_step(self, user_id: uuid.UUID, step: int, now: datetime) -> bool:
        """Принимает шаг TOTP, только если он позже последнего принятого (compare-and-swap)."""
        result = await self.session.execute(
            update(MfaConfig)
            .where(
                MfaConfig.user_id == user_id,
                or_(MfaConfig.totp_last_step.is_(None), MfaConfig.totp_last_step < step),
            )
            .values(totp_last_step=step, totp_last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def lock(self, user_id: uuid.UUID, *, until: datetime, reason: str) -> bool:
        """Ставит блокировку, только если её ещё нет: срок не продлевается."""
        result = await self.session.execute(
            update(MfaConfig)
            .where(MfaConfig.user_id == user_id, MfaConfig.is_locked.is_(False))
            .values(is_locked=True, locked_until=until, lock_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def unlock(self, user_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            update(MfaConfig)
            .where(MfaConfig.user_id == user_id)
            .values(is_locked=False, locked_until=None, lock_reason=None, consecutive_failures=0)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_expired_lock(self, user_id: uuid.UUID, now: datetime) -> bool:
        result = await self.session.execute(
            update(MfaConfig)
            .where(
                MfaConfig.user_id == user_id,
                MfaConfig.is_locked.is_(True),
                MfaConfig.locked_until <= now,
            )
            .values(is_locked=False, locked_until=None, lock_reason=None, consecutive_failures=0)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # --- Дневной лимит отправки SMS/email ---

    async def reserve_send(self, user_id: uuid.UUID, method: str, *, now: datetime, reset_at: datetime, cap: int) -> bool:
        """
        Резервирует одну отправку кода. Сначала атомарно сбрасывает истёкшее
        суточное окно, затем увеличивает счётчик, только если лимит не исчерпан.
        """
        count_col = MfaConfig.sms_sent_count if method == "sms" else MfaConfig.email_sent_count
        reset_col = MfaConfig.sms_sent_count_reset_at if method == "sms" else MfaConfig.email_sent_count_reset_at

        await self.session.execute(
            update(MfaConfig)
            .where(
                MfaConfig.user_id == user_id,
                or_(reset_col.is_(None), reset_col <= now),
            )
            .values({count_col.key: 0, reset_col.key: reset_at})
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            update(MfaConfig)
            .where(MfaConfig.user_id == user_id, count_col < cap)
            .values({count_col.key: count_col + 1})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # --- Резервные коды ---

    async def replace_backup_codes(self, user_id: uuid.UUID, code_hashes: Iterable[str], now: datetime) -> None:
        """Удаляет все прежние коды и сохраняет новую партию."""
        await self.session.execute(
            delete(BackupCode)
            .where(BackupCode.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        self.session.add_all(
            BackupCode(id=uuid.uuid4(), user_id=user_id, code_hash=code_hash, is_used=False, created_at=now)
            for code_hash in code_hashes
        )
        await self.session.execute(
            update(MfaConfig)
            .where(MfaConfig.user_id == user_id)
            .values(backup_codes_generated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

    async def delete_backup_codes(self, user_id: uuid.UUID) -> None:
        await self.session.execute(
            delete(BackupCode)
            .where(BackupCode.user_id == user_id)
            .execution_options(synchronize_session=False)
        )

    async def redeem_backup_code(self, user_id: uuid.UUID, code_hash: str, now: datetime) -> bool:
        """Погашает код одним условным UPDATE: из двух параллельных попыток успешна ровно одна."""
        result = await self.session.execute(
            update(BackupCode)
            .where(
                and_(
                    BackupCode.user_id == user_id,
                    BackupCode.code_hash == code_hash,
                    BackupCode.is_used.is_(False),
                )
            )
            .values(is_used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def count_unused_backup_codes(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BackupCode)
            .where(BackupCode.user_id == user_id, BackupCode.is_used.is_(False))
        )
        return int(result.scalar_one())

    # --- История проверок ---

    async def append_history(
        self,
        user_id: uuid.UUID,
        *,
        method: str,
        success: bool,
        now: datetime,
        ip: str | None,
        user_agent: str | None,
        failure_reason: str | None,
        limit: int,
    ) -> None:
        """Добавляет запись и обрезает историю до последних limit записей."""
        self.session.add(
            MfaVerificationEvent(
                user_id=user_id,
                method=method,
                success=success,
                ip=ip,
                user_agent=user_agent,
                failure_reason=failure_reason,
                timestamp=now,
            )
        )
        await self.session.flush()

        keep = (
            select(MfaVerificationEvent.id)
            .where(MfaVerificationEvent.user_id == user_id)
            .order_by(MfaVerificationEvent.id.desc())
            .limit(limit)
        )
        await self.session.execute(
            delete(MfaVerificationEvent)
            .where(
                MfaVerificationEvent.user_id == user_id,
                MfaVerificationEvent.id.not_in(keep),
            )
            .execution_options(synchronize_session=False)
        )

    async def list_history(self, user_id: uuid.UUID) -> List[MfaVerificationEvent]:
        result = await self.session.execute(
            select(MfaVerificationEvent)
            .where(MfaVerificationEvent.user_id == user_id)
            .order_by(MfaVerificationEvent.id.desc())
        )
        return list(result.scalars().all())

# apps/auth_svc/db/auth_repository.py
from __future__ import annotations

import uuid
from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from libs.domain.orm.auth import (
    AccountStatus,
    AuthProvider,
    Credentials,
    User,
)

log = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthRepository:
    """
    Репозиторий пользователей, паролей и OAuth-привязок.
    Счётчики и переходы статуса обновляются одним UPDATE с условием,
    чтобы параллельные запросы одного пользователя не теряли изменения.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Пользователи ---

    async def get_by_id(self, user_id: uuid.UUID, *, fresh: bool = False) -> Optional[User]:
        stmt = select(User).where(User.id == user_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        """Находит аккаунт по email (без учёта регистра), подгружая credentials."""
        stmt = select(User).where(User.email == normalize_email(email))
        result = await self.session.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def get_by_username(self, username: str) -> Optional[User]:
        stmt = select(User).where(User.username == username)
        result = await self.session.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def create_user(
        self,
        *,
        email: str,
        password_hash: str | None,
        status: AccountStatus,
        now: datetime,
        password_expires_at: datetime | None = None,
        username: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        email_verified: bool = False,
    ) -> User:
        """Создает User и связанные с ним Credentials в одной транзакции."""
        new_user = User(
            id=uuid.uuid4(),
            email=normalize_email(email),
            username=username,
            first_name=first_name,
            last_name=last_name,
            status=status,
            email_verified=email_verified,
            email_verified_at=now if email_verified else None,
            credential_version=0,
            created_at=now,
            updated_at=now,
        )
        new_user.credentials = Credentials(
            password_hash=password_hash,
            password_updated_at=now if password_hash else None,
            password_expires_at=password_expires_at if password_hash else None,
            failed_attempts=0,
        )
        self.session.add(new_user)
        await self.session.flush()
        return new_user

    async def set_last_login(self, user_id: uuid.UUID, login_time: datetime) -> None:
        await self.session.execute(
            update(Credentials)
            .where(Credentials.user_id == user_id)
            .values(last_login_at=login_time, failed_attempts=0)
            .execution_options(synchronize_session=False)
        )

    async def increment_failed_attempts(self, user_id: uuid.UUID) -> int:
        """Атомарно увеличивает счётчик неудачных входов и возвращает новое значение."""
        await self.session.execute(
            update(Credentials)
            .where(Credentials.user_id == user_id)
            .values(failed_attempts=Credentials.failed_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            select(Credentials.failed_attempts).where(Credentials.user_id == user_id)
        )
        return int(result.scalar_one())

    async def lock_user(self, user_id: uuid.UUID, *, until: datetime, reason: str, now: datetime) -> bool:
        """Блокирует только активный аккаунт: повторная блокировка не продлевает срок."""
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.status == AccountStatus.ACTIVE)
            .values(status=AccountStatus.LOCKED, locked_until=until, lock_reason=reason, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def unlock_user(self, user_id: uuid.UUID, *, now: datetime) -> bool:
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.status == AccountStatus.LOCKED)
            .values(status=AccountStatus.ACTIVE, locked_until=None, lock_reason=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            update(Credentials)
            .where(Credentials.user_id == user_id)
            .values(failed_attempts=0)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition_status(
        self,
        user_id: uuid.UUID,
        *,
        from_statuses: List[AccountStatus],
        to_status: AccountStatus,
        now: datetime,
        reason: str | None = None,
    ) -> bool:
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.status.in_(from_statuses))
            .values(status=to_status, locked_until=None, lock_reason=reason, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_email_verified(self, user_id: uuid.UUID, now: datetime) -> bool:
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.status == AccountStatus.PENDING_VERIFICATION)
            .values(status=AccountStatus.ACTIVE, email_verified=True, email_verified_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def bump_credential_version(self, user_id: uuid.UUID, expected_version: int, now: datetime) -> bool:
        """
        Compare-and-swap по users.credential_version.
        False означает, что набор способов входа успели изменить параллельно.
        """
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.credential_version == expected_version)
            .values(credential_version=expected_version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_password_hash(
        self,
        user_id: uuid.UUID,
        password_hash: str,
        *,
        now: datetime,
        expires_at: datetime | None,
    ) -> None:
        await self.session.execute(
            update(Credentials)
            .where(Credentials.user_id == user_id)
            .values(
                password_hash=password_hash,
                password_updated_at=now,
                password_expires_at=expires_at,
                failed_attempts=0,
            )
            .execution_options(synchronize_session=False)
        )

    # --- OAuth-привязки ---

    async def list_providers(self, user_id: uuid.UUID) -> List[AuthProvider]:
        stmt = (
            select(AuthProvider)
            .where(AuthProvider.user_id == user_id)
            .order_by(AuthProvider.connected_at, AuthProvider.provider)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_providers(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(AuthProvider).where(AuthProvider.user_id == user_id)
        )
        return int(result.scalar_one())

    async def get_provider_link(self, provider: str, provider_id: str) -> Optional[AuthProvider]:
        stmt = select(AuthProvider).where(
            AuthProvider.provider == provider, AuthProvider.provider_id == provider_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_provider(self, user_id: uuid.UUID, provider: str) -> Optional[AuthProvider]:
        stmt = select(AuthProvider).where(
            AuthProvider.user_id == user_id, AuthProvider.provider == provider
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_provider(
        self,
        user_id: uuid.UUID,
        *,
        provider: str,
        provider_id: str,
        provider_data: dict,
        is_primary: bool,
        now: datetime,
    ) -> AuthProvider:
        link = AuthProvider(
            id=uuid.uuid4(),
            user_id=user_id,
            provider=provider,
            provider_id=provider_id,
            provider_data=provider_data,
            is_primary=is_primary,
            connected_at=now,
        )
        self.session.add(link)
        await self.session.flush()
        return link

    async def remove_provider(self, user_id: uuid.UUID, provider: str) -> bool:
        result = await self.session.execute(
            delete(AuthProvider)
            .where(AuthProvider.user_id == user_id, AuthProvider.provider == provider)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def promote_primary_provider(self, user_id: uuid.UUID) -> None:
        """Если основной привязки не осталось, основной становится самая старая."""
        links = await self.list_providers(user_id)
        if links and not any(link.is_primary for link in links):
            await self.session.execute(
                update(AuthProvider)
                .where(AuthProvider.id == links[0].id)
                .values(is_primary=True)
                .execution_options(synchronize_session=False)
            )

# apps/auth_svc/services/mfa_policy.py
"""
Чистые правила MFA: без БД, Redis и системного времени.
MfaService загружает состояние, спрашивает здесь, что делать, и атомарно
сохраняет результат через MfaRepository.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from libs.domain.orm.auth.enums import BACKUP_CODE_METHOD, MfaMethod

MFA_LOCK_REASON = "Too many failed verification attempts"

# Порядок, в котором выбирается новый основной метод после отключения текущего
METHOD_PRIORITY = (MfaMethod.TOTP.value, MfaMethod.SMS.value, MfaMethod.EMAIL.value)


@dataclass(frozen=True)
class MethodSet:
    """Результат перехода: что включено и какой метод основной."""

    enabled_methods: List[str]
    primary_method: Optional[str]
    is_enabled: bool


@dataclass(frozen=True)
class LockState:
    locked: bool
    expired: bool
    locked_until: Optional[datetime]


def evaluate_lock(is_locked: bool, locked_until: Optional[datetime], now: datetime) -> LockState:
    """
    Блокировка без locked_until бессрочна (до ручной разблокировки).
    Истёкшая блокировка снимается лениво, при следующей попытке.
    """
    if not is_locked:
        return LockState(locked=False, expired=False, locked_until=None)
    if locked_until is not None and locked_until <= now:
        return LockState(locked=False, expired=True, locked_until=locked_until)
    return LockState(locked=True, expired=False, locked_until=locked_until)


def should_lock(consecutive_failures: int, max_failures: int) -> bool:
    return consecutive_failures >= max_failures


def lock_deadline(now: datetime, lockout_sec: int) -> datetime:
    # фиксированный срок на одно событие блокировки
    return now + timedelta(seconds=lockout_sec)


def enable_method(enabled_methods: Sequence[str], primary_method: Optional[str], method: str) -> MethodSet:
    methods = list(enabled_methods)
    if method not in methods:
        methods.append(method)
    primary = primary_method if primary_method in methods else method
    return MethodSet(enabled_methods=methods, primary_method=primary, is_enabled=True)


def choose_primary(enabled_methods: Sequence[str]) -> Optional[str]:
    for method in METHOD_PRIORITY:
        if method in enabled_methods:
            return method
    return None


def disable_method(enabled_methods: Sequence[str], primary_method: Optional[str], method: str) -> MethodSet:
    methods = [m for m in enabled_methods if m != method]
    primary = primary_method if primary_method in methods else choose_primary(methods)
    return MethodSet(enabled_methods=methods, primary_method=primary, is_enabled=bool(methods))


def can_disable_method(
    enabled_methods: Sequence[str],
    method: str,
    *,
    has_password: bool,
    provider_count: int,
) -> bool:
    """
    Нельзя отключить последний включённый метод, если у аккаунта нет
    ни пароля, ни OAuth-привязки: иначе войти будет нечем.
    Проверка не заменяет аналогичную проверку при отвязке OAuth.
    """
    remaining = [m for m in enabled_methods if m != method]
    if remaining:
        return True
    return has_password or provider_count >= 1


def challenge_methods(enabled_methods: Sequence[str], unused_backup_codes: int) -> List[str]:
    """Методы, доступные для проверки challenge: включённые плюс резервный код, если коды остались."""
    methods = [m for m in METHOD_PRIORITY if m in enabled_methods]
    if unused_backup_codes > 0:
        methods.append(BACKUP_CODE_METHOD)
    return methods


def send_window_reset_at(now: datetime) -> datetime:
    """Скользящие сутки от первой отправки в окне."""
    return now + timedelta(days=1)

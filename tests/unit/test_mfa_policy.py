# tests/unit/test_mfa_policy.py
from datetime import timedelta

from apps.auth_svc.services import mfa_policy
from apps.auth_svc.services.mfa_service import is_backup_code_format
from tests.helpers import START


def test_lock_states():
    assert mfa_policy.evaluate_lock(False, None, START).locked is False

    active = mfa_policy.evaluate_lock(True, START + timedelta(minutes=5), START)
    assert active.locked and not active.expired

    expired = mfa_policy.evaluate_lock(True, START - timedelta(seconds=1), START)
    assert not expired.locked and expired.expired

    # без срока блокировка держится до ручного снятия
    assert mfa_policy.evaluate_lock(True, None, START).locked


def test_should_lock_at_threshold():
    assert not mfa_policy.should_lock(4, 5)
    assert mfa_policy.should_lock(5, 5)


def test_lock_deadline_is_fixed():
    assert mfa_policy.lock_deadline(START, 1800) == START + timedelta(minutes=30)


def test_enable_keeps_existing_primary():
    first = mfa_policy.enable_method([], None, "sms")
    assert first.primary_method == "sms" and first.is_enabled

    second = mfa_policy.enable_method(first.enabled_methods, first.primary_method, "totp")
    assert second.enabled_methods == ["sms", "totp"]
    assert second.primary_method == "sms"


def test_disable_promotes_by_priority():
    result = mfa_policy.disable_method(["email", "sms", "totp"], "totp", "totp")
    assert result.primary_method == "sms"
    assert result.is_enabled

    last = mfa_policy.disable_method(["email"], "email", "email")
    assert last.enabled_methods == [] and last.primary_method is None and not last.is_enabled


def test_cannot_disable_last_method_without_sign_in_fallback():
    assert mfa_policy.can_disable_method(["totp", "sms"], "totp", has_password=False, provider_count=0)
    assert not mfa_policy.can_disable_method(["totp"], "totp", has_password=False, provider_count=0)
    assert mfa_policy.can_disable_method(["totp"], "totp", has_password=True, provider_count=0)
    assert mfa_policy.can_disable_method(["totp"], "totp", has_password=False, provider_count=1)


def test_challenge_methods_include_backup_codes_only_when_left():
    assert mfa_policy.challenge_methods(["sms", "totp"], 0) == ["totp", "sms"]
    assert mfa_policy.challenge_methods(["totp"], 3) == ["totp", "backup_code"]


def test_backup_code_format():
    assert is_backup_code_format("ABCD-1234")
    assert is_backup_code_format("abcd1234")
    assert not is_backup_code_format("ABCD-123")
    assert not is_backup_code_format("WXYZ-1234")

# tests/unit/test_password_manager.py
import pytest

from apps.auth_svc.utils.password_manager import CodeHasher, PasswordManager


@pytest.fixture(scope="module")
def password_manager():
    return PasswordManager(rounds=4)


def test_hash_and_verify(password_manager):
    hashed = password_manager.hash_password("Str0ng!Passw0rd")
    assert hashed != "Str0ng!Passw0rd"
    assert password_manager.verify_password("Str0ng!Passw0rd", hashed)
    assert not password_manager.verify_password("wrong", hashed)


def test_verify_against_broken_hash(password_manager):
    assert password_manager.verify_password("anything", "not-a-bcrypt-hash") is False


def test_long_passwords_are_truncated_consistently(password_manager):
    long_password = "Aa1!" * 40
    hashed = password_manager.hash_password(long_password)
    assert password_manager.verify_password(long_password, hashed)


@pytest.mark.parametrize(
    "password, fragment",
    [
        ("Sh0rt!", "at least 8"),
        ("alllowercase1!", "uppercase"),
        ("ALLUPPERCASE1!", "lowercase"),
        ("NoDigitsHere!", "digit"),
        ("NoSpecial123", "special"),
    ],
)
def test_policy_violations(password_manager, password, fragment):
    problems = password_manager.validate_policy(password)
    assert problems
    assert any(fragment in p.message for p in problems)
    assert all(p.field == "password" for p in problems)


def test_policy_accepts_strong_password(password_manager):
    assert password_manager.validate_policy("Str0ng!Passw0rd") == []


def test_policy_max_length():
    manager = PasswordManager(rounds=4, min_length=8, max_length=12)
    problems = manager.validate_policy("Str0ng!Passw0rdTooLong", field="newPassword")
    assert [p.field for p in problems] == ["newPassword"]


def test_code_hasher_normalizes_backup_codes():
    hasher = CodeHasher("pepper")
    assert hasher.hash_backup_code("abcd-1234") == hasher.hash_backup_code("ABCD1234")
    assert hasher.hash_backup_code(" ABCD 1234 ") == hasher.hash_backup_code("ABCD-1234")


def test_code_hasher_depends_on_pepper():
    assert CodeHasher("one").hash("123456") != CodeHasher("two").hash("123456")
    hasher = CodeHasher("one")
    assert hasher.matches("123456", hasher.hash("123456"))
    assert not hasher.matches("654321", hasher.hash("123456"))

# apps/auth_svc/utils/password_manager.py
import hashlib
import hmac
import re
from typing import List

import bcrypt

from libs.app.errors import FieldError

# Любой символ, кроме букв и цифр, считается спецсимволом
_SPECIAL_RE = re.compile(r"[^A-Za-z0-9]")

# bcrypt учитывает только первые 72 байта, новые версии библиотеки падают на более длинных
BCRYPT_MAX_BYTES = 72


def _pw_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


class PasswordManager:
    """Утилита для работы с паролями и хешами секретов."""

    def __init__(self, rounds: int = 12, min_length: int = 8, max_length: int = 128):
        self.rounds = rounds
        self.min_length = min_length
        self.max_length = max_length
        # Хеш для выравнивания времени ответа, когда пользователя нет
        self._dummy_hash = bcrypt.hashpw(b"timing-equalizer", bcrypt.gensalt(rounds=rounds)).decode("utf-8")

    def hash_password(self, password: str) -> str:
        """Hash пароль с использованием bcrypt."""
        pwd_bytes = _pw_bytes(password)
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(pwd_bytes, salt).decode("utf-8")

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Проверяет, соответствует ли plain-пароль хешу."""
        try:
            return bcrypt.checkpw(_pw_bytes(plain_password), hashed_password.encode("utf-8"))
        except ValueError:
            # битый хеш в БД
            return False

    def burn_time(self, plain_password: str) -> None:
        """Выполняет проверку против фиктивного хеша, чтобы не выдавать отсутствие аккаунта по времени."""
        self.verify_password(plain_password, self._dummy_hash)

    def validate_policy(self, password: str, field: str = "password") -> List[FieldError]:
        """Возвращает список нарушений политики паролей (пустой, если пароль подходит)."""
        problems: List[str] = []
        if len(password) < self.min_length:
            problems.append(f"Password must be at least {self.min_length} characters long.")
        if len(password) > self.max_length:
            problems.append(f"Password must be at most {self.max_length} characters long.")
        if not re.search(r"[a-z]", password):
            problems.append("Password must contain a lowercase letter.")
        if not re.search(r"[A-Z]", password):
            problems.append("Password must contain an uppercase letter.")
        if not re.search(r"\d", password):
            problems.append("Password must contain a digit.")
        if not _SPECIAL_RE.search(password):
            problems.append("Password must contain a special character.")
        return [FieldError(field=field, message=message) for message in problems]

    @staticmethod
    def hash_refresh_token(token: str) -> str:
        """Создает SHA-256 хеш от refresh-токена для хранения в БД."""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()


class CodeHasher:
    """
    Ключевой хеш (HMAC-SHA256) для одноразовых и резервных кодов.
    Детерминированный, поэтому резервный код можно найти и погасить одним UPDATE.
    """

    def __init__(self, pepper: str):
        self._key = pepper.encode("utf-8")

    @staticmethod
    def normalize_backup_code(code: str) -> str:
        return code.replace("-", "").replace(" ", "").strip().upper()

    def hash(self, value: str) -> str:
        return hmac.new(self._key, value.encode("utf-8"), hashlib.sha256).hexdigest()

    def hash_backup_code(self, code: str) -> str:
        return self.hash(f"backup:{self.normalize_backup_code(code)}")

    def matches(self, value: str, expected_hash: str) -> bool:
        return hmac.compare_digest(self.hash(value), expected_hash)

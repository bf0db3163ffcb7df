# libs/utils/randomness.py
from __future__ import annotations

import secrets

import pyotp


class SecureRandom:
    """
    Криптографически стойкий источник случайности.
    Передаётся в сервисы явно, чтобы в тестах его можно было подменить.
    """

    def token_hex(self, nbytes: int) -> str:
        return secrets.token_hex(nbytes)

    def token_urlsafe(self, nbytes: int) -> str:
        return secrets.token_urlsafe(nbytes)

    def numeric_code(self, length: int) -> str:
        return "".join(str(secrets.randbelow(10)) for _ in range(length))

    def base32_secret(self) -> str:
        return pyotp.random_base32()

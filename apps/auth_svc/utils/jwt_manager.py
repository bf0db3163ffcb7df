# apps/auth_svc/utils/jwt_manager.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Tuple

import jwt

from libs.app.errors import ErrorCode
from libs.utils.clock import Clock

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class JwtManager:
    """
    Утилита для создания и валидации JWT.
    Время берётся из переданных часов; срок действия проверяется по ним же,
    а не по системному времени PyJWT.
    """

    def __init__(
        self,
        secret: str,
        clock: Clock,
        algorithm: str = "HS256",
        issuer: str = "auth-svc",
        audience: str = "auth-clients",
    ):
        self.secret = secret
        self.clock = clock
        self.algorithm = algorithm
        self.issuer = issuer
        self.access_audience = audience
        self.refresh_audience = f"{audience}-refresh"

    def _encode(self, payload: Dict[str, Any]) -> str:
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def create_access_token(
        self,
        user_id: uuid.UUID,
        role: str,
        session_id: uuid.UUID,
        expires_delta: timedelta,
        now: datetime | None = None,
    ) -> str:
        """Создает новый access-токен."""
        now = now or self.clock.now()
        payload = {
            "sub": str(user_id),
            "role": role,
            "sid": str(session_id),
            "typ": ACCESS_TOKEN_TYPE,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_delta).timestamp()),
            "iss": self.issuer,
            "aud": self.access_audience,
        }
        return self._encode(payload)

    def create_refresh_token(
        self,
        user_id: uuid.UUID,
        session_id: uuid.UUID,
        expires_delta: timedelta,
        now: datetime | None = None,
    ) -> Tuple[str, uuid.UUID]:
        """Создает новый refresh-токен. Возвращает (token, jti)."""
        now = now or self.clock.now()
        jti = uuid.uuid4()
        payload = {
            "sub": str(user_id),
            "sid": str(session_id),
            "typ": REFRESH_TOKEN_TYPE,
            "jti": str(jti),
            "iat": int(now.timestamp()),
            "exp": int((now + expires_delta).timestamp()),
            "iss": self.issuer,
            "aud": self.refresh_audience,
        }
        return self._encode(payload), jti

    def decode_token(self, token: str, token_type: str = ACCESS_TOKEN_TYPE) -> Tuple[Dict[str, Any] | None, ErrorCode | None]:
        """Декодирует токен. Возвращает (payload, None) или (None, код ошибки)."""
        audience = self.access_audience if token_type == ACCESS_TOKEN_TYPE else self.refresh_audience
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=audience,
                issuer=self.issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "iat", "sub", "sid", "jti", "typ"],
                },
            )
        except jwt.PyJWTError:
            return None, ErrorCode.AUTH_TOKEN_INVALID

        if payload.get("typ") != token_type:
            return None, ErrorCode.AUTH_TOKEN_INVALID
        if int(payload["exp"]) <= int(self.clock.now().timestamp()):
            return None, ErrorCode.AUTH_TOKEN_EXPIRED
        return payload, None

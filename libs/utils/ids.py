# libs/utils/ids.py
from __future__ import annotations
import uuid


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex}"


def new_challenge_id() -> str:
    return f"mfa_{uuid.uuid4().hex}"


def parse_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    """Строгий разбор идентификатора: без тихих преобразований, None если формат неверен."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return None

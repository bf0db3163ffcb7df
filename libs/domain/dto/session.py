# libs/domain/dto/session.py
from __future__ import annotations
import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import StringConstraints

from .base import CamelModel, CamelRequest


class SessionInfo(CamelModel):
    session_id: uuid.UUID
    device_info: Dict[str, Any]
    ip: Optional[str] = None
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    is_current: bool = False


class TerminateSessionsRequest(CamelRequest):
    include_current: bool = False


class TerminateResult(CamelModel):
    terminated: int


class TrustDeviceRequest(CamelRequest):
    device_name: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=128)]] = None


class TrustedDeviceInfo(CamelModel):
    device_id: str
    device_name: Optional[str] = None
    added_at: datetime
    last_used_at: Optional[datetime] = None
    expires_at: datetime


class ActivityEntry(CamelModel):
    """Попытка входа из журнала безопасности."""

    event: str
    success: bool
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class ActivityPage(CamelModel):
    activities: List[ActivityEntry]
    total: int
    has_more: bool

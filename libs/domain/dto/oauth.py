# libs/domain/dto/oauth.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Dict, Optional

from pydantic import StringConstraints

from .base import CamelModel, CamelRequest


@dataclass
class OAuthProfile:
    """Нормализованный профиль провайдера. Токены провайдера сюда не попадают."""

    provider: str
    provider_id: str
    email: Optional[str]
    email_verified: bool
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_provider_data(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "name": self.name,
            "avatar_url": self.avatar_url,
        }


class OAuthAuthorizeResult(CamelModel):
    provider: str
    auth_url: str
    state: str
    expires_in: int


class OAuthLinkRequest(CamelRequest):
    code: Annotated[str, StringConstraints(min_length=1, max_length=2048)]
    redirect_uri: Optional[str] = None


class LinkedAccount(CamelModel):
    provider: str
    email: Optional[str] = None
    name: Optional[str] = None
    connected_at: datetime
    is_primary: bool


class OAuthUnlinkResult(CamelModel):
    provider: str
    unlinked: bool = True

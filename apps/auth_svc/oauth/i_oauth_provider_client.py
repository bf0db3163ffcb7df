# apps/auth_svc/oauth/i_oauth_provider_client.py
from __future__ import annotations
from abc import ABC, abstractmethod

from libs.domain.dto.oauth import OAuthProfile


class OAuthProviderError(Exception):
    """Провайдер не ответил или вернул непригодный ответ."""


class IOAuthProviderClient(ABC):
    """Обмен с внешним OAuth-провайдером: URL авторизации и код -> профиль."""

    @abstractmethod
    def supports(self, provider: str) -> bool: ...

    @abstractmethod
    def authorization_url(self, provider: str, redirect_uri: str, state: str) -> str: ...

    @abstractmethod
    async def exchange_code(self, provider: str, code: str, redirect_uri: str) -> OAuthProfile:
        """Меняет код на токен провайдера и возвращает нормализованный профиль."""
        ...

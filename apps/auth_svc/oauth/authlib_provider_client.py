# apps/auth_svc/oauth/authlib_provider_client.py
from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from libs.domain.dto.oauth import OAuthProfile
from .i_oauth_provider_client import IOAuthProviderClient, OAuthProviderError
from .providers import PROVIDERS, ProviderConfig

log = logging.getLogger(__name__)


class AuthlibProviderClient(IOAuthProviderClient):
    """
    Клиент провайдеров на Authlib (AsyncOAuth2Client поверх httpx).
    Провайдер считается подключённым, если для него заданы client_id и client_secret.
    """

    def __init__(self, credentials: Dict[str, Tuple[Optional[str], Optional[str]]], timeout: float = 10.0):
        self.credentials = credentials
        self.timeout = timeout

    def supports(self, provider: str) -> bool:
        client_id, client_secret = self.credentials.get(provider, (None, None))
        return provider in PROVIDERS and bool(client_id and client_secret)

    def _client(self, config: ProviderConfig, redirect_uri: str) -> AsyncOAuth2Client:
        client_id, client_secret = self.credentials[config.name]
        return AsyncOAuth2Client(
            client_id=client_id,
            client_secret=client_secret,
            scope=config.scope,
            redirect_uri=redirect_uri,
            timeout=self.timeout,
        )

    def authorization_url(self, provider: str, redirect_uri: str, state: str) -> str:
        config = PROVIDERS[provider]
        client = self._client(config, redirect_uri)
        url, _ = client.create_authorization_url(config.authorize_url, state=state)
        return url

    async def exchange_code(self, provider: str, code: str, redirect_uri: str) -> OAuthProfile:
        config = PROVIDERS[provider]
        try:
            async with self._client(config, redirect_uri) as client:
                await client.fetch_token(config.token_url, code=code)
                resp = await client.get(config.userinfo_url)
                resp.raise_for_status()
                data = resp.json()
                if config.emails_url:
                    data.update(await self._github_primary_email(client, config.emails_url))
        except (AuthlibBaseError, httpx.HTTPError) as e:
            log.warning(f"Ошибка обмена кода у провайдера '{provider}': {e}", extra={"provider": provider})
            raise OAuthProviderError(str(e)) from e

        try:
            return config.normalize(data)
        except KeyError as e:
            raise OAuthProviderError(f"Provider profile is missing field {e}") from e

    @staticmethod
    async def _github_primary_email(client: AsyncOAuth2Client, emails_url: str) -> dict:
        resp = await client.get(emails_url)
        resp.raise_for_status()
        for item in resp.json():
            if item.get("primary"):
                return {"email": item.get("email"), "email_verified": bool(item.get("verified"))}
        return {"email_verified": False}

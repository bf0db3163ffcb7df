# apps/auth_svc/oauth/providers.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from libs.domain.dto.oauth import OAuthProfile


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    authorize_url: str
    token_url: str
    userinfo_url: str
    scope: str
    normalize: Callable[[Dict[str, Any]], OAuthProfile]
    # GitHub отдаёт подтверждённые адреса отдельным запросом
    emails_url: Optional[str] = None


def _oidc_profile(provider: str, trust_email: bool = False) -> Callable[[Dict[str, Any]], OAuthProfile]:
    def normalize(data: Dict[str, Any]) -> OAuthProfile:
        email = data.get("email")
        verified = data.get("email_verified")
        if isinstance(verified, str):
            verified = verified.lower() == "true"
        return OAuthProfile(
            provider=provider,
            provider_id=str(data["sub"]),
            email=email.lower() if email else None,
            email_verified=bool(email) and (bool(verified) or trust_email),
            name=data.get("name"),
            avatar_url=data.get("picture"),
            raw=data,
        )

    return normalize


def _github_profile(data: Dict[str, Any]) -> OAuthProfile:
    email = data.get("email")
    return OAuthProfile(
        provider="github",
        provider_id=str(data["id"]),
        email=email.lower() if email else None,
        # подтверждённость выставляет клиент по ответу /user/emails
        email_verified=bool(data.get("email_verified")),
        name=data.get("name") or data.get("login"),
        avatar_url=data.get("avatar_url"),
        raw=data,
    )


PROVIDERS: Dict[str, ProviderConfig] = {
    "google": ProviderConfig(
        name="google",
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
        scope="openid email profile",
        normalize=_oidc_profile("google"),
    ),
    "github": ProviderConfig(
        name="github",
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        emails_url="https://api.github.com/user/emails",
        scope="read:user user:email",
        normalize=_github_profile,
    ),
    "linkedin": ProviderConfig(
        name="linkedin",
        authorize_url="https://www.linkedin.com/oauth/v2/authorization",
        token_url="https://www.linkedin.com/oauth/v2/accessToken",
        userinfo_url="https://api.linkedin.com/v2/userinfo",
        scope="openid profile email",
        normalize=_oidc_profile("linkedin"),
    ),
    "microsoft": ProviderConfig(
        name="microsoft",
        authorize_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        userinfo_url="https://graph.microsoft.com/oidc/userinfo",
        scope="openid email profile",
        # Microsoft не отдаёт email_verified; адрес подтверждён каталогом Entra ID
        normalize=_oidc_profile("microsoft", trust_email=True),
    ),
}

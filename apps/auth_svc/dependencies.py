# apps/auth_svc/dependencies.py
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from fastapi import Depends, Header, Request

from libs.app.errors import ErrorCode, ServiceError
from libs.app.exception_handlers import ServiceHTTPException
from libs.app.logging_middleware import client_ip
from libs.domain.dto.auth import TokenClaims
from apps.auth_svc.services.auth_service import AuthService
from apps.auth_svc.services.mfa_service import MfaService
from apps.auth_svc.services.oauth_service import OAuthService

if TYPE_CHECKING:
    from libs.containers.auth_container import AuthContainer


@dataclass
class ClientContext:
    ip: Optional[str]
    user_agent: Optional[str]


def get_container(request: Request) -> "AuthContainer":
    return request.app.state.container


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.container.auth_service


def get_mfa_service(request: Request) -> MfaService:
    return request.app.state.container.mfa_service


def get_oauth_service(request: Request) -> OAuthService:
    return request.app.state.container.oauth_service


def get_client_context(request: Request) -> ClientContext:
    trusted_proxies = request.app.state.container.settings.TRUSTED_PROXIES
    return ClientContext(ip=client_ip(request, trusted_proxies), user_agent=request.headers.get("user-agent"))


def _bearer_token(authorization: Optional[str]) -> str:
    try:
        token_type, token = (authorization or "").split()
        if token_type.lower() != "bearer":
            raise ValueError("Invalid token type")
    except ValueError:
        raise ServiceHTTPException(ServiceError(code=ErrorCode.AUTH_TOKEN_INVALID, message="Missing or malformed bearer token."))
    return token


async def get_current_principal(
    authorization: Optional[str] = Header(None),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenClaims:
    """Полная проверка: токен, живая сессия, активный аккаунт."""
    claims, error = await auth_service.authenticate(_bearer_token(authorization))
    if error:
        raise ServiceHTTPException(error)
    return claims


def get_token_claims(
    authorization: Optional[str] = Header(None),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenClaims:
    """Только подпись и срок токена: выход должен работать и для уже завершённой сессии."""
    claims, error = auth_service.decode_access_token(_bearer_token(authorization))
    if error:
        raise ServiceHTTPException(error)
    return claims


async def require_admin(principal: TokenClaims = Depends(get_current_principal)) -> TokenClaims:
    if principal.role != "admin":
        raise ServiceHTTPException(ServiceError(code=ErrorCode.AUTH_FORBIDDEN))
    return principal

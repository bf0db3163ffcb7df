# apps/auth_svc/rest/oauth_routes.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from libs.domain.dto.auth import DeviceInfo, LoginResult, TokenClaims
from libs.domain.dto.oauth import LinkedAccount, OAuthAuthorizeResult, OAuthLinkRequest, OAuthUnlinkResult
from apps.auth_svc.dependencies import (
    ClientContext,
    get_auth_service,
    get_client_context,
    get_current_principal,
    get_oauth_service,
)
from apps.auth_svc.rest.dto import APIResponse, unwrap
from apps.auth_svc.services.auth_service import AuthService
from apps.auth_svc.services.oauth_service import OAuthService

router = APIRouter(prefix="/v1/auth/oauth")


# /linked объявлен раньше /{provider}, иначе "linked" примется за имя провайдера
@router.get("/linked", response_model=APIResponse[List[LinkedAccount]])
async def list_linked(
    principal: TokenClaims = Depends(get_current_principal),
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    return APIResponse[List[LinkedAccount]](success=True, data=unwrap(await oauth_service.list_linked(principal.user_id)))


@router.post("/link/{provider}", response_model=APIResponse[LinkedAccount])
async def link(
    provider: str,
    body: OAuthLinkRequest,
    principal: TokenClaims = Depends(get_current_principal),
    client: ClientContext = Depends(get_client_context),
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    result = unwrap(
        await oauth_service.link(
            principal.user_id,
            provider,
            body.code,
            redirect_uri=body.redirect_uri,
            ip=client.ip,
            user_agent=client.user_agent,
        )
    )
    return APIResponse[LinkedAccount](success=True, message=f"{provider} account linked.", data=result)


@router.delete("/unlink/{provider}", response_model=APIResponse[OAuthUnlinkResult])
async def unlink(
    provider: str,
    principal: TokenClaims = Depends(get_current_principal),
    client: ClientContext = Depends(get_client_context),
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    result = unwrap(
        await oauth_service.unlink(principal.user_id, provider, ip=client.ip, user_agent=client.user_agent)
    )
    return APIResponse[OAuthUnlinkResult](success=True, message=f"{provider} account unlinked.", data=result)


@router.get("/{provider}", response_model=APIResponse[OAuthAuthorizeResult])
async def authorize(
    provider: str,
    redirect_uri: Optional[str] = Query(default=None, alias="redirectUri"),
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    """Выдаёт URL авторизации; редирект выполняет клиент."""
    result = unwrap(await oauth_service.authorization_url(provider, redirect_uri))
    return APIResponse[OAuthAuthorizeResult](success=True, data=result)


@router.get("/{provider}/callback", response_model=APIResponse[LoginResult])
async def callback(
    provider: str,
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    device_id: Optional[str] = Query(default=None, alias="deviceId", max_length=128),
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    device = DeviceInfo(device_id=device_id) if device_id else None
    result = unwrap(
        await auth_service.oauth_login(
            provider, code, state, device=device, ip=client.ip, user_agent=client.user_agent
        )
    )
    return APIResponse[LoginResult](success=True, data=result)

# apps/auth_svc/rest/session_routes.py
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from libs.domain.dto.auth import LogoutResult, MessageResult, TokenClaims
from libs.domain.dto.session import (
    ActivityPage,
    SessionInfo,
    TerminateResult,
    TerminateSessionsRequest,
    TrustDeviceRequest,
    TrustedDeviceInfo,
)
from apps.auth_svc.dependencies import (
    ClientContext,
    get_auth_service,
    get_client_context,
    get_current_principal,
    get_token_claims,
)
from apps.auth_svc.rest.dto import APIResponse, unwrap
from apps.auth_svc.services.auth_service import AuthService

router = APIRouter(prefix="/v1/auth/session")


@router.get("", response_model=APIResponse[SessionInfo])
async def current_session(
    principal: TokenClaims = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.get_session(principal.user_id, principal.session_id, principal.session_id))
    return APIResponse[SessionInfo](success=True, data=result)


@router.get("/all", response_model=APIResponse[List[SessionInfo]])
async def all_sessions(
    principal: TokenClaims = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.list_sessions(principal.user_id, principal.session_id))
    return APIResponse[List[SessionInfo]](success=True, data=result)


@router.get("/activity", response_model=APIResponse[ActivityPage])
async def session_activity(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: TokenClaims = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.session_activity(principal.user_id, limit=limit, offset=offset))
    return APIResponse[ActivityPage](success=True, data=result)


@router.post("/logout", response_model=APIResponse[LogoutResult])
async def logout_current(
    claims: TokenClaims = Depends(get_token_claims),
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(
        await auth_service.logout(claims.user_id, claims.session_id, ip=client.ip, user_agent=client.user_agent)
    )
    return APIResponse[LogoutResult](success=True, message="Successfully logged out", data=result)


@router.post("/terminate-all", response_model=APIResponse[TerminateResult])
async def terminate_all(
    body: Optional[TerminateSessionsRequest] = None,
    principal: TokenClaims = Depends(get_current_principal),
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    include_current = body.include_current if body else False
    result = unwrap(
        await auth_service.terminate_sessions(
            principal.user_id,
            principal.session_id,
            include_current,
            ip=client.ip,
            user_agent=client.user_agent,
        )
    )
    return APIResponse[TerminateResult](success=True, data=result)


@router.post("/trust-device", response_model=APIResponse[TrustedDeviceInfo])
async def trust_device(
    body: Optional[TrustDeviceRequest] = None,
    principal: TokenClaims = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
):
    device_name = body.device_name if body else None
    result = unwrap(await auth_service.trust_device(principal.user_id, principal.session_id, device_name))
    return APIResponse[TrustedDeviceInfo](success=True, message="Device trusted.", data=result)


@router.get("/trusted-devices", response_model=APIResponse[List[TrustedDeviceInfo]])
async def trusted_devices(
    principal: TokenClaims = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.list_trusted_devices(principal.user_id))
    return APIResponse[List[TrustedDeviceInfo]](success=True, data=result)


@router.delete("/trusted-devices/{device_id}", response_model=APIResponse[MessageResult])
async def remove_trusted_device(
    device_id: str,
    principal: TokenClaims = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.remove_trusted_device(principal.user_id, device_id))
    return APIResponse[MessageResult](success=True, data=result)


@router.delete("/{session_id}", response_model=APIResponse[TerminateResult])
async def terminate_session(
    session_id: uuid.UUID,
    principal: TokenClaims = Depends(get_current_principal),
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(
        await auth_service.terminate_session(
            principal.user_id, session_id, ip=client.ip, user_agent=client.user_agent
        )
    )
    return APIResponse[TerminateResult](success=True, data=result)

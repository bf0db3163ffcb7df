# apps/auth_svc/rest/mfa_routes.py
from fastapi import APIRouter, Depends

from libs.domain.dto.auth import LoginResult, TokenClaims
from libs.domain.dto.mfa import (
    BackupCodesResult,
    MfaCodeSent,
    MfaDisableRequest,
    MfaSendCodeRequest,
    MfaSetupRequest,
    MfaSetupResult,
    MfaStatus,
    MfaVerifyRequest,
    MfaVerifySetupRequest,
    MfaVerifySetupResult,
)
from apps.auth_svc.dependencies import (
    ClientContext,
    get_auth_service,
    get_client_context,
    get_current_principal,
    get_mfa_service,
)
from apps.auth_svc.rest.dto import APIResponse, unwrap
from apps.auth_svc.services.auth_service import AuthService
from apps.auth_svc.services.mfa_service import MfaService

router = APIRouter(prefix="/v1/auth/mfa")


@router.post("/setup", response_model=APIResponse[MfaSetupResult])
async def setup(
    body: MfaSetupRequest,
    principal: TokenClaims = Depends(get_current_principal),
    mfa_service: MfaService = Depends(get_mfa_service),
):
    result = unwrap(
        await mfa_service.setup(principal.user_id, body.method, phone_number=body.phone_number, email=body.email)
    )
    return APIResponse[MfaSetupResult](success=True, data=result)


@router.post("/verify-setup", response_model=APIResponse[MfaVerifySetupResult])
async def verify_setup(
    body: MfaVerifySetupRequest,
    principal: TokenClaims = Depends(get_current_principal),
    client: ClientContext = Depends(get_client_context),
    mfa_service: MfaService = Depends(get_mfa_service),
):
    result = unwrap(
        await mfa_service.verify_setup(
            principal.user_id, body.method, body.code, ip=client.ip, user_agent=client.user_agent
        )
    )
    return APIResponse[MfaVerifySetupResult](success=True, message="MFA method enabled.", data=result)


@router.post("/verify", response_model=APIResponse[LoginResult])
async def verify(
    body: MfaVerifyRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Второй шаг входа: код по challengeId -> токены и сессия."""
    result = unwrap(
        await auth_service.complete_mfa_login(
            body.challenge_id,
            body.method,
            body.code,
            trust_device=body.trust_device,
            device_name=body.device_name,
            ip=client.ip,
            user_agent=client.user_agent,
        )
    )
    return APIResponse[LoginResult](success=True, data=result)


@router.post("/challenge/send", response_model=APIResponse[MfaCodeSent])
async def send_challenge_code(body: MfaSendCodeRequest, mfa_service: MfaService = Depends(get_mfa_service)):
    result = unwrap(await mfa_service.send_challenge_code(body.challenge_id, body.method))
    return APIResponse[MfaCodeSent](success=True, data=result)


@router.post("/disable", response_model=APIResponse[MfaStatus])
async def disable(
    body: MfaDisableRequest,
    principal: TokenClaims = Depends(get_current_principal),
    client: ClientContext = Depends(get_client_context),
    mfa_service: MfaService = Depends(get_mfa_service),
):
    result = unwrap(
        await mfa_service.disable(
            principal.user_id, body.method, body.password, ip=client.ip, user_agent=client.user_agent
        )
    )
    return APIResponse[MfaStatus](success=True, message="MFA method disabled.", data=result)


@router.get("/status", response_model=APIResponse[MfaStatus])
async def mfa_status(
    principal: TokenClaims = Depends(get_current_principal),
    mfa_service: MfaService = Depends(get_mfa_service),
):
    return APIResponse[MfaStatus](success=True, data=unwrap(await mfa_service.status(principal.user_id)))


@router.post("/backup-codes", response_model=APIResponse[BackupCodesResult])
async def backup_codes(
    principal: TokenClaims = Depends(get_current_principal),
    mfa_service: MfaService = Depends(get_mfa_service),
):
    result = unwrap(await mfa_service.generate_backup_codes(principal.user_id))
    return APIResponse[BackupCodesResult](
        success=True, message="Store these codes safely; they will not be shown again.", data=result
    )

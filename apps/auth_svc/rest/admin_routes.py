# apps/auth_svc/rest/admin_routes.py
import uuid
from typing import Optional

from fastapi import APIRouter, Depends

from libs.domain.dto.auth import AccountStatusResult, MessageResult, SuspendAccountRequest, TokenClaims
from apps.auth_svc.dependencies import get_auth_service, get_mfa_service, require_admin
from apps.auth_svc.rest.dto import APIResponse, unwrap
from apps.auth_svc.services.auth_service import AuthService
from apps.auth_svc.services.mfa_service import MfaService

router = APIRouter(prefix="/v1/auth/admin/users")


@router.post("/{user_id}/unlock", response_model=APIResponse[AccountStatusResult])
async def unlock_account(
    user_id: uuid.UUID,
    admin: TokenClaims = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.unlock_account(user_id, actor_id=admin.user_id))
    return APIResponse[AccountStatusResult](success=True, data=result)


@router.post("/{user_id}/suspend", response_model=APIResponse[AccountStatusResult])
async def suspend_account(
    user_id: uuid.UUID,
    body: Optional[SuspendAccountRequest] = None,
    admin: TokenClaims = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service),
):
    reason = body.reason if body else None
    result = unwrap(await auth_service.suspend_account(user_id, actor_id=admin.user_id, reason=reason))
    return APIResponse[AccountStatusResult](success=True, data=result)


@router.post("/{user_id}/reactivate", response_model=APIResponse[AccountStatusResult])
async def reactivate_account(
    user_id: uuid.UUID,
    admin: TokenClaims = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.reactivate_account(user_id, actor_id=admin.user_id))
    return APIResponse[AccountStatusResult](success=True, data=result)


@router.post("/{user_id}/mfa/unlock", response_model=APIResponse[MessageResult])
async def unlock_mfa(
    user_id: uuid.UUID,
    admin: TokenClaims = Depends(require_admin),
    mfa_service: MfaService = Depends(get_mfa_service),
):
    unwrap(await mfa_service.unlock(user_id, actor_id=admin.user_id))
    return APIResponse[MessageResult](success=True, data=MessageResult(ok=True, detail="MFA unlocked."))

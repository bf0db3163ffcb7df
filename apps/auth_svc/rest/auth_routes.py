# apps/auth_svc/rest/auth_routes.py
from fastapi import APIRouter, Depends, status

from libs.domain.dto.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResult,
    LogoutResult,
    MessageResult,
    PasswordChangedResult,
    PasswordPolicy,
    RefreshRequest,
    RefreshResult,
    RegisterRequest,
    RegisterResult,
    ResendVerificationRequest,
    ResetPasswordRequest,
    ResetTokenRequest,
    ResetTokenStatus,
    SetPasswordRequest,
    TokenClaims,
    UserPublic,
    VerifyEmailRequest,
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

router = APIRouter(prefix="/v1/auth")


@router.post("/register", response_model=APIResponse[RegisterResult], status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.register(body, ip=client.ip, user_agent=client.user_agent))
    message = "Check your inbox to verify your email." if result.requires_email_verification else "Registered."
    return APIResponse[RegisterResult](success=True, message=message, data=result)


@router.post("/login", response_model=APIResponse[LoginResult])
async def login(
    body: LoginRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.login(body, ip=client.ip, user_agent=client.user_agent))
    message = "Multi-factor authentication required." if result.requires_mfa else None
    return APIResponse[LoginResult](success=True, message=message, data=result)


@router.post("/refresh", response_model=APIResponse[RefreshResult])
async def refresh(
    body: RefreshRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(
        await auth_service.refresh(body.refresh_token, body.device_id, ip=client.ip, user_agent=client.user_agent)
    )
    return APIResponse[RefreshResult](success=True, data=result)


@router.post("/logout", response_model=APIResponse[LogoutResult])
async def logout(
    claims: TokenClaims = Depends(get_token_claims),
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(
        await auth_service.logout(claims.user_id, claims.session_id, ip=client.ip, user_agent=client.user_agent)
    )
    return APIResponse[LogoutResult](success=True, message="Successfully logged out", data=result)


@router.post("/logout-all", response_model=APIResponse[LogoutResult])
async def logout_all(
    principal: TokenClaims = Depends(get_current_principal),
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.logout_all(principal.user_id, ip=client.ip, user_agent=client.user_agent))
    return APIResponse[LogoutResult](success=True, message="Logged out of all sessions", data=result)


@router.post("/verify-email", response_model=APIResponse[UserPublic])
async def verify_email(body: VerifyEmailRequest, auth_service: AuthService = Depends(get_auth_service)):
    result = unwrap(await auth_service.verify_email(body.token))
    return APIResponse[UserPublic](success=True, message="Email verified.", data=result)


@router.post("/resend-verification", response_model=APIResponse[MessageResult])
async def resend_verification(
    body: ResendVerificationRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(
        await auth_service.resend_verification(str(body.email), ip=client.ip, user_agent=client.user_agent)
    )
    return APIResponse[MessageResult](success=True, data=result)


@router.post("/forgot-password", response_model=APIResponse[MessageResult])
async def forgot_password(
    body: ForgotPasswordRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(await auth_service.forgot_password(str(body.email), ip=client.ip, user_agent=client.user_agent))
    return APIResponse[MessageResult](success=True, data=result)


# токен передаётся в теле, а не в пути: путь запроса попадает в логи
@router.post("/reset-password/verify", response_model=APIResponse[ResetTokenStatus])
async def verify_reset_token(body: ResetTokenRequest, auth_service: AuthService = Depends(get_auth_service)):
    return APIResponse[ResetTokenStatus](success=True, data=unwrap(await auth_service.verify_reset_token(body.token)))


@router.post("/reset-password", response_model=APIResponse[PasswordChangedResult])
async def reset_password(
    body: ResetPasswordRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(
        await auth_service.reset_password(
            body.token, body.new_password, body.confirm_password, ip=client.ip, user_agent=client.user_agent
        )
    )
    return APIResponse[PasswordChangedResult](
        success=True, message="Password has been reset. Sign in with the new password.", data=result
    )


@router.get("/password/policy", response_model=APIResponse[PasswordPolicy])
async def password_policy(auth_service: AuthService = Depends(get_auth_service)):
    return APIResponse[PasswordPolicy](success=True, data=auth_service.password_policy())


@router.post("/password", response_model=APIResponse[PasswordChangedResult])
async def set_password(
    body: SetPasswordRequest,
    principal: TokenClaims = Depends(get_current_principal),
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = unwrap(
        await auth_service.set_password(
            principal.user_id,
            principal.session_id,
            body.new_password,
            body.current_password,
            ip=client.ip,
            user_agent=client.user_agent,
        )
    )
    return APIResponse[PasswordChangedResult](success=True, data=result)


@router.get("/me", response_model=APIResponse[UserPublic])
async def me(
    principal: TokenClaims = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
):
    return APIResponse[UserPublic](success=True, data=unwrap(await auth_service.get_profile(principal.user_id)))

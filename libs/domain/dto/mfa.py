# libs/domain/dto/mfa.py
from __future__ import annotations
from datetime import datetime
from typing import Annotated, List, Literal, Optional

from pydantic import StringConstraints

from .base import CamelModel, CamelRequest

MfaMethodName = Literal["totp", "sms", "email"]
ChallengeMethodName = Literal["totp", "sms", "email", "backup_code"]

Code = Annotated[str, StringConstraints(strip_whitespace=True, min_length=4, max_length=16)]


class MfaSetupRequest(CamelRequest):
    method: MfaMethodName
    phone_number: Optional[Annotated[str, StringConstraints(strip_whitespace=True, pattern=r"^\+?[1-9]\d{6,14}$")]] = None
    email: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]] = None


class MfaSetupResult(CamelModel):
    method: MfaMethodName
    # TOTP: секрет и QR отдаются один раз, при настройке
    secret: Optional[str] = None
    otpauth_url: Optional[str] = None
    qr_code: Optional[str] = None
    algorithm: Optional[str] = None
    digits: Optional[int] = None
    period: Optional[int] = None
    # SMS/email: куда ушёл код (маскированно)
    destination: Optional[str] = None
    expires_in: Optional[int] = None


class MfaVerifySetupRequest(CamelRequest):
    method: MfaMethodName
    code: Code


class MfaVerifySetupResult(CamelModel):
    method: MfaMethodName
    is_enabled: bool
    primary_method: Optional[str] = None
    enabled_methods: List[str]


class MfaChallengeInfo(CamelModel):
    challenge_id: str
    methods: List[str]
    expires_in: int
    expires_at: datetime


class MfaVerifyRequest(CamelRequest):
    challenge_id: Annotated[str, StringConstraints(min_length=1, max_length=64)]
    method: ChallengeMethodName
    code: Code
    trust_device: bool = False
    device_name: Optional[Annotated[str, StringConstraints(max_length=128)]] = None


class MfaSendCodeRequest(CamelRequest):
    challenge_id: Annotated[str, StringConstraints(min_length=1, max_length=64)]
    method: Literal["sms", "email"]


class MfaCodeSent(CamelModel):
    method: str
    destination: str
    expires_in: int


class MfaDisableRequest(CamelRequest):
    method: MfaMethodName
    password: Annotated[str, StringConstraints(min_length=1, max_length=256)]


class MfaMethodStatus(CamelModel):
    method: MfaMethodName
    enabled: bool
    verified: bool
    destination: Optional[str] = None


class MfaStatus(CamelModel):
    is_enabled: bool
    primary_method: Optional[str] = None
    enabled_methods: List[str]
    methods: List[MfaMethodStatus]
    backup_codes_remaining: int
    backup_codes_generated_at: Optional[datetime] = None
    is_locked: bool
    locked_until: Optional[datetime] = None
    last_success_at: Optional[datetime] = None


class BackupCodesResult(CamelModel):
    codes: List[str]
    generated_at: datetime


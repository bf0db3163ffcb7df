# apps/auth_svc/utils/totp.py
from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime
from io import BytesIO
from typing import Optional

import pyotp
import qrcode

_DIGESTS = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}


def build_totp(secret: str, algorithm: str = "SHA1", digits: int = 6, period: int = 30) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=digits, digest=_DIGESTS[algorithm.upper()], interval=period)


def match_totp_step(
    secret: str,
    code: str,
    for_time: datetime,
    *,
    algorithm: str = "SHA1",
    digits: int = 6,
    period: int = 30,
    window: int = 1,
) -> Optional[int]:
    """
    Номер временного шага, которому соответствует код, или None.
    Допуск ±window периодов покрывает рассинхронизацию часов клиента.
    """
    if not code.isdigit() or len(code) != digits:
        return None
    totp = build_totp(secret, algorithm, digits, period)
    current = totp.timecode(for_time)
    for step in range(current - window, current + window + 1):
        if hmac.compare_digest(totp.generate_otp(step), code):
            return step
    return None


def provisioning_uri(secret: str, account_name: str, issuer: str, *, algorithm: str, digits: int, period: int) -> str:
    return build_totp(secret, algorithm, digits, period).provisioning_uri(name=account_name, issuer_name=issuer)


def qr_code_data_url(uri: str) -> str:
    """PNG с QR-кодом в виде data URL для показа в клиенте."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(uri)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffered = BytesIO()
    img.save(buffered, format="PNG")
    return f"data:image/png;base64,{base64.b64encode(buffered.getvalue()).decode()}"

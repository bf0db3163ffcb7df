# libs/utils/masking.py
from __future__ import annotations


def mask_email(email: str | None) -> str | None:
    """j***@example.com"""
    if not email or "@" not in email:
        return email
    local, domain = email.split("@", 1)
    head = local[:1] if local else ""
    return f"{head}***@{domain}"


def mask_phone(phone: str | None) -> str | None:
    """+1******4567"""
    if not phone:
        return phone
    digits = phone.strip()
    if len(digits) <= 4:
        return "*" * len(digits)
    prefix = digits[:2] if digits.startswith("+") else digits[:1]
    return f"{prefix}{'*' * (len(digits) - len(prefix) - 4)}{digits[-4:]}"

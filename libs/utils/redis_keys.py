# libs/utils/redis_keys.py


def make_key(*parts: str) -> str:
    """Собирает стандартизированный ключ для Redis: core:<part1>:<part2>..."""
    return f"core:{':'.join(parts)}"


# --- Rate limiting ---


def key_rate_window(scope: str, subject: str, window_index: int) -> str:
    """Счётчик попыток в окне с номером window_index (скользящее окно из двух корзин)."""
    return make_key("auth", "rate", scope, subject, str(window_index))


# --- MFA ---


def key_mfa_challenge(challenge_id: str) -> str:
    """Незавершённая MFA-проверка при входе."""
    return make_key("auth", "mfa", "challenge", challenge_id)


def key_mfa_otp(purpose: str, user_id: str, method: str) -> str:
    """Одноразовый SMS/email код. purpose: setup | challenge."""
    return make_key("auth", "mfa", "otp", purpose, user_id, method)


# --- OAuth ---


def key_oauth_state(state: str) -> str:
    return make_key("auth", "oauth", "state", state)


# --- Email verification ---


def key_email_verification(token_hash: str) -> str:
    return make_key("auth", "verify", "email", token_hash)


# --- Password reset ---


def key_password_reset(token_hash: str) -> str:
    return make_key("auth", "reset", "password", token_hash)

# libs/domain/orm/auth/enums.py
import enum


class AccountStatus(str, enum.Enum):
    """Статус аккаунта."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    LOCKED = "locked"
    PENDING_VERIFICATION = "pending_verification"


class AccountRole(str, enum.Enum):
    """Роль аккаунта в системе."""

    USER = "user"
    ADMIN = "admin"


class MfaMethod(str, enum.Enum):
    """Методы второго фактора, которые можно подключить к аккаунту."""

    TOTP = "totp"
    SMS = "sms"
    EMAIL = "email"


# Резервный код не является подключаемым методом, но допустим при проверке challenge
BACKUP_CODE_METHOD = "backup_code"


class OAuthProviderName(str, enum.Enum):
    GOOGLE = "google"
    GITHUB = "github"
    LINKEDIN = "linkedin"
    MICROSOFT = "microsoft"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Хранить в БД значения ('active'), а не имена ('ACTIVE')."""
    return [member.value for member in enum_cls]

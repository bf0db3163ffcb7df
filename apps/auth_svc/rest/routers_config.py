# apps/auth_svc/rest/routers_config.py

from .admin_routes import router as admin_router
from .auth_routes import router as auth_router
from .mfa_routes import router as mfa_router
from .oauth_routes import router as oauth_router
from .session_routes import router as session_router

# Пути уже содержат /v1/auth в префиксах самих роутеров
ROUTERS_CONFIG = [
    {"router": auth_router, "tags": ["Authentication"]},
    {"router": mfa_router, "tags": ["MFA"]},
    {"router": oauth_router, "tags": ["OAuth"]},
    {"router": session_router, "tags": ["Sessions"]},
    {"router": admin_router, "tags": ["Admin"]},
]

# apps/auth_svc/auth_svc_main.py
"""
Точка входа сервиса аутентификации.

    uvicorn apps.auth_svc.auth_svc_main:create_app --factory --host 0.0.0.0 --port 8000
"""
from typing import Optional

from fastapi import FastAPI

from libs.app.bootstrap import create_service_app
from libs.containers.auth_container import AuthContainer
from apps.auth_svc.config.settings_auth import AuthServiceSettings
from apps.auth_svc.rest.routers_config import ROUTERS_CONFIG


def create_app(settings: Optional[AuthServiceSettings] = None) -> FastAPI:
    return create_service_app(
        service_name="auth-svc",
        settings_class=AuthServiceSettings,
        settings=settings,
        container_factory=AuthContainer.create,
        include_rest_routers=ROUTERS_CONFIG,
    )

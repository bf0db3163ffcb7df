# libs/app/bootstrap.py
from __future__ import annotations
from contextlib import asynccontextmanager
from typing import (
    Type,
    Callable,
    List,
    Optional,
    Awaitable,
    TypeVar,
)
from fastapi import FastAPI
from pydantic_settings import BaseSettings

from .logging_middleware import LoggingMiddleware
from .security_middleware import SecurityHeadersMiddleware
from .exception_handlers import register_exception_handlers
from libs.utils.logging_setup import app_logger as log
from libs.app.health import create_health_router
from libs.infra.db import check_db_connection

# Типы для фабрик
ContainerT = TypeVar("ContainerT")
ContainerFactory = Callable[..., Awaitable[ContainerT]]


@asynccontextmanager
async def service_lifespan(app: FastAPI, *, container_factory: ContainerFactory):
    """
    Управляет жизненным циклом DI-контейнера.
    Если контейнер уже положен в app.state (тесты), он не пересоздаётся и не закрывается.
    """
    log.info("Запуск сервиса...")
    owns_container = False
    try:
        if getattr(app.state, "container", None) is None:
            settings = getattr(app.state, "settings", None)
            app.state.container = (
                await container_factory(settings) if settings else await container_factory()
            )
            owns_container = True
            log.info("DI-контейнер инициализирован.")

        log.info("Сервис готов к работе.")
        yield
    except Exception:
        log.exception("Критическая ошибка при старте сервиса.")
        raise
    finally:
        log.info("Остановка сервиса...")
        if owns_container:
            await app.state.container.shutdown()
        log.info("Сервис остановлен.")


def create_service_app(
    *,
    service_name: str,
    container_factory: ContainerFactory[ContainerT],
    settings_class: Optional[Type[BaseSettings]] = None,
    settings: Optional[BaseSettings] = None,
    include_rest_routers: Optional[List] = None,
) -> FastAPI:
    """
    Фабрика для создания FastAPI-приложения сервиса.
    Готовый объект settings имеет приоритет над settings_class.
    """

    def _lifespan(app):
        return service_lifespan(app, container_factory=container_factory)

    app = FastAPI(title=service_name, lifespan=_lifespan)

    if settings is not None:
        app.state.settings = settings
    elif settings_class:
        app.state.settings = settings_class()

    # Последний добавленный middleware выполняется первым
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        LoggingMiddleware,
        trusted_proxies=getattr(getattr(app.state, "settings", None), "TRUSTED_PROXIES", ()),
    )
    register_exception_handlers(app)

    async def db_check():
        engine = getattr(app.state.container, "engine", None)
        if engine is None:
            return None
        return "database", await check_db_connection(engine)

    async def redis_check():
        redis = getattr(app.state.container, "redis", None)
        if redis is None:
            return None
        return "redis", await redis.ping()

    app.include_router(create_health_router([db_check, redis_check]))

    if include_rest_routers:
        for router_config in include_rest_routers:
            app.include_router(
                router_config["router"],
                prefix=router_config.get("prefix", ""),
                tags=router_config.get("tags", []),
            )

    log.info(f"Приложение '{service_name}' сконфигурировано.")
    return app

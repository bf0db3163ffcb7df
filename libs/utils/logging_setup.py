# libs/utils/logging_setup.py
import os
import logging
import sys
from typing import Any
from logging import Logger

from .json_logging import JsonFormatter, SecretMaskingFilter

# --- Пользовательский уровень SUCCESS ---
SUCCESS_LEVEL_NUM = 25
logging.addLevelName(SUCCESS_LEVEL_NUM, "SUCCESS")


def success_log_method(self: Logger, message: str, *args: Any, **kwargs: Any):
    if self.isEnabledFor(SUCCESS_LEVEL_NUM):
        self._log(SUCCESS_LEVEL_NUM, message, args, **kwargs)


setattr(logging.Logger, "success", success_log_method)


# --- Конфиг ---
class LoggerConfig:
    def __init__(self):
        self.service_name = os.getenv("SERVICE_NAME", "auth-svc")
        self.console_log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
        self.sql_echo = os.getenv("DB_ECHO", "False").lower() in {"1", "true", "yes"}
        self.app_logger = logging.getLogger("auth_svc_app_logger")
        self.app_logger.setLevel(logging.DEBUG)
        self._disable_sqlalchemy_logs()

    def get_logger(self):
        return self.app_logger

    def _disable_sqlalchemy_logs(self):
        sql_loggers = [
            "sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool",
            "sqlalchemy.orm", "asyncpg", "aiosqlite",
        ]
        for name in sql_loggers:
            logging.getLogger(name).setLevel(
                logging.WARNING if not self.sql_echo else logging.INFO
            )


# --- Фабрика хендлера для консоли ---
def get_json_console_handler(level: int, service_name: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    fmt = JsonFormatter()
    setattr(fmt, "_static_fields", {"svc": service_name})
    handler.setFormatter(fmt)
    handler.addFilter(SecretMaskingFilter())
    return handler


# --- Инициализация логгера приложения ---
config = LoggerConfig()
app_logger = config.get_logger()
app_logger.propagate = False

if not app_logger.handlers:
    app_logger.addHandler(get_json_console_handler(config.console_log_level, config.service_name))

# Модульные логгеры (logging.getLogger(__name__)) из apps.* и libs.* пишут тем же JSON-хендлером
for package_name in ("apps", "libs"):
    package_logger = logging.getLogger(package_name)
    if not package_logger.handlers:
        package_logger.setLevel(config.console_log_level)
        package_logger.addHandler(get_json_console_handler(config.console_log_level, config.service_name))
        package_logger.propagate = False

# --- Перехват Uvicorn логов ---
for ext_logger in (logging.getLogger("uvicorn.error"), logging.getLogger("uvicorn.access")):
    ext_logger.handlers = [get_json_console_handler(config.console_log_level, "uvicorn")]
    ext_logger.propagate = False

# libs/utils/service_boundary.py
import functools
import logging
from typing import Any, Callable, Coroutine, ParamSpec, Tuple, TypeVar

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from libs.app.errors import ErrorCode, ServiceError

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)

# Ошибки хранилищ и сети, которые на границе сервиса превращаются в INTERNAL_ERROR
STORE_ERRORS = (SQLAlchemyError, RedisError, ConnectionError, TimeoutError)


def service_boundary(
    func: Callable[P, Coroutine[Any, Any, Tuple[Any, ServiceError | None]]],
) -> Callable[P, Coroutine[Any, Any, Tuple[Any, ServiceError | None]]]:
    """
    Декоратор для публичных методов сервисов, возвращающих (result, error).
    Сбой хранилища логируется целиком, а наружу уходит только INTERNAL_ERROR
    без внутренних деталей.
    """

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Tuple[Any, ServiceError | None]:
        try:
            return await func(*args, **kwargs)
        except STORE_ERRORS:
            logger.exception(f"Сбой хранилища в {func.__qualname__}")
            return None, ServiceError(code=ErrorCode.INTERNAL_ERROR)

    return wrapper

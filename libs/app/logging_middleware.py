# libs/app/logging_middleware.py
import ipaddress
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Awaitable, Callable, Iterable, Sequence

from libs.utils.ids import new_request_id
from libs.utils.logging_setup import app_logger as logger


def _is_trusted(address: str, trusted_proxies: Iterable[str]) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return any(ip in ipaddress.ip_network(proxy, strict=False) for proxy in trusted_proxies)


def client_ip(request: Request, trusted_proxies: Sequence[str] = ()) -> str | None:
    """
    IP клиента для аудита и ключей rate limit.
    X-Forwarded-For читается только если соединение пришло от доверенного прокси:
    цепочка разбирается справа налево до первого недоверенного адреса.
    """
    peer = request.client.host if request.client else None
    if not peer or not trusted_proxies or not _is_trusted(peer, trusted_proxies):
        return peer
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return peer
    chain = [part.strip() for part in forwarded.split(",") if part.strip()]
    for address in reversed(chain):
        if not _is_trusted(address, trusted_proxies):
            return address
    return chain[0] if chain else peer


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware для сквозного логирования HTTP-запросов.
    - Генерирует X-Request-ID, если он не предоставлен.
    - Замеряет время выполнения запроса.
    - Логирует метод, путь, статус и IP клиента; тело и заголовки авторизации не пишутся.
    """

    def __init__(self, app, trusted_proxies: Sequence[str] = ()):
        super().__init__(app)
        self.trusted_proxies = tuple(trusted_proxies)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("x-request-id") or new_request_id()
        request.state.request_id = request_id
        start_time = time.monotonic()

        response = await call_next(request)

        process_time = (time.monotonic() - start_time) * 1000  # в миллисекундах
        log_extra = {
            "req_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status": response.status_code,
            "latency_ms": round(process_time, 2),
            "client_ip": client_ip(request, self.trusted_proxies),
        }

        if response.status_code >= 500:
            logger.error(f"HTTP {request.method} {request.url.path} - {response.status_code}", extra=log_extra)
        else:
            logger.info(f"HTTP {request.method} {request.url.path} - {response.status_code}", extra=log_extra)

        response.headers["x-request-id"] = request_id
        return response

# libs/app/exception_handlers.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from libs.app.errors import ErrorCode, ServiceError, get_default_message

log = logging.getLogger(__name__)

# Поля, значения которых не возвращаются клиенту в ошибках валидации
SECRET_FIELDS = {"password", "currentPassword", "newPassword", "confirmPassword", "code", "refreshToken", "token"}

# Коды для HTTPException, поднятых самим FastAPI/Starlette (404 маршрута, 405 и т.п.)
_STATUS_TO_CODE = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.VALIDATION_FAILED,
    status.HTTP_401_UNAUTHORIZED: ErrorCode.AUTH_TOKEN_INVALID,
    status.HTTP_403_FORBIDDEN: ErrorCode.AUTH_FORBIDDEN,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
}


class ServiceHTTPException(HTTPException):
    """HTTP-исключение с ServiceError внутри; рендерится в общий конверт ответа."""

    def __init__(self, error: ServiceError):
        headers = None
        if error.retry_after:
            headers = {"Retry-After": str(error.retry_after)}
        elif error.http_status == status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}
        super().__init__(status_code=error.http_status, detail=error.public_message, headers=headers)
        self.error = error


def error_body(
    code: str,
    message: str,
    errors: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message, "errorCode": code}
    if errors:
        body["errors"] = errors
    return body


async def service_http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ServiceHTTPException)
    error = exc.error
    errors = [
        {"field": e.field, "message": e.message, "value": e.value} for e in error.errors
    ]
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(error.code.value, error.public_message, errors),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    if isinstance(exc, ServiceHTTPException):
        return await service_http_exception_handler(request, exc)
    code = _STATUS_TO_CODE.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else get_default_message(code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code.value, message),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Ошибки разбора запроса -> 400 с ошибками по полям."""
    assert isinstance(exc, RequestValidationError)
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
        field = ".".join(loc) or "body"
        value = err.get("input")
        if loc and loc[-1] in SECRET_FIELDS:
            value = None
        if not isinstance(value, (str, int, float, bool)):
            value = None
        errors.append({"field": field, "message": err.get("msg", "Invalid value"), "value": value})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            ErrorCode.VALIDATION_FAILED.value, get_default_message(ErrorCode.VALIDATION_FAILED), errors
        ),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception(f"Необработанное исключение на {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(ErrorCode.INTERNAL_ERROR.value, get_default_message(ErrorCode.INTERNAL_ERROR)),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceHTTPException, service_http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

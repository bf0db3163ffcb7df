# apps/auth_svc/rest/dto.py
from typing import Generic, List, Optional, TypeVar

from libs.app.exception_handlers import ServiceHTTPException
from libs.domain.dto.base import CamelModel
from libs.domain.dto.errors import FieldErrorDTO

PayloadT = TypeVar("PayloadT")


class APIResponse(CamelModel, Generic[PayloadT]):
    """Единый конверт ответа: {success, message?, data?, errors?, errorCode?}."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[PayloadT] = None
    errors: Optional[List[FieldErrorDTO]] = None
    error_code: Optional[str] = None


def unwrap(outcome):
    """(result, error) сервиса -> result или ServiceHTTPException."""
    result, error = outcome
    if error:
        raise ServiceHTTPException(error)
    return result

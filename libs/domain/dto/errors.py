# libs/domain/dto/errors.py
from __future__ import annotations
from typing import Any, Optional

from pydantic import BaseModel, Field


class FieldErrorDTO(BaseModel):
    field: str = Field(..., description="Имя поля запроса, к которому относится ошибка")
    message: str = Field(..., description="Короткое описание ошибки для клиента")
    value: Optional[Any] = Field(None, description="Отклонённое значение (никогда для секретов)")

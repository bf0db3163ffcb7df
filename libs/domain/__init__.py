from __future__ import annotations

from .dto.errors import FieldErrorDTO as FieldErrorDTO

import json
import math
from typing import Any, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from core.errors import ValidationFailed

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class Envelope(BaseModel, Generic[T]):
    message: str
    data: T


class Page(BaseModel, Generic[T]):
    items: List[T]
    current_page: int
    total_pages: int
    total_items: int


class MessageOut(BaseModel):
    message: str


class ImagePair(BaseModel):
    original: str
    thumbnail: str


class DeletionReportOut(BaseModel):
    succeeded: List[str]
    failed: List[str]


def total_pages(total_items: int, limit: int) -> int:
    return math.ceil(total_items / limit) if limit else 0


def parse_json_field(value: Any, label: str) -> Any:
    """Multipart forms carry nested objects as JSON strings."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            raise ValueError(f"Invalid {label} data")
    return value


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return ", ".join(parts)


def parse_form(model: Type[M], **fields: Optional[Any]) -> M:
    """Validate form fields into ``model``; omitted (None) fields stay unset."""
    data = {k: v for k, v in fields.items() if v is not None}
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailed(_validation_message(exc))

"""Helper utilities for provider clients."""

from __future__ import annotations

from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def extract_error_body(response: httpx.Response) -> Any:
    """Return structured error details if available, else a trimmed text body."""

    try:
        return response.json()
    except ValueError:
        text = getattr(response, "text", None)
        if text:
            stripped = text.strip()
            if stripped:
                return stripped
        return None


def validate_items(
    model: type[ModelT], items: list[Any]
) -> tuple[list[ModelT], list[dict[str, Any]]]:
    """Validate raw payload items, collecting the ones that do not fit ``model``."""

    valid: list[ModelT] = []
    rejected: list[dict[str, Any]] = []
    for item in items:
        try:
            valid.append(model.model_validate(item))
        except ValidationError as exc:
            rejected.append({"item": item, "errors": exc.errors(include_url=False)})
    return valid, rejected


__all__ = ["extract_error_body", "validate_items"]

"""JSON body parsing shared by the routers.

Routes read their body by hand, after authentication and the credential
check, so that a request is rejected in the order: 401, 500 (configuration),
400 (content type, then body).
"""

from __future__ import annotations

from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from textviz.core.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


async def read_json_body(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type.lower():
        raise ValidationError("Invalid content type. Expected application/json.")
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body is not valid JSON.") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


def parse_body(model: type[ModelT], body: dict[str, Any], fallback: str) -> ModelT:
    """Validate ``body`` as ``model``; the first custom validator message wins."""
    try:
        return model.model_validate(body)
    except SchemaError as exc:
        for error in exc.errors():
            cause = (error.get("ctx") or {}).get("error")
            if error.get("type") == "value_error" and cause is not None:
                raise ValidationError(str(cause)) from exc
        raise ValidationError(fallback) from exc


__all__ = ["parse_body", "read_json_body"]

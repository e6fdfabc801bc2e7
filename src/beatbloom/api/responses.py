"""Uniform response envelope: ``{success, message, data, pagination?}``."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from beatbloom.services.pagination import Pagination


def _dump(value: Any) -> Any:
    # Pydantic JSON mode keeps Decimal money exact by rendering it as a string
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


def ok(
    data: Any = None,
    message: str = "OK",
    pagination: Optional[Pagination] = None,
) -> dict:
    body = {"success": True, "message": message, "data": _dump(data)}
    if pagination is not None:
        body["pagination"] = _dump(pagination)
    return body


def error_body(message: str, data: Any = None) -> dict:
    return {"success": False, "message": message, "data": _dump(data)}

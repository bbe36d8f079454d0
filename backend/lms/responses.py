"""JSON response envelopes for controllers calling the use-cases."""
from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .domain_errors import DomainError


def build_success_response(*, message: str, data: Any = None, status_code: int = 200) -> JSONResponse:
    """Render a successful operation as `{message, data}`."""
    return JSONResponse(
        status_code=status_code,
        content={"message": message, "data": jsonable_encoder(data)},
    )


def build_error_payload(exc: DomainError) -> dict[str, object]:
    payload: dict[str, object] = {
        "message": exc.message,
        "error": exc.code,
    }
    if exc.details is not None:
        payload["details"] = jsonable_encoder(exc.details)
    return payload


def build_error_response(exc: DomainError) -> JSONResponse:
    """Render DomainError as `{message, error, details?}` with its HTTP status."""
    return JSONResponse(
        status_code=exc.http_status,
        content=build_error_payload(exc),
    )

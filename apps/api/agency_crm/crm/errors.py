from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from agency_crm.context import get_correlation_id
from agency_crm.crm.validators import field_errors


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def field_error(field: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"field_errors": {field: [message]}},
    )


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(asdict(payload)))


def http_error_response(request: Request, exc: HTTPException, *, code: str) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "field_errors" in detail:
        return error_response(
            request,
            status_code=exc.status_code,
            code="validation_failed",
            message="Validation failed",
            details=detail,
        )
    return error_response(request, status_code=exc.status_code, code=code, message=str(detail), details=detail)


def validation_error_response(request: Request, exc: ValidationError | RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="validation_failed",
        message="Validation failed",
        details={"field_errors": field_errors(exc.errors(), strip_prefix=("body", "query", "path"))},
    )

"""Domain exceptions and their RFC 7807 ``application/problem+json`` rendering.

Services raise these; they never build HTTP responses themselves.  Each
subclass pins its status code, problem ``type`` slug and title as class
attributes, and ``register_exception_handlers`` maps them (plus request
validation errors and plain HTTPExceptions) to Problem Detail bodies.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

BASE_ERROR_URI = "https://teamleave.local/errors"
PROBLEM_JSON = "application/problem+json"

FieldErrors = dict[str, list[str]]


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all domain errors surfaced to API clients."""

    status_code: int = 500
    error_type: str = "internal-error"
    title: str = "Internal Error"

    def __init__(self, detail: str, errors: Optional[FieldErrors] = None) -> None:
        self.detail = detail
        self.errors = errors
        super().__init__(detail)

    def to_problem(self, instance: str) -> dict[str, Any]:
        return _problem(
            self.status_code, self.error_type, self.title, self.detail, instance, self.errors,
        )


class NotFoundException(AppException):
    """404 — the referenced user or leave request does not exist."""

    status_code = 404
    error_type = "not-found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.title = f"{entity_type} Not Found"
        super().__init__(f"{entity_type} with id '{entity_id}' does not exist.")


class ConflictError(AppException):
    """409 — a unique value (e.g. email) is already taken."""

    status_code = 409
    error_type = "conflict"
    title = "Conflict"

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


class ForbiddenException(AppException):
    """403 — the caller is authenticated but not allowed to do this."""

    status_code = 403
    error_type = "forbidden"
    title = "Forbidden"

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(detail)


class InsufficientBalanceException(AppException):
    """400 — remaining leave cannot cover the requested days."""

    status_code = 400
    error_type = "insufficient-balance"
    title = "Insufficient Leave Balance"

    def __init__(self, available: Decimal, requested: Decimal) -> None:
        self.available = available
        self.requested = requested
        summary = f"Available: {available}, Requested: {requested}."
        super().__init__(
            f"Not enough leave balance. {summary}",
            errors={"balance": [summary]},
        )


class ValidationException(AppException):
    """422 — input is well-formed but breaks a business rule."""

    status_code = 422
    error_type = "validation-error"
    title = "Validation Error"

    def __init__(self, errors: FieldErrors) -> None:
        super().__init__("One or more fields failed validation.", errors=errors)


# ── Problem Detail bodies ───────────────────────────────────────────

def _problem(
    status: int,
    error_type: str,
    title: str,
    detail: str,
    instance: str,
    errors: Optional[FieldErrors] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{error_type}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": instance,
    }
    if errors:
        body["errors"] = errors
    return body


def _field_errors(exc: RequestValidationError) -> FieldErrors:
    """Group pydantic errors by dotted field path, dropping the body/query prefix."""
    grouped: FieldErrors = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        name = ".".join(loc[1:]) or (loc[0] if loc else "unknown")
        grouped.setdefault(name, []).append(err.get("msg", "Invalid value"))
    return grouped


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem(request.url.path),
        media_type=PROBLEM_JSON,
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=_problem(
            422,
            "validation-error",
            "Validation Error",
            "Request validation failed.",
            request.url.path,
            _field_errors(exc),
        ),
        media_type=PROBLEM_JSON,
    )


async def _handle_http_exception(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    # 401s from the auth dependency, unknown routes, wrong methods
    return JSONResponse(
        status_code=exc.status_code,
        content=_problem(
            exc.status_code,
            "unauthenticated" if exc.status_code == 401 else "http-error",
            "Unauthenticated" if exc.status_code == 401 else "HTTP Error",
            str(exc.detail),
            request.url.path,
        ),
        headers=getattr(exc, "headers", None),
        media_type=PROBLEM_JSON,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the Problem Detail handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]

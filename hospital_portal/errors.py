"""
API error types and their HTTP mapping.

Every error response has the shape ``{"error": <message>, "code": <CODE>}``,
with an optional ``details`` object of field errors for validation failures.

Database errors are classified by their PostgREST/Postgres code:
    42501     -> 403 FORBIDDEN (row-level security denial)
    PGRST116  -> 404 NOT_FOUND (``.single()`` matched no row)
    anything  -> 500 INTERNAL_ERROR
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from postgrest.exceptions import APIError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

RLS_DENIED = "42501"
NO_ROWS = "PGRST116"


class PortalError(Exception):
    """An error that renders directly as an API error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str,
        details: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class RecordNotFound(Exception):
    """Raised by the gateway when an update or delete matched no row."""


def unauthorized() -> PortalError:
    return PortalError(status.HTTP_401_UNAUTHORIZED, "Unauthorized", "UNAUTHORIZED")


def forbidden() -> PortalError:
    return PortalError(status.HTTP_403_FORBIDDEN, "Forbidden", "FORBIDDEN")


def not_found(message: str) -> PortalError:
    return PortalError(status.HTTP_404_NOT_FOUND, message, "NOT_FOUND")


def validation_failed(
    details: Optional[Dict[str, List[str]]] = None,
    message: str = "Validation failed",
) -> PortalError:
    return PortalError(status.HTTP_400_BAD_REQUEST, message, "VALIDATION_ERROR", details)


def internal_error(message: str, code: str = "INTERNAL_ERROR") -> PortalError:
    return PortalError(status.HTTP_500_INTERNAL_SERVER_ERROR, message, code)


def database_error(
    exc: Union[APIError, RecordNotFound],
    failure_message: str,
    not_found_message: Optional[str] = None,
) -> PortalError:
    """
    Translate a database exception into a PortalError.

    Args:
        exc: The PostgREST error (or a RecordNotFound from the gateway)
        failure_message: Message for the generic 500 case
        not_found_message: Message for the 404 case; defaults to failure_message

    Returns:
        PortalError ready to be raised from a route handler
    """
    if isinstance(exc, RecordNotFound):
        return not_found(not_found_message or failure_message)

    code = getattr(exc, "code", None)
    if code == RLS_DENIED:
        return forbidden()
    if code == NO_ROWS:
        return not_found(not_found_message or failure_message)

    logger.error("Database error (%s): %s", code, getattr(exc, "message", exc))
    return internal_error(failure_message)


def _field_name(loc: Iterable[Any]) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "header")]
    return parts[-1] if parts else "_errors"


def flatten_validation_errors(errors: Iterable[Dict[str, Any]]) -> Dict[str, List[str]]:
    """Collapse pydantic error entries into ``{field: [messages]}``."""
    flattened: Dict[str, List[str]] = {}
    for error in errors:
        message = str(error.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        flattened.setdefault(_field_name(error.get("loc", ())), []).append(message)
    return flattened


async def _portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if any(error.get("type") == "json_invalid" for error in errors):
        error = validation_failed(message="Invalid JSON payload")
    else:
        error = validation_failed(flatten_validation_errors(errors))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def _api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    error = database_error(exc, "Database request failed", "Record not found")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def _record_not_found_handler(request: Request, exc: RecordNotFound) -> JSONResponse:
    error = not_found(str(exc) or "Record not found")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    codes = {
        status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
        status.HTTP_403_FORBIDDEN: "FORBIDDEN",
        status.HTTP_404_NOT_FOUND: "NOT_FOUND",
        status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    }
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": codes.get(exc.status_code, "HTTP_ERROR")},
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = internal_error("Internal server error")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the portal's error renderers to the application."""
    app.add_exception_handler(PortalError, _portal_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(APIError, _api_error_handler)
    app.add_exception_handler(RecordNotFound, _record_not_found_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

import psycopg2
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.config import APP_DEBUG
from api.event_log import log_api_event


class ApiError(HTTPException):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, headers: dict | None = None, details=None):
        super().__init__(status_code=self.status_code, detail=message, headers=headers)
        self.details = details


class ValidationError(ApiError):
    status_code = 400
    code = "validation_error"


class AuthError(ApiError):
    status_code = 401
    code = "invalid_api_key"


class TierError(ApiError):
    status_code = 403
    code = "insufficient_tier"


class NotFoundError(ApiError):
    status_code = 404
    code = "not_found"


class QuotaExceededError(ApiError):
    status_code = 429
    code = "rate_limit_exceeded"

    def __init__(self, message: str, retry_after: int | None = None, headers: dict | None = None, details=None):
        headers = dict(headers or {})
        if retry_after is not None:
            headers["Retry-After"] = str(max(int(retry_after), 0))
        super().__init__(message, headers=headers or None, details=details)


class UpstreamError(ApiError):
    status_code = 500
    code = "upstream_error"


def _error_body(code: str, message: str, details=None) -> dict:
    body = {"code": code, "message": message}
    if details is not None:
        body["details"] = details
    return {"error": body}


def handle_http_exception(_request: Request, exc: HTTPException):
    code = getattr(exc, "code", "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(code, str(exc.detail), getattr(exc, "details", None)),
        headers=exc.headers,
    )


def handle_validation_exception(_request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=_error_body("validation_error", "invalid request", jsonable_errors(exc)),
    )


def handle_unexpected_exception(request: Request, exc: Exception):
    log_api_event(
        "api_unhandled_error",
        {"path": request.url.path, "error": type(exc).__name__},
    )
    details = str(exc) if APP_DEBUG else None
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_error", "internal server error", details),
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    errors = []
    for err in exc.errors():
        errors.append(
            {
                "loc": [str(part) for part in err.get("loc", ())],
                "msg": str(err.get("msg", "")),
                "type": str(err.get("type", "")),
            }
        )
    return errors


def handle_database_exception(request: Request, exc: psycopg2.Error):
    log_api_event(
        "api_database_error",
        {"path": request.url.path, "error": type(exc).__name__},
    )
    details = str(exc) if APP_DEBUG else None
    return JSONResponse(
        status_code=500,
        content=_error_body("upstream_error", "database error", details),
    )


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_exception)
    app.add_exception_handler(psycopg2.Error, handle_database_exception)
    app.add_exception_handler(Exception, handle_unexpected_exception)

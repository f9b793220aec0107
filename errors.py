"""
Error taxonomy and the request-boundary handlers that turn every failure into
the `{"success": false, "error": <message>}` envelope.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from logging_config import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    status_code = 500
    default_message = "Server Error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class Forbidden(AppError):
    status_code = 403
    default_message = "Not authorized to access this resource"


class AlreadyPaid(AppError):
    status_code = 400
    default_message = "Order is already paid"


class InvalidSignature(AppError):
    status_code = 400
    default_message = "Webhook signature verification failed"


class UpstreamPaymentError(AppError):
    """The payment processor declined or failed; message is the processor's own."""

    status_code = 502
    default_message = "Payment processor error"


class ApiError(AppError):
    """Client side: the API answered with an error envelope."""

    def __init__(self, status_code: int, message: str = None):
        self.status_code = status_code
        super().__init__(message)


def error_response(status_code: int, message: str, headers: dict = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


def _format_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc)
        parts.append(f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid request"))
    return "; ".join(parts) or "Invalid request"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.info("request_failed", error_type=type(exc).__name__, error=exc.message, status_code=exc.status_code)
    return error_response(exc.status_code, exc.message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(ValidationError.status_code, _format_validation_errors(exc))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path)
    return error_response(500, "Server Error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

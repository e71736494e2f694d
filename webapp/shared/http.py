# webapp/shared/http.py
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from webapp.shared.logger import get_logger

logger = get_logger("api")

SECURITY_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "X-Content-Type-Options": "nosniff",
}

INTERNAL_ERROR = "Internal server error"


class ApiError(Exception):
    """
    Short-circuits a request. ``message=None`` means an empty body,
    otherwise the body is ``{"error": message}``.
    """

    def __init__(self, status_code: int, message: str | None = None):
        super().__init__(message or str(status_code))
        self.status_code = status_code
        self.message = message


def apply_security_headers(response: Response) -> Response:
    response.headers.update(SECURITY_HEADERS)
    return response


def empty(status: int, headers: dict | None = None) -> Response:
    return apply_security_headers(Response(status_code=status, headers=headers))


def error_response(status: int, message: str | None, headers: dict | None = None) -> Response:
    if message is None:
        return empty(status, headers)
    return apply_security_headers(JSONResponse(status_code=status, content={"error": message}, headers=headers))


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return apply_security_headers(response)


async def _api_error_handler(request: Request, exc: ApiError):
    if exc.status_code < 500:
        logger.warning(
            f"Rejected {request.method} {request.url.path}: {exc.message or 'bad request shape'}",
            extra={"method": request.method, "path": request.url.path, "status_code": exc.status_code},
        )
    return error_response(exc.status_code, exc.message)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 405:
        return empty(405, exc.headers)
    return error_response(exc.status_code, str(exc.detail), exc.headers)


async def _validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(
        f"Rejected {request.method} {request.url.path}: invalid request parameters",
        extra={"method": request.method, "path": request.url.path, "status_code": 400},
    )
    return empty(400)


async def _unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"method": request.method, "path": request.url.path, "status_code": 500},
    )
    # runs outside the middleware stack, so headers are set here
    return error_response(500, INTERNAL_ERROR)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

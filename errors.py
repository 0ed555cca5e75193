"""Error taxonomy shared by the HTTP routes and the services they call.

Every failure reaches the client as ``{"error": ..., "message": ...}``
with the status code carried by the exception.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppError(Exception):
    status_code = 400
    error = "BadRequest"
    default_message = "Bad request"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidParameter(AppError):
    status_code = 400
    error = "InvalidParameter"
    default_message = "wrong parameter"


class Unauthorized(AppError):
    status_code = 401
    error = "Unauthorized"
    default_message = "Verification failed"


class InvalidToken(Unauthorized):
    error = "InvalidToken"
    default_message = "Invalid form index"


class Forbidden(AppError):
    status_code = 403
    error = "Forbidden"
    default_message = "You don't have enough authority."


class NotFound(AppError):
    status_code = 404
    error = "NotFound"
    default_message = "Not found"


class LoginTimeout(AppError):
    status_code = 408
    error = "Timeout"
    default_message = "Login Time Out"


class ServerError(AppError):
    status_code = 500
    error = "ServerError"
    default_message = "ServerError"


def _error_body(exc: AppError) -> dict[str, str]:
    return {"error": exc.error, "message": exc.message}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=_error_body(InvalidParameter()))

"""
API error types and the handlers that render every failure in the response envelope.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from schemas import envelope


class APIError(Exception):
    """An error that maps directly onto an HTTP status and envelope message."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, error: Any = None, status_code: int = None):
        super().__init__(message)
        self.message = message
        self.error = error
        if status_code is not None:
            self.status_code = status_code


class BadRequest(APIError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(APIError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(APIError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(APIError):
    status_code = status.HTTP_409_CONFLICT


class InternalError(APIError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class BadGateway(APIError):
    status_code = status.HTTP_502_BAD_GATEWAY


def _error_response(status_code: int, message: str, error: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(False, message, error=error))


async def api_error_handler(request: Request, exc: APIError):
    return _error_response(exc.status_code, exc.message, exc.error)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    logging.debug(f"Invalid request body for {request.url.path}: {exc.errors()}")
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return _error_response(status.HTTP_400_BAD_REQUEST, "Invalid request body", details)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception):
    logging.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected internal error occurred")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

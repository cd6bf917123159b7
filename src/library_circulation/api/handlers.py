"""Exception handlers that turn every failure into the uniform envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import LibraryError, ValidationError
from ..models.envelope import ApiResult

logger = logging.getLogger(__name__)


def envelope_response(code: int, message: str) -> JSONResponse:
    body = ApiResult.failure(code, message).model_dump(mode="json", by_alias=True)
    return JSONResponse(status_code=code, content=body)


async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
    if exc.code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return envelope_response(exc.code, exc.message)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        details.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    message = "; ".join(details) or ValidationError.default_message
    return envelope_response(ValidationError.code, message)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return envelope_response(exc.status_code, str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return envelope_response(LibraryError.code, LibraryError.default_message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LibraryError, library_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

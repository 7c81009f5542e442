"""Mapping of domain errors to HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.shared.errors import StorefrontError


def error_body(exc: ValidationError) -> dict:
    if isinstance(exc, StorefrontError):
        return {
            "code": exc.code,
            "message": exc.message,
            "requires_refresh": exc.requires_refresh,
            "details": {key: value for key, value in exc.details.items() if _is_plain(value)},
        }
    return {"code": "validation_error", "message": "Invalid request", "details": dict(exc.messages)}


def _is_plain(value) -> bool:
    return value is None or isinstance(value, str | int | float | bool | list | dict)


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": error_body(exc)})


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    if isinstance(exc, StorefrontError):
        return await storefront_error_handler(request, exc)
    return JSONResponse(status_code=400, content={"error": error_body(exc)})


async def not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": {"code": "not_found", "message": "Not found"}})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(ObjectNotFoundError, not_found_handler)

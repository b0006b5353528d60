"""
FastAPI application entry point for the quotes backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from quotes_backend.auth import authenticate, parse_admin_emails
from quotes_backend.config import get_settings
from quotes_backend.dependencies import get_identity_provider
from quotes_backend.errors import ServiceError
from quotes_backend.routes import router

logger = logging.getLogger(__name__)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s", request.method, request.url.path, exc.public_message
        )
    return JSONResponse(
        status_code=exc.status_code, content={"error": exc.public_message}
    )


def _authenticate_request(request: Request) -> None:
    overrides = request.app.dependency_overrides
    provider = overrides.get(get_identity_provider, get_identity_provider)()
    settings = overrides.get(get_settings, get_settings)()
    authenticate(
        request.headers.get("authorization"),
        provider,
        parse_admin_emails(settings.admin_emails),
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Body decoding runs before the guard dependencies, so authenticate here
    # and never describe a malformed body to an unauthenticated caller.
    try:
        await run_in_threadpool(_authenticate_request, request)
    except ServiceError as auth_exc:
        return await service_error_handler(request, auth_exc)
    errors = exc.errors()
    if errors and errors[0].get("type") == "json_invalid":
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})
    field = "body"
    if errors:
        location = [str(part) for part in errors[0].get("loc", ()) if part != "body"]
        field = ".".join(location) or field
    return JSONResponse(status_code=400, content={"error": f"Invalid value for {field}"})


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = FastAPI(title="Quotes Backend (FastAPI)", version="0.1.0")
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()

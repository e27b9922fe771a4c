"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from wabridge.observability.correlation import CORRELATION_ID_HEADER, correlation_scope

from .errors import http_exception_handler, validation_exception_handler
from .routers import public
from .routes import devices, messages, status, webhook_admin, webhooks_receiver


def create_app() -> FastAPI:
    """Create the bridge app with all routes mounted.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="WhatsApp Bridge",
        docs_url=None,
        redoc_url=None,
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    app.include_router(public.router)
    app.include_router(webhooks_receiver.router)
    app.include_router(devices.router)
    app.include_router(messages.router)
    app.include_router(webhook_admin.router)
    app.include_router(status.router)

    return app

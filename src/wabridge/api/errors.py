"""Translation of service-layer errors into HTTP errors.

Every error response has the shape {"success": false, "error": "..."}; the
handlers in factory.py render HTTPException and request validation errors
that way.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wabridge.observability.logging import get_logger
from wabridge.services.sessions import (
    InvalidRecipientError,
    MediaFetchError,
    ProviderRejectedError,
    SessionIdTakenError,
)
from wabridge.whatsapp.provider_client import ProviderError

logger = get_logger(__name__)


def error_body(message: str) -> dict:
    return {"success": False, "error": message}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content=error_body(message))


@contextmanager
def service_errors() -> Iterator[None]:
    """Map session-service exceptions to HTTPException.

    - invalid input (bad number, bad media, bad value, taken session id) -> 400
    - provider rejected or unreachable -> 502
    """
    try:
        yield
    except (InvalidRecipientError, MediaFetchError, SessionIdTakenError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ProviderRejectedError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    except ProviderError as e:
        logger.warning("provider unavailable", extra={"extra_fields": {"error": str(e)}})
        raise HTTPException(status_code=502, detail="Provider unavailable") from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

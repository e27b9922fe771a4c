"""Public unauthenticated routes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from wabridge.infra import db
from wabridge.infra.repositories import devices_repository
from wabridge.infra.time import iso_timestamp
from wabridge.observability.logging import get_logger
from wabridge.services import sessions
from wabridge.services.webhook_dispatcher import BRIDGE_VERSION

logger = get_logger(__name__)

router = APIRouter()


def _database_status() -> tuple[bool, dict]:
    try:
        with db.txn() as cur:
            counts = devices_repository.count_devices(cur)
    except Exception as e:
        logger.warning(
            "health check: database unavailable",
            extra={"extra_fields": {"error_type": type(e).__name__}},
        )
        return False, {}
    return True, counts


@router.get("/health")
def health() -> JSONResponse:
    """Database and provider health.

    200 with status "healthy" when both answer, 503 "degraded" otherwise.
    """
    database_ok, counts = _database_status()
    provider_ok = sessions.provider_healthy()
    healthy = database_ok and provider_ok

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "success": healthy,
            "status": "healthy" if healthy else "degraded",
            "version": BRIDGE_VERSION,
            "timestamp": iso_timestamp(),
            "checks": {
                "database": "ok" if database_ok else "error",
                "provider": "ok" if provider_ok else "error",
            },
            **counts,
        },
    )

"""Provider callback endpoint.

POST /webhooks/receiver runs the relay pipeline (services.relay). The
provider is not rate limited and carries no credential: an unknown
sessionId is acknowledged and dropped.

Returns:
    200 processed, ignored event, or unknown session.
    400 empty body, invalid JSON, missing sessionId/event.
    405 any method other than POST.
    500 device lookup, device update or persistence failure.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from wabridge.api.rate_limit import client_ip
from wabridge.observability.correlation import get_correlation_id
from wabridge.services.relay import RequestContext, process_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/receiver")
def receive_webhook(request: Request, body: bytes = Depends(_raw_body)) -> JSONResponse:
    """Receive one provider event."""
    ctx = RequestContext(
        correlation_id=get_correlation_id(),
        client_ip=client_ip(request),
    )
    result = process_webhook(body, ctx)
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.api_route("/receiver", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def receiver_method_not_allowed() -> JSONResponse:
    return JSONResponse(
        status_code=405,
        content={"success": False, "error": "Method not allowed"},
        headers={"Allow": "POST"},
    )

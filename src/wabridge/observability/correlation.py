"""Correlation ID propagation for request tracing.

Every request handled by the bridge carries one correlation id. It is read
from the incoming X-Correlation-ID header (or generated), stored in a
ContextVar for the lifetime of the request, attached to every log line and
echoed back on the response.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return uuid.uuid4().hex


def get_correlation_id() -> str:
    """Get current correlation ID ("" outside a request)."""
    return correlation_id_var.get()


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of the block.

    Args:
        cid: Incoming correlation ID. A new one is generated when empty.

    Yields:
        The correlation ID in effect inside the block.
    """
    value = cid or generate_correlation_id()
    token = correlation_id_var.set(value)
    try:
        yield value
    finally:
        correlation_id_var.reset(token)

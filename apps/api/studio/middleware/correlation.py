"""Request correlation ID middleware."""

import logging
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Attach a correlation ID to every request.

    An incoming X-Correlation-ID header is reused, otherwise a new UUID is
    generated. Run and error log lines include it, so one request can be
    followed through the logs.
    """

    async def dispatch(self, request: Request, call_next):
        """
        Resolve the correlation ID and echo it on the response.

        Args:
            request: Incoming request
            call_next: Next middleware in chain

        Returns:
            Response with the X-Correlation-ID header set
        """
        # An empty header counts as absent
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())

        # Route handlers read it back through get_correlation_id()
        request.state.correlation_id = correlation_id

        response = await call_next(request)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def get_correlation_id(request: Request) -> str:
    """
    Get the correlation ID of the current request.

    Usage in route handlers:
        correlation_id = get_correlation_id(request)
        logger.info(f"Starting run [{correlation_id}]")

    Args:
        request: FastAPI request object

    Returns:
        Correlation ID string, or "unknown" outside the middleware
    """
    return getattr(request.state, "correlation_id", "unknown")

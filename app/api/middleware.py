"""Correlation ID middleware - tags every request and its log lines with one ID."""
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from app.utils.logger import set_correlation_id


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    - Reuses an incoming X-Correlation-Id header or generates a new one
    - Sets it in the logging context
    - Echoes it on the response
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get("X-Correlation-Id") or uuid.uuid4().hex
        set_correlation_id(correlation_id)

        response = await call_next(request)

        response.headers["X-Correlation-Id"] = correlation_id
        return response

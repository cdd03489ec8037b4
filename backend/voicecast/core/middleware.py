"""HTTP middleware for correlation IDs and request spans."""

import uuid
from typing import Callable

from fastapi import Request, Response
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware

from voicecast.core.logging import correlation_scope
from voicecast.core.tracing import create_span, record_exception


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the request's correlation ID for every log line it produces."""

    CORRELATION_ID_HEADER = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(self.CORRELATION_ID_HEADER, str(uuid.uuid4()))
        with correlation_scope(incoming) as correlation_id:
            response = await call_next(request)
            response.headers[self.CORRELATION_ID_HEADER] = correlation_id
            return response


class TracingMiddleware(BaseHTTPMiddleware):
    """Wraps each request in a server span."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        with create_span(
            f"{request.method} {request.url.path}",
            attributes={
                "http.method": request.method,
                "http.route": request.url.path,
                "http.scheme": request.url.scheme,
            },
            kind=trace.SpanKind.SERVER,
        ) as span:
            try:
                response = await call_next(request)
            except Exception as e:
                record_exception(e)
                raise
            span.set_attribute("http.status_code", response.status_code)
            return response

"""
Per-request correlation for the chat gateway.

Every request gets an id (taken from X-Request-ID when the caller sends
one) and a resolved caller IP. Both are stored on ``request.state`` and
bound into the structlog context, so pipeline, adapter and datastore log
lines can be joined back to the HTTP request that caused them.

Health and metrics endpoints are traced but not logged.
"""
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time-Ms"

QUIET_PATHS = frozenset({"/health", "/metrics"})


def resolve_caller_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    first_hop = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else "unknown"


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Assigns request id and caller IP, logs start/end with timing."""

    def __init__(self, app, service_name: str = "rag-chat"):
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        caller_ip = resolve_caller_ip(request)
        request.state.request_id = request_id
        request.state.caller_ip = caller_ip

        quiet = request.url.path in QUIET_PATHS
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            caller_ip=caller_ip,
            route=f"{request.method} {request.url.path}",
        ):
            if not quiet:
                logger.info("request_started")
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error("request_crashed", error_type=type(e).__name__,
                             elapsed_ms=int((time.perf_counter() - started) * 1000))
                raise

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers[RESPONSE_TIME_HEADER] = str(elapsed_ms)
            if not quiet:
                logger.info("request_finished", status=response.status_code, elapsed_ms=elapsed_ms)
            return response

"""
Request logging middleware with correlation IDs.

Each request gets a short correlation ID, bound into the structlog context so
gate and ledger log lines can be tied back to the request, and echoed in the
X-Correlation-ID response header.

Never logged: the x402-proof header, query strings, client IPs.
"""

import secrets
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate an 8-character correlation ID."""
    return secrets.token_hex(4)


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = generate_correlation_id()
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        logger = structlog.get_logger()
        started = time.perf_counter()
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            has_proof="x402-proof" in request.headers,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                exc_info=True,
            )
            raise

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            gate_state=getattr(request.state, "gate_state", None),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from x402_paygate import __version__
from x402_paygate.config import settings
from x402_paygate.logging_config import setup_logging
from x402_paygate.middleware.logging import CORRELATION_HEADER, LoggingMiddleware
from x402_paygate.middleware.rate_limit import limiter
from x402_paygate.routers import premium
from x402_paygate.routers.premium import PROOF_HEADER
from x402_paygate.schemas.payment import HealthResponse
from x402_paygate.services.nonce_service import InMemoryNonceLedger
from x402_paygate.services.payment_service import PaymentGate
from x402_paygate.services.signature_service import default_registry

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the nonce ledger (and its collector) for the life of the process."""
    setup_logging()
    ledger = InMemoryNonceLedger(
        ttl_seconds=settings.ttl_seconds,
        grace_seconds=settings.nonce_grace_seconds,
        gc_interval_seconds=settings.nonce_gc_interval_seconds,
    )
    app.state.payment_gate = PaymentGate.from_settings(settings, ledger, default_registry())
    logger.info(
        "paygate_started",
        ttl_seconds=settings.ttl_seconds,
        solana_enabled=bool(settings.receiver_sol),
        evm_enabled=bool(settings.receiver_evm),
        cors_origins=settings.cors_origins,
    )
    yield
    ledger.shutdown()


app = FastAPI(
    title="x402 Paygate",
    description="Pay-per-request access gate using wallet-signed HTTP 402 challenges",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=exc)
    headers = {}
    correlation_id = structlog.contextvars.get_contextvars().get("correlation_id")
    if correlation_id:
        headers[CORRELATION_HEADER] = correlation_id
    return JSONResponse(status_code=500, content={"error": "internal_error"}, headers=headers)


app.add_middleware(LoggingMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", PROOF_HEADER],
    expose_headers=[CORRELATION_HEADER],
)

app.include_router(premium.router, tags=["premium"])


@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse()

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from x402_paygate.config import settings
from x402_paygate.dependencies import get_payment_gate
from x402_paygate.middleware.rate_limit import limiter
from x402_paygate.schemas.payment import (
    ChallengeEnvelope,
    ErrorResponse,
    GrantResponse,
    PremiumContent,
    X402Challenge,
)
from x402_paygate.services.payment_service import (
    Challenge,
    GateState,
    PaymentGate,
    ReceiverNotConfigured,
)

router = APIRouter()
logger = structlog.get_logger()

PROOF_HEADER = "x402-proof"

PREMIUM_RESPONSES = {
    402: {"model": ChallengeEnvelope, "description": "Payment required (challenge or nonce error)"},
    500: {"model": ErrorResponse, "description": "Receiver not configured"},
}


def build_premium_content() -> PremiumContent:
    """The protected payload released on a successful grant."""
    return PremiumContent(
        message="Premium content unlocked 🎉",
        timestamp=datetime.now(UTC),
    )


def challenge_response(challenge: Challenge) -> JSONResponse:
    body = ChallengeEnvelope(
        x402=X402Challenge(
            chain=challenge.chain,
            receiver=challenge.receiver,
            amount=challenge.amount,
            ttl=challenge.ttl,
            nonce=challenge.nonce,
            evm_tx=challenge.tx_hint,
        )
    )
    return JSONResponse(
        status_code=402,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error).model_dump())


@router.api_route(
    "/premium",
    methods=["GET", "POST"],
    response_model=GrantResponse,
    responses=PREMIUM_RESPONSES,
)
@limiter.limit(settings.rate_limit_premium)
def premium(
    request: Request,
    chain: str | None = None,
    proof: str | None = Header(default=None, alias=PROOF_HEADER),
    gate: PaymentGate = Depends(get_payment_gate),
):
    """
    Premium content behind an x402 payment challenge.

    Without a valid ``x402-proof`` header this answers 402 with a fresh
    challenge. Pick the chain with ``?chain=solana`` or ``?chain=evm``.
    """
    try:
        decision = gate.evaluate(proof, requested_chain=chain)
    except ReceiverNotConfigured as e:
        logger.error("receiver_not_configured", chain=e.chain, env_var=e.env_var)
        return error_response(500, str(e))

    request.state.gate_state = decision.state.value

    if decision.state is GateState.NONCE_INVALID:
        return error_response(402, decision.reason)

    if not decision.granted:
        return challenge_response(decision.challenge)

    return GrantResponse(
        who=decision.verdict.who,
        chain=decision.verdict.chain,
        data=build_premium_content(),
    )

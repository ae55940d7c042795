from x402_paygate.schemas.payment import (
    ChallengeEnvelope,
    ErrorResponse,
    EvmTxHint,
    GrantResponse,
    HealthResponse,
    PremiumContent,
    X402Challenge,
)

__all__ = [
    "ChallengeEnvelope",
    "ErrorResponse",
    "EvmTxHint",
    "GrantResponse",
    "HealthResponse",
    "PremiumContent",
    "X402Challenge",
]

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EvmTxHint(BaseModel):
    to: str
    value: str = Field(..., description="Amount in wei, 0x-prefixed hex")
    data: str = "0x"


class X402Challenge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chain: str
    receiver: str
    amount: float = Field(..., description="Price in the chain's native unit")
    ttl: int = Field(..., description="Seconds until the nonce expires")
    nonce: str
    evm_tx: EvmTxHint | None = Field(default=None, alias="evmTx")


class ChallengeEnvelope(BaseModel):
    x402: X402Challenge


class PremiumContent(BaseModel):
    message: str
    timestamp: datetime


class GrantResponse(BaseModel):
    ok: bool = True
    unlocked: bool = True
    who: str
    chain: str
    data: PremiumContent


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    ok: bool = True
    status: str = "healthy"

"""
Payment gate: turns a request's proof header into a challenge, a grant or a
rejection.

Order matters. The signature is checked before the nonce is consumed, so a
forged or malformed proof can never burn someone else's nonce.
"""

import enum
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

import structlog

from x402_paygate.config import Settings
from x402_paygate.services.nonce_service import NonceError, NonceLedger
from x402_paygate.services.proof_service import ProofParseError, parse_proof
from x402_paygate.services.signature_service import EVM, SOLANA, Verdict, VerifierRegistry

logger = structlog.get_logger()

WEI_PER_ETH = Decimal(10) ** 18


class GateState(str, enum.Enum):
    NO_PROOF = "no_proof"
    PROOF_MALFORMED = "proof_malformed"
    PROOF_INVALID_SIGNATURE = "proof_invalid_signature"
    NONCE_INVALID = "nonce_invalid"
    GRANTED = "granted"


class PaymentConfigError(Exception):
    reason = "payment_config_error"


class ReceiverNotConfigured(PaymentConfigError):
    reason = "receiver_not_configured"

    def __init__(self, chain: str, env_var: str):
        super().__init__(f"{env_var} not set")
        self.chain = chain
        self.env_var = env_var


def evm_transfer_hint(receiver: str, amount_eth: float) -> dict:
    """Prebuilt transaction MetaMask can send as-is: plain value transfer in wei."""
    wei = int((Decimal(str(amount_eth)) * WEI_PER_ETH).to_integral_value(rounding=ROUND_FLOOR))
    return {"to": receiver, "value": hex(wei), "data": "0x"}


@dataclass(frozen=True)
class ChainConfig:
    chain: str
    receiver: str
    amount: float
    env_var: str
    tx_hint: dict | None = None

    @property
    def configured(self) -> bool:
        return bool(self.receiver)


@dataclass(frozen=True)
class Challenge:
    chain: str
    receiver: str
    amount: float
    ttl: int
    nonce: str
    tx_hint: dict | None = None


@dataclass
class GateDecision:
    state: GateState
    challenge: Challenge | None = None
    verdict: Verdict | None = None
    reason: str | None = None

    @property
    def granted(self) -> bool:
        return self.state is GateState.GRANTED


def chains_from_settings(config: Settings) -> dict[str, ChainConfig]:
    evm_hint = None
    if config.receiver_evm:
        evm_hint = evm_transfer_hint(config.receiver_evm, config.premium_price_eth)
    return {
        SOLANA: ChainConfig(
            chain=SOLANA,
            receiver=config.receiver_sol,
            amount=config.premium_price_sol,
            env_var="RECEIVER_SOL",
        ),
        EVM: ChainConfig(
            chain=EVM,
            receiver=config.receiver_evm,
            amount=config.premium_price_eth,
            env_var="RECEIVER_EVM",
            tx_hint=evm_hint,
        ),
    }


class PaymentGate:
    def __init__(
        self,
        ledger: NonceLedger,
        registry: VerifierRegistry,
        chains: dict[str, ChainConfig],
        preferred_chain: str = SOLANA,
    ):
        self.ledger = ledger
        self.registry = registry
        self.chains = chains
        self.preferred_chain = preferred_chain

    @classmethod
    def from_settings(
        cls, config: Settings, ledger: NonceLedger, registry: VerifierRegistry
    ) -> "PaymentGate":
        return cls(
            ledger=ledger,
            registry=registry,
            chains=chains_from_settings(config),
        )

    def default_chain(self) -> str:
        """Preferred chain if it has a receiver, otherwise the first one that does."""
        preferred = self.chains.get(self.preferred_chain)
        if preferred is not None and preferred.configured:
            return self.preferred_chain
        for name, chain in self.chains.items():
            if chain.configured:
                return name
        # Nothing configured; issue_challenge will report the preferred chain's receiver
        return self.preferred_chain

    def resolve_chain(self, requested: str | None, fallback: str | None = None) -> str:
        requested = (requested or "").strip().lower()
        if requested in self.chains:
            return requested
        if fallback in self.chains:
            return fallback
        return self.default_chain()

    def issue_challenge(self, chain: str) -> Challenge:
        """
        Issue a nonce and describe how to pay for it on ``chain``.

        Raises ReceiverNotConfigured before touching the ledger when the chain
        has no receiving account.
        """
        chain_config = self.chains[chain]
        if not chain_config.configured:
            raise ReceiverNotConfigured(chain, chain_config.env_var)

        nonce = self.ledger.issue()
        logger.info("challenge_issued", chain=chain, expires_at=nonce.expires_at.isoformat())
        return Challenge(
            chain=chain,
            receiver=chain_config.receiver,
            amount=chain_config.amount,
            ttl=int(self.ledger.ttl.total_seconds()),
            nonce=nonce.token,
            tx_hint=chain_config.tx_hint,
        )

    def evaluate(self, proof_header: str | None, requested_chain: str | None = None) -> GateDecision:
        if not proof_header:
            chain = self.resolve_chain(requested_chain)
            return GateDecision(GateState.NO_PROOF, challenge=self.issue_challenge(chain))

        try:
            proof = parse_proof(proof_header, known_kinds=self.registry.kinds)
        except ProofParseError as e:
            logger.info("proof_rejected", state=GateState.PROOF_MALFORMED.value, reason=e.reason)
            chain = self.resolve_chain(requested_chain)
            return GateDecision(
                GateState.PROOF_MALFORMED,
                challenge=self.issue_challenge(chain),
                reason=e.reason,
            )

        verdict = self.registry.verify(proof.kind, proof.account, proof.nonce, proof.signature)
        if not verdict.ok:
            logger.info(
                "proof_rejected",
                state=GateState.PROOF_INVALID_SIGNATURE.value,
                kind=proof.kind,
                reason=verdict.reason,
            )
            chain = self.resolve_chain(requested_chain, fallback=self.registry.chain_for(proof.kind))
            return GateDecision(
                GateState.PROOF_INVALID_SIGNATURE,
                challenge=self.issue_challenge(chain),
                verdict=verdict,
                reason=verdict.reason,
            )

        try:
            self.ledger.consume_if_valid(proof.nonce)
        except NonceError as e:
            logger.warning("nonce_rejected", reason=e.reason, chain=verdict.chain)
            return GateDecision(GateState.NONCE_INVALID, verdict=verdict, reason=e.reason)

        logger.info("access_granted", chain=verdict.chain, who=verdict.who)
        return GateDecision(GateState.GRANTED, verdict=verdict)

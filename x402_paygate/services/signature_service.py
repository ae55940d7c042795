"""
Wallet signature verification.

Each supported wallet scheme is a SchemeVerifier registered under its proof
kind. Verifiers never raise: every failure comes back as a negative Verdict
with a reason code.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import base58
import structlog
from eth_account import Account
from eth_account.messages import encode_defunct
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

logger = structlog.get_logger()

CHALLENGE_MESSAGE_PREFIX = "x402-proof:"

PHANTOM = "phantom"
METAMASK = "metamask"
BUILTIN_KINDS = (PHANTOM, METAMASK)

SOLANA = "solana"
EVM = "evm"


def canonical_message(nonce: str) -> str:
    """The message a wallet signs to answer a challenge."""
    return f"{CHALLENGE_MESSAGE_PREFIX}{nonce}"


@dataclass(frozen=True)
class Verdict:
    ok: bool
    who: str | None = None
    chain: str | None = None
    reason: str | None = None


class SchemeVerifier(ABC):
    kind: str
    chain: str

    @abstractmethod
    def verify(self, account: str, nonce: str, signature: bytes) -> Verdict:
        """Check that ``account`` signed the challenge message for ``nonce``."""

    def _reject(self, reason: str) -> Verdict:
        return Verdict(ok=False, chain=self.chain, reason=reason)


class Ed25519Verifier(SchemeVerifier):
    """Phantom / Solana: detached Ed25519 signature, account is a base58 public key."""

    kind = PHANTOM
    chain = SOLANA

    def verify(self, account: str, nonce: str, signature: bytes) -> Verdict:
        message = canonical_message(nonce).encode("utf-8")
        try:
            public_key = base58.b58decode(account)
            VerifyKey(public_key).verify(message, signature)
        except (BadSignatureError, ValueError, TypeError) as e:
            logger.debug("signature_check_failed", kind=self.kind, error=str(e))
            return self._reject("phantom_verify_error")
        return Verdict(ok=True, who=account, chain=self.chain)


class PersonalSignVerifier(SchemeVerifier):
    """
    MetaMask / EVM: EIP-191 personal_sign signature.

    The signer address is recovered from the signature and compared to the
    claimed address ignoring case, since wallets render addresses with a
    mixed-case checksum.
    """

    kind = METAMASK
    chain = EVM

    def verify(self, account: str, nonce: str, signature: bytes) -> Verdict:
        signable = encode_defunct(text=canonical_message(nonce))
        try:
            recovered = Account.recover_message(signable, signature="0x" + signature.hex())
        except Exception as e:  # eth-keys raises several unrelated error types
            logger.debug("signature_check_failed", kind=self.kind, error=str(e))
            return self._reject("metamask_verify_error")

        if recovered.lower() != account.lower():
            logger.debug("signature_signer_mismatch", kind=self.kind, recovered=recovered)
            return Verdict(ok=False, who=recovered, chain=self.chain, reason="metamask_signer_mismatch")
        return Verdict(ok=True, who=recovered, chain=self.chain)


class VerifierRegistry:
    """Maps proof kinds to the verifier that handles them."""

    def __init__(self, verifiers: list[SchemeVerifier] | None = None):
        self._verifiers: dict[str, SchemeVerifier] = {}
        for verifier in verifiers or []:
            self.register(verifier)

    def register(self, verifier: SchemeVerifier) -> None:
        self._verifiers[verifier.kind] = verifier

    @property
    def kinds(self) -> tuple[str, ...]:
        return tuple(self._verifiers)

    def chain_for(self, kind: str) -> str | None:
        verifier = self._verifiers.get(kind)
        return verifier.chain if verifier else None

    def verify(self, kind: str, account: str, nonce: str, signature: bytes) -> Verdict:
        verifier = self._verifiers.get(kind)
        if verifier is None:
            return Verdict(ok=False, reason="unknown_kind")
        return verifier.verify(account, nonce, signature)


def default_registry() -> VerifierRegistry:
    return VerifierRegistry([Ed25519Verifier(), PersonalSignVerifier()])

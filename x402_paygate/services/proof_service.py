"""
Codec for the ``x402-proof`` request header.

Wire format::

    <kind>:<account>:<nonce>:<base64-signature>

kind      registered scheme identifier ("phantom", "metamask")
account   base58 public key or 0x-prefixed address, depending on kind
nonce     token handed out in a previous 402 challenge
signature standard base64 of the raw signature bytes
"""

import base64
import binascii
from collections.abc import Iterable
from dataclasses import dataclass

from x402_paygate.services.signature_service import BUILTIN_KINDS

PROOF_FIELD_SEPARATOR = ":"
PROOF_FIELD_COUNT = 4


class ProofParseError(ValueError):
    """Base class for malformed proof headers."""

    reason = "bad_proof"


class MissingHeader(ProofParseError):
    reason = "missing_header"


class BadFormat(ProofParseError):
    reason = "bad_format"


class BadKind(ProofParseError):
    reason = "bad_kind"


class BadEncoding(ProofParseError):
    reason = "bad_b64"


@dataclass(frozen=True)
class ProofHeader:
    kind: str
    account: str
    nonce: str
    signature: bytes


def parse_proof(header: object, known_kinds: Iterable[str] | None = None) -> ProofHeader:
    """
    Parse a proof header into its four fields.

    Raises a ProofParseError subclass describing the first problem found.
    """
    if not header or not isinstance(header, str):
        raise MissingHeader("Proof header is missing")

    parts = header.split(PROOF_FIELD_SEPARATOR)
    if len(parts) != PROOF_FIELD_COUNT or not all(parts):
        raise BadFormat(f"Expected {PROOF_FIELD_COUNT} non-empty fields")

    kind, account, nonce, signature_b64 = parts

    if kind not in set(BUILTIN_KINDS if known_kinds is None else known_kinds):
        raise BadKind(f"Unknown proof kind: {kind}")

    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BadEncoding("Signature is not valid base64") from e

    return ProofHeader(kind=kind, account=account, nonce=nonce, signature=signature)


def format_proof(kind: str, account: str, nonce: str, signature: bytes) -> str:
    """Build a proof header value. Inverse of parse_proof."""
    signature_b64 = base64.b64encode(signature).decode("ascii")
    return PROOF_FIELD_SEPARATOR.join((kind, account, nonce, signature_b64))

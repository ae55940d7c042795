"""Tests for the payment gate decision logic."""

import pytest
from eth_account import Account
from nacl.signing import SigningKey

from x402_paygate.config import Settings
from x402_paygate.services.nonce_service import InMemoryNonceLedger, NonceExpired
from x402_paygate.services.payment_service import (
    GateState,
    PaymentGate,
    ReceiverNotConfigured,
    evm_transfer_hint,
)
from x402_paygate.services.proof_service import format_proof
from tests.test_utils import (
    RECEIVER_EVM,
    RECEIVER_SOL,
    metamask_proof,
    phantom_proof,
    sign_phantom,
    solana_address,
)


def make_gate(ledger, registry, **overrides) -> PaymentGate:
    config = Settings(_env_file=None, **{"receiver_sol": "", "receiver_evm": "", **overrides})
    return PaymentGate.from_settings(config, ledger, registry)


class TestChallenges:
    def test_no_proof_issues_challenge(self, gate, ledger):
        decision = gate.evaluate(None)

        assert decision.state is GateState.NO_PROOF
        challenge = decision.challenge
        assert challenge.chain == "solana"
        assert challenge.receiver == RECEIVER_SOL
        assert challenge.amount == 0.01
        assert challenge.ttl == 300
        assert challenge.tx_hint is None
        assert challenge.nonce in ledger

    def test_challenge_ttl_follows_ledger(self, clock, registry):
        """The advertised TTL is the ledger's, whatever TTL_SECONDS says."""
        ledger = InMemoryNonceLedger(ttl_seconds=45, clock=clock, start_collector=False)
        gate = make_gate(ledger, registry, receiver_sol=RECEIVER_SOL, ttl_seconds=300)

        challenge = gate.evaluate(None).challenge

        assert challenge.ttl == 45
        clock.advance(46)
        with pytest.raises(NonceExpired):
            ledger.consume_if_valid(challenge.nonce)

    def test_requested_evm_chain(self, gate):
        decision = gate.evaluate(None, requested_chain="EVM")

        assert decision.challenge.chain == "evm"
        assert decision.challenge.receiver == RECEIVER_EVM
        assert decision.challenge.amount == 0.0001
        assert decision.challenge.tx_hint == {"to": RECEIVER_EVM, "value": "0x5af3107a4000", "data": "0x"}

    def test_unknown_chain_falls_back_to_default(self, gate):
        assert gate.evaluate(None, requested_chain="dogecoin").challenge.chain == "solana"

    def test_auto_pick_prefers_solana(self, ledger, registry):
        gate = make_gate(ledger, registry, receiver_sol=RECEIVER_SOL, receiver_evm=RECEIVER_EVM)
        assert gate.default_chain() == "solana"

    def test_auto_pick_evm_when_only_evm_configured(self, ledger, registry):
        gate = make_gate(ledger, registry, receiver_evm=RECEIVER_EVM)

        assert gate.evaluate(None).challenge.chain == "evm"

    def test_missing_receiver_raises_before_issuing(self, ledger, registry):
        """A chain without a receiver is a server error and burns no nonce."""
        gate = make_gate(ledger, registry, receiver_sol=RECEIVER_SOL)

        with pytest.raises(ReceiverNotConfigured) as exc_info:
            gate.evaluate(None, requested_chain="evm")

        assert str(exc_info.value) == "RECEIVER_EVM not set"
        assert exc_info.value.chain == "evm"
        assert len(ledger) == 0

    def test_nothing_configured(self, ledger, registry):
        gate = make_gate(ledger, registry)

        with pytest.raises(ReceiverNotConfigured) as exc_info:
            gate.evaluate(None)
        assert exc_info.value.env_var == "RECEIVER_SOL"


class TestMalformedProof:
    def test_three_fields_gets_fresh_challenge(self, gate, ledger):
        decision = gate.evaluate("phantom:abc:def")

        assert decision.state is GateState.PROOF_MALFORMED
        assert decision.reason == "bad_format"
        assert decision.challenge is not None
        assert len(ledger) == 1

    def test_malformed_keeps_requested_chain(self, gate):
        decision = gate.evaluate("garbage", requested_chain="evm")

        assert decision.challenge.chain == "evm"

    def test_bad_kind(self, gate):
        decision = gate.evaluate("keplr:a:b:AAAA")

        assert decision.state is GateState.PROOF_MALFORMED
        assert decision.reason == "bad_kind"


class TestInvalidSignature:
    def test_wrong_key_gets_challenge_for_attempted_scheme(self, gate, ledger, evm_account):
        """A failed MetaMask attempt is answered with an EVM challenge."""
        nonce = gate.evaluate(None).challenge.nonce
        forged = metamask_proof(Account.create(), nonce, claimed_address=evm_account.address)

        decision = gate.evaluate(forged)

        assert decision.state is GateState.PROOF_INVALID_SIGNATURE
        assert decision.reason == "metamask_signer_mismatch"
        assert decision.challenge.chain == "evm"

    def test_requested_chain_wins_over_attempted_scheme(self, gate, solana_key):
        nonce = gate.evaluate(None).challenge.nonce
        claimed = solana_address(SigningKey.generate())
        header = format_proof("phantom", claimed, nonce, sign_phantom(solana_key, nonce))

        decision = gate.evaluate(header, requested_chain="evm")

        assert decision.state is GateState.PROOF_INVALID_SIGNATURE
        assert decision.challenge.chain == "evm"

    def test_invalid_proof_does_not_burn_nonce(self, gate, ledger, solana_key):
        """A forged proof for a victim's nonce leaves that nonce usable."""
        nonce = gate.evaluate(None).challenge.nonce
        attacker = SigningKey.generate()
        forged = format_proof("phantom", solana_address(solana_key), nonce, sign_phantom(attacker, nonce))

        assert gate.evaluate(forged).state is GateState.PROOF_INVALID_SIGNATURE
        assert gate.evaluate(phantom_proof(solana_key, nonce)).state is GateState.GRANTED


class TestNonceState:
    def test_grant(self, gate, solana_key, solana_account):
        nonce = gate.evaluate(None).challenge.nonce

        decision = gate.evaluate(phantom_proof(solana_key, nonce))

        assert decision.granted
        assert decision.verdict.who == solana_account
        assert decision.verdict.chain == "solana"

    def test_replay_rejected_without_new_challenge(self, gate, ledger, solana_key):
        nonce = gate.evaluate(None).challenge.nonce
        proof = phantom_proof(solana_key, nonce)
        assert gate.evaluate(proof).granted
        issued = len(ledger)

        decision = gate.evaluate(proof)

        assert decision.state is GateState.NONCE_INVALID
        assert decision.reason == "nonce_replayed"
        assert decision.challenge is None
        assert len(ledger) == issued

    def test_expired(self, gate, clock, evm_account):
        nonce = gate.evaluate(None, requested_chain="evm").challenge.nonce
        clock.advance(301)

        decision = gate.evaluate(metamask_proof(evm_account, nonce))

        assert decision.state is GateState.NONCE_INVALID
        assert decision.reason == "nonce_expired"

    def test_never_issued(self, gate, solana_key):
        decision = gate.evaluate(phantom_proof(solana_key, "not-a-real-nonce"))

        assert decision.state is GateState.NONCE_INVALID
        assert decision.reason == "nonce_not_found"

    def test_metamask_case_insensitive_grant(self, gate, evm_account):
        nonce = gate.evaluate(None, requested_chain="evm").challenge.nonce
        lowered = evm_account.address.lower()

        decision = gate.evaluate(metamask_proof(evm_account, nonce, claimed_address=lowered))

        assert decision.granted
        assert decision.verdict.who == evm_account.address


class TestEvmTransferHint:
    def test_converts_to_wei_hex(self):
        assert evm_transfer_hint("0xabc", 1) == {"to": "0xabc", "value": hex(10**18), "data": "0x"}

    def test_floors_sub_wei_amounts(self):
        assert evm_transfer_hint("0xabc", 1.5e-18)["value"] == "0x1"

    def test_decimal_exact(self):
        """0.0001 ETH is exactly 10^14 wei despite float representation."""
        assert int(evm_transfer_hint("0xabc", 0.0001)["value"], 16) == 10**14

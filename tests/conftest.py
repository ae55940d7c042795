import pytest
from eth_account import Account
from fastapi.testclient import TestClient
from nacl.signing import SigningKey

from x402_paygate.config import Settings
from x402_paygate.dependencies import get_payment_gate
from x402_paygate.main import app
from x402_paygate.middleware.rate_limit import limiter
from x402_paygate.services.nonce_service import InMemoryNonceLedger
from x402_paygate.services.payment_service import PaymentGate
from x402_paygate.services.signature_service import default_registry
from tests.test_utils import RECEIVER_EVM, RECEIVER_SOL, FakeClock, solana_address


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    """Ledger on the fake clock, without the background collector."""
    return InMemoryNonceLedger(ttl_seconds=300, grace_seconds=60, clock=clock, start_collector=False)


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        receiver_sol=RECEIVER_SOL,
        receiver_evm=RECEIVER_EVM,
        premium_price_sol=0.01,
        premium_price_eth=0.0001,
        ttl_seconds=300,
    )


@pytest.fixture
def gate(test_settings, ledger, registry):
    return PaymentGate.from_settings(test_settings, ledger, registry)


@pytest.fixture
def solana_key():
    return SigningKey.generate()


@pytest.fixture
def solana_account(solana_key):
    return solana_address(solana_key)


@pytest.fixture
def evm_account():
    return Account.create()


@pytest.fixture
def client(gate):
    """Test client wired to the fixture gate, with rate limiting disabled."""
    app.dependency_overrides[get_payment_gate] = lambda: gate
    limiter.enabled = False

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    limiter.enabled = True

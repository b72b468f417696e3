"""
Shared pytest fixtures for the confidential balance test suite.
"""

import pytest

from confidential_balance.config import NetworkConfig
from confidential_balance.devnet import LocalLedger
from confidential_balance.keys import DecryptionKey
from confidential_balance.orchestrator import SafeOrchestrator
from confidential_balance.prover import ReferenceProofBackend

ALICE = "0xa11ce"
BOB = "0xb0b"
TOKEN = "0x10c0"


@pytest.fixture(scope="session")
def network():
    """Local network with the default module name."""
    return NetworkConfig.for_network("local")


@pytest.fixture(scope="session")
def backend():
    """One reference backend (and worker pool) for the whole run."""
    b = ReferenceProofBackend(max_workers=2)
    yield b
    b.close()


@pytest.fixture
def ledger(network, backend):
    """Fresh in-memory ledger with Alice and Bob funded in TOKEN."""
    lg = LocalLedger(network, backend)
    lg.fund(ALICE, TOKEN, 1_000_000)
    lg.fund(BOB, TOKEN, 1_000_000)
    return lg


@pytest.fixture
def flows(ledger, network, backend):
    """Orchestrator over the fresh ledger."""
    return SafeOrchestrator(ledger, network, backend, commit_timeout=2.0)


@pytest.fixture
def alice_key():
    """Deterministic decryption key for Alice."""
    return DecryptionKey.derive(b"alice-fixture-seed-0001", 0)


@pytest.fixture
def bob_key():
    """Deterministic decryption key for Bob."""
    return DecryptionKey.derive(b"bob-fixture-seed-00001", 0)

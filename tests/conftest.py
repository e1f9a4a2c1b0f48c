"""
conftest.py - Shared pytest fixtures for transaction ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- A switchable host environment
- Empty ledgers (small and default retention limits)
"""

import pytest

from txledger import TransactionLedger

from tests.fake_env import FakeEnvironment


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def env() -> FakeEnvironment:
    """Host environment on the default network."""
    return FakeEnvironment()


@pytest.fixture
def ledger(env) -> TransactionLedger:
    """Empty ledger retaining 10 nonce groups per network."""
    return env.ledger(tx_history_limit=10)


@pytest.fixture
def default_ledger(env) -> TransactionLedger:
    """Empty ledger with the default retention limit."""
    return env.ledger()

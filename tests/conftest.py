"""
conftest.py - Shared pytest fixtures for lending platform tests

Provides common fixtures used across unit, functional and conformance tests:
- A funded reference token and a platform wired to it
- A governed platform (two governors of weight 2, threshold 3, pool 150)
- A governed platform over the scriptable FakeValueLedger
"""

import pytest
from datetime import timedelta

from microlend import FungibleToken, LendingPlatform

from tests.fake_view import FakeValueLedger, START, OWNER, ISSUER


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def token():
    """Reference token with nothing issued yet."""
    return FungibleToken("USDx", "Pool Dollar", issuer=ISSUER, verbose=False)


@pytest.fixture
def platform(token):
    """Platform over the reference token with a pool of 150 and no governors."""
    p = LendingPlatform(
        token,
        owner=OWNER,
        voting_period=timedelta(days=3),
        required_votes=3,
        initial_time=START,
        verbose=False,
    )
    token.mint(ISSUER, p.pool_wallet, 150)
    return p


@pytest.fixture
def governed(platform):
    """Platform with governors gov_a (2) and gov_b (2) and threshold 3."""
    platform.add_member(OWNER, "gov_a", 2)
    platform.add_member(OWNER, "gov_b", 2)
    return platform


@pytest.fixture
def fake_ledger():
    """Scriptable value ledger holding 150 in the pool."""
    return FakeValueLedger({"pool": 150})


@pytest.fixture
def fake_platform(fake_ledger):
    """Governed platform over FakeValueLedger."""
    p = LendingPlatform(
        fake_ledger,
        owner=OWNER,
        voting_period=timedelta(days=3),
        required_votes=3,
        initial_time=START,
        verbose=False,
    )
    p.add_member(OWNER, "gov_a", 2)
    p.add_member(OWNER, "gov_b", 2)
    return p

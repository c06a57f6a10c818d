"""
Shared pytest fixtures for the StakeFlow test suite.
"""

import pytest

from stakeflow_core.config import PoolConfig
from stakeflow_core.custody import AssetBook
from stakeflow_core.staking import StakingPool

T0 = 1_700_000_000
ASSET = "STK"
WALLET = 10_000_000_000


class FakeClock:
    """Settable clock for code paths that read the time themselves."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> float:
        return float(self.now)

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def book():
    """Asset book with funded, fully-approved accounts."""
    b = AssetBook()
    for account in ("alice", "bob", "carol", "funder"):
        b.credit(ASSET, account, WALLET)
        b.approve(ASSET, account, WALLET)
    return b


@pytest.fixture
def pool_config():
    """Default penalty schedule, 1000-second rounds for round-number math."""
    return PoolConfig(
        staking_asset=ASSET,
        owner="owner",
        reward_funder="funder",
        round_duration=1000,
    )


@pytest.fixture
def pool(pool_config, book, clock):
    return StakingPool(pool_config, custody=book, clock=clock)


@pytest.fixture
def running_pool(pool):
    """Pool with a 1,000,000-unit round running from T0 at 1000 units/s."""
    pool.charge_reward("funder", 1_000_000, now=T0)
    pool.start_round("owner", now=T0)
    return pool

"""
Tests for stakeflow_core.invariants — post-operation ledger checks.
"""

import pytest

from stakeflow_core.invariants import InvariantChecker

from conftest import T0


@pytest.fixture
def staked_pool(running_pool):
    running_pool.deposit("alice", 1000, 0, now=T0)
    running_pool.deposit("bob", 3000, 0, now=T0 + 10)
    return running_pool


def _verify(pool, now=T0 + 10, mutate=None):
    checker = InvariantChecker()
    checker.capture(pool)
    if mutate is not None:
        mutate(pool)
    return checker.verify(pool, now)


class TestInvariantChecker:
    def test_healthy_pool(self, staked_pool):
        assert _verify(staked_pool) == (True, "")

    def test_total_mismatch(self, staked_pool):
        def corrupt(p):
            p.state.total_staked += 1
        ok, msg = _verify(staked_pool, mutate=corrupt)
        assert not ok
        assert "total_staked" in msg

    def test_index_decrease(self, staked_pool):
        def corrupt(p):
            p.state.reward_per_share_stored -= 1
        ok, msg = _verify(staked_pool, mutate=corrupt)
        assert not ok
        assert "decreased" in msg

    def test_sync_time_in_future(self, staked_pool):
        ok, msg = _verify(staked_pool, now=T0)
        assert not ok
        assert "future" in msg

    def test_sync_past_round_end(self, staked_pool):
        def corrupt(p):
            p.state.last_sync_time = p.state.round_end_time + 1
        ok, _ = _verify(staked_pool, now=T0 + 5000, mutate=corrupt)
        assert not ok

    def test_sync_time_rewind(self, staked_pool):
        def corrupt(p):
            p.state.last_sync_time -= 1
        ok, msg = _verify(staked_pool, mutate=corrupt)
        assert not ok
        assert "moved backwards" in msg

    def test_counter_rewind(self, staked_pool):
        def corrupt(p):
            p.state.next_stake_id -= 1
        ok, msg = _verify(staked_pool, mutate=corrupt)
        assert not ok
        assert "counter decreased" in msg

    def test_stake_missing_from_directory(self, staked_pool):
        def corrupt(p):
            p.directory.remove("bob", 2)
        ok, msg = _verify(staked_pool, mutate=corrupt)
        assert not ok
        assert "missing" in msg

    def test_dead_stake_in_directory(self, staked_pool):
        def corrupt(p):
            p.directory.add("carol", 1)
        ok, msg = _verify(staked_pool, mutate=corrupt)
        assert not ok
        assert "dead stake" in msg

    def test_snapshot_ahead_of_index(self, staked_pool):
        def corrupt(p):
            p.stakes[1].snapshot = p.state.reward_per_share_stored + 1
        ok, msg = _verify(staked_pool, mutate=corrupt)
        assert not ok
        assert "snapshot" in msg

    def test_errors_are_joined(self, staked_pool):
        def corrupt(p):
            p.state.total_staked = 0
            p.state.round_number = 0
        ok, msg = _verify(staked_pool, mutate=corrupt)
        assert not ok
        assert msg.count(";") == 1

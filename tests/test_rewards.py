"""
Tests for stakeflow_core.rewards — the reward-per-share accumulator.
"""

import pytest

from stakeflow_core.precision import SCALE
from stakeflow_core.rewards import RewardAccumulator, RewardState
from stakeflow_core.staking import StakeRecord


@pytest.fixture
def acc():
    """1000 staked, 10 units/s, round from t=100 to t=1100."""
    return RewardAccumulator(RewardState(
        total_staked=1000,
        last_sync_time=100,
        reward_rate=10,
        round_end_time=1100,
    ))


def _stake(amount, snapshot=0, accrued=0):
    return StakeRecord(stake_id=1, owner="alice", amount=amount, duration=0,
                       end_time=0, snapshot=snapshot, accrued=accrued)


class TestRewardState:
    def test_defaults(self):
        s = RewardState()
        assert s.total_staked == 0
        assert s.reward_per_share_stored == 0
        assert s.round_end_time == 0
        assert s.round_number == 1
        assert s.next_stake_id == 1

    def test_to_dict(self):
        d = RewardState(total_staked=5).to_dict()
        assert d["total_staked"] == 5
        assert set(d) >= {"reward_rate", "pending_reward", "last_sync_time"}


class TestRewardPerShare:
    def test_zero_stake_returns_stored(self):
        a = RewardAccumulator(RewardState(reward_per_share_stored=42, reward_rate=10,
                                          round_end_time=1100, last_sync_time=100))
        assert a.reward_per_share(600) == 42

    def test_projection(self, acc):
        # 100 s × 10/s spread over 1000 units → 1 reward unit per staked unit
        assert acc.reward_per_share(200) == SCALE

    def test_capped_at_round_end(self, acc):
        assert acc.reward_per_share(1100) == 10 * SCALE
        assert acc.reward_per_share(5000) == 10 * SCALE

    def test_projection_does_not_store(self, acc):
        acc.reward_per_share(600)
        assert acc.state.reward_per_share_stored == 0
        assert acc.state.last_sync_time == 100

    def test_never_decreases(self, acc):
        values = [acc.reward_per_share(t) for t in range(100, 1300, 37)]
        assert values == sorted(values)

    def test_truncates(self):
        a = RewardAccumulator(RewardState(total_staked=3, last_sync_time=0,
                                          reward_rate=1, round_end_time=10))
        assert a.reward_per_share(1) == SCALE // 3

    def test_no_round_no_growth(self):
        a = RewardAccumulator(RewardState(total_staked=100))
        assert a.reward_per_share(10**9) == 0


class TestEarned:
    def test_earned_includes_accrued(self, acc):
        assert acc.earned(_stake(500, accrued=7), 200) == 507

    def test_snapshot_excludes_earlier_reward(self, acc):
        assert acc.earned(_stake(500, snapshot=SCALE), 200) == 0

    def test_earned_grows_with_time(self, acc):
        st = _stake(250)
        assert acc.earned(st, 300) <= acc.earned(st, 700) <= acc.earned(st, 1100)


class TestSynchronize:
    def test_updates_index_and_time(self, acc):
        stored = acc.synchronize(600)
        assert stored == 5 * SCALE
        assert acc.state.reward_per_share_stored == 5 * SCALE
        assert acc.state.last_sync_time == 600

    def test_last_sync_capped_at_round_end(self, acc):
        acc.synchronize(9999)
        assert acc.state.last_sync_time == 1100

    def test_stake_snapshot_advanced(self, acc):
        st = _stake(100)
        acc.synchronize(600, st)
        assert st.accrued == 500
        assert st.snapshot == 5 * SCALE
        # Re-syncing at the same instant changes nothing
        acc.synchronize(600, st)
        assert st.accrued == 500

    def test_idle_emission_goes_to_pending(self):
        a = RewardAccumulator(RewardState(total_staked=0, last_sync_time=100,
                                          reward_rate=10, round_end_time=1100))
        a.synchronize(600)
        assert a.state.pending_reward == 5000
        assert a.state.reward_per_share_stored == 0
        assert a.state.last_sync_time == 600

    def test_before_any_round(self):
        a = RewardAccumulator()
        a.synchronize(12345)
        assert a.state.last_sync_time == 0
        assert a.state.pending_reward == 0


class TestInjectReward:
    def test_outside_round_goes_pending(self):
        a = RewardAccumulator()
        a.inject_reward(700, 50)
        assert a.state.pending_reward == 700
        assert a.state.reward_rate == 0

    def test_after_round_end_goes_pending(self, acc):
        acc.inject_reward(700, 2000)
        assert acc.state.pending_reward == 700
        assert acc.state.reward_rate == 10

    def test_mid_round_raises_rate(self, acc):
        acc.inject_reward(1000, 600)
        # (1000 + 500 × 10) / 500
        assert acc.state.reward_rate == 12
        assert acc.state.round_end_time == 1100
        assert acc.state.last_sync_time == 600

    def test_mid_round_rate_within_truncation(self, acc):
        remaining = 500
        acc.inject_reward(7, 600)
        new_rate = acc.state.reward_rate
        total = 7 + remaining * 10
        assert new_rate * remaining <= total < (new_rate + 1) * remaining

    def test_index_synced_before_rate_change(self, acc):
        acc.inject_reward(1000, 600)
        assert acc.state.reward_per_share_stored == 5 * SCALE
        # 500 s at 12/s over 1000 units from here on
        assert acc.reward_per_share(1100) == 5 * SCALE + 6 * SCALE


class TestRoundHelpers:
    def test_round_in_progress(self, acc):
        assert acc.round_in_progress(100)
        assert acc.round_in_progress(1099)
        assert not acc.round_in_progress(1100)

    def test_never_started(self):
        assert not RewardAccumulator().round_in_progress(0)

    def test_remaining_emission(self, acc):
        assert acc.remaining_emission(600) == 5000
        assert acc.remaining_emission(1100) == 0

"""
Reward-per-share accumulator for StakeFlow.

Rewards are emitted at ``reward_rate`` units per second during a round
and shared pro rata by stake weight.  Instead of crediting every stake
on every tick, a single global index tracks the cumulative reward per
staked unit (fixed point, ``SCALE``):

    rps(now) = stored + (min(now, round_end) − last_sync) × rate × SCALE / total_staked

A stake remembers the index value at which it was last synchronized
(its *snapshot*), so its reward to date is:

    earned = amount × (rps(now) − snapshot) / SCALE + accrued

``synchronize`` must run before anything changes ``total_staked`` or
``reward_rate`` and again for the stake whose weight changed, so every
snapshot reflects the index at the exact moment the weight changed.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Optional

from stakeflow_core.precision import SCALE

if TYPE_CHECKING:
    from stakeflow_core.staking import StakeRecord

logger = logging.getLogger("stakeflow.rewards")


@dataclass
class RewardState:
    """
    Global ledger state, one instance per pool.

    ``round_end_time == 0`` means no round was ever started.
    """
    total_staked: int = 0
    reward_per_share_stored: int = 0
    last_sync_time: int = 0
    reward_rate: int = 0
    round_end_time: int = 0
    pending_reward: int = 0
    round_number: int = 1
    next_stake_id: int = 1

    def to_dict(self) -> dict:
        return asdict(self)


class RewardAccumulator:
    """Owns the global index and the emission rate."""

    def __init__(self, state: Optional[RewardState] = None) -> None:
        self.state = state if state is not None else RewardState()

    # ── projections (read-only) ─────────────────────────────────────

    def round_in_progress(self, now: int) -> bool:
        end = self.state.round_end_time
        return end > 0 and now < end

    def applicable_time(self, now: int) -> int:
        """Latest instant emission applies to: ``min(now, round_end_time)``."""
        return min(now, self.state.round_end_time)

    def _elapsed(self, now: int) -> int:
        return max(0, self.applicable_time(now) - self.state.last_sync_time)

    def reward_per_share(self, now: int) -> int:
        s = self.state
        if s.total_staked == 0:
            return s.reward_per_share_stored
        return s.reward_per_share_stored + (
            self._elapsed(now) * s.reward_rate * SCALE // s.total_staked
        )

    def earned(self, stake: StakeRecord, now: int) -> int:
        """Reward accrued by *stake* up to *now*, paid or not yet synchronized."""
        delta = self.reward_per_share(now) - stake.snapshot
        return stake.amount * delta // SCALE + stake.accrued

    # ── mutations ───────────────────────────────────────────────────

    def synchronize(self, now: int, stake: Optional[StakeRecord] = None) -> int:
        """
        Fold elapsed emission into the stored index.

        Emission that elapses while nothing is staked cannot be
        credited to any share; it is moved to ``pending_reward`` so it
        funds the next round.  When *stake* is given, its accrued reward
        is brought up to date and its snapshot advanced.  Returns the
        new stored index.
        """
        s = self.state
        if s.total_staked == 0:
            idle = self._elapsed(now) * s.reward_rate
            if idle:
                s.pending_reward += idle
                logger.debug("Idle emission of %d moved to pending reward", idle)
        else:
            s.reward_per_share_stored = self.reward_per_share(now)
        s.last_sync_time = self.applicable_time(now)

        if stake is not None:
            stake.accrued = self.earned(stake, now)
            stake.snapshot = s.reward_per_share_stored
        return s.reward_per_share_stored

    def inject_reward(self, amount: int, now: int) -> None:
        """
        Add *amount* of fresh reward.

        Outside a round it waits in ``pending_reward``.  Inside a round
        it is folded linearly into the remaining schedule: the round
        keeps its end time and pays out faster.
        """
        self.synchronize(now)
        s = self.state
        if not self.round_in_progress(now):
            s.pending_reward += amount
            return
        remaining = s.round_end_time - now
        s.reward_rate = (amount + remaining * s.reward_rate) // remaining
        s.last_sync_time = now

    def remaining_emission(self, now: int) -> int:
        """Reward still scheduled for the current round (0 outside a round)."""
        if not self.round_in_progress(now):
            return 0
        return (self.state.round_end_time - now) * self.state.reward_rate

"""
Distribution rounds for StakeFlow.

A round is a fixed-length period (``ROUND_DURATION``) with a constant
emission rate.  Rounds never roll over on their own: an operator calls
``start_round`` once the previous one has ended, and the reward
accumulated in ``pending_reward`` since then becomes the new round's
budget.

    rate = pending_reward // round_duration

The remainder of that division (< round_duration units) is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from stakeflow_core.errors import InvalidInput, RoundActive
from stakeflow_core.precision import days
from stakeflow_core.rewards import RewardAccumulator

logger = logging.getLogger("stakeflow.rounds")

ROUND_DURATION: int = days(365)


@dataclass(frozen=True)
class RoundInfo:
    """Point-in-time view of the round schedule."""
    round_number: int
    end_time: int
    reward_rate: int
    pending_reward: int
    active: bool
    remaining: int

    def to_dict(self) -> dict:
        return {
            "round_number": self.round_number,
            "end_time": self.end_time,
            "reward_rate": self.reward_rate,
            "pending_reward": self.pending_reward,
            "active": self.active,
            "remaining": self.remaining,
        }


class RoundController:
    """Starts rounds and reports on the current one."""

    def __init__(
        self,
        accumulator: RewardAccumulator,
        round_duration: int = ROUND_DURATION,
    ) -> None:
        if round_duration <= 0:
            raise InvalidInput("round_duration must be positive")
        self.accumulator = accumulator
        self.round_duration = round_duration

    def start_round(self, now: int) -> RoundInfo:
        acc = self.accumulator
        if acc.round_in_progress(now):
            raise RoundActive(
                f"Round {acc.state.round_number} ends at {acc.state.round_end_time}"
            )
        acc.synchronize(now)

        s = acc.state
        budget = s.pending_reward
        s.reward_rate = budget // self.round_duration
        s.pending_reward = 0
        s.round_end_time = now + self.round_duration
        s.last_sync_time = now
        s.round_number += 1
        logger.info(
            "Round %d started: budget=%d rate=%d/s ends=%d",
            s.round_number, budget, s.reward_rate, s.round_end_time,
        )
        return self.round_info(now)

    def round_info(self, now: int) -> RoundInfo:
        acc = self.accumulator
        s = acc.state
        active = acc.round_in_progress(now)
        return RoundInfo(
            round_number=s.round_number,
            end_time=s.round_end_time,
            reward_rate=s.reward_rate,
            pending_reward=s.pending_reward,
            active=active,
            remaining=s.round_end_time - now if active else 0,
        )

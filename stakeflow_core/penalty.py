"""
Withdrawal penalty schedule for StakeFlow.

A stake may be withdrawn at any time.  What it pays out depends on when:

Early withdrawal (now < end_time)
─────────────────────────────────
  real_amount   = amount + accrued
  staked_for    = now + duration − end_time        (time since opening)
  penalty_window = max(ceil(duration / 2), EARLY_GRACE)

  staked_for == 0  or  penalty_window ≥ staked_for  →  penalty = real_amount
  otherwise                                          →  penalty = real_amount × window / staked_for

On-time / late withdrawal (now ≥ end_time)
──────────────────────────────────────────
  now ≤ end_time + LATE_GRACE   →  penalty = 0
  otherwise                     →  penalty = real_amount × (now − end_time − LATE_GRACE) / LATE_SCALE

The penalty is clamped to ``real_amount``.  Forfeited units are not
burned: the ledger feeds them back into the reward pool.

All arithmetic is integer with truncating division.
"""

from __future__ import annotations

from dataclasses import dataclass

from stakeflow_core.errors import InvalidInput
from stakeflow_core.precision import days, is_uint

# ── Schedule constants (seconds) ───────────────────────────────────────

EARLY_GRACE: int = days(90)
LATE_GRACE: int = days(14)
LATE_SCALE: int = days(700)

KIND_EARLY = "early"
KIND_GRACE = "grace"
KIND_LATE = "late"


@dataclass(frozen=True)
class PenaltyQuote:
    """Outcome of applying the schedule to one stake at one instant."""
    payout: int
    penalty: int
    kind: str           # "early", "grace" or "late"
    staked_for: int

    @property
    def real_amount(self) -> int:
        return self.payout + self.penalty

    def to_dict(self) -> dict:
        return {
            "payout": self.payout,
            "penalty": self.penalty,
            "kind": self.kind,
            "staked_for": self.staked_for,
        }


def penalty_window(duration: int, early_grace: int = EARLY_GRACE) -> int:
    """Early-penalty window: half the lock (rounded up), at least ``early_grace``."""
    return max((duration + 1) // 2, early_grace)


def compute_penalty(
    amount: int,
    accrued: int,
    duration: int,
    end_time: int,
    now: int,
    *,
    early_grace: int = EARLY_GRACE,
    late_grace: int = LATE_GRACE,
    late_scale: int = LATE_SCALE,
) -> PenaltyQuote:
    """
    Apply the penalty schedule.

    Returns a :class:`PenaltyQuote`; ``quote.penalty`` is what the
    ledger recycles and ``quote.payout`` is what the staker receives.
    """
    for name, value in (
        ("amount", amount), ("accrued", accrued), ("duration", duration),
        ("end_time", end_time), ("now", now),
        ("early_grace", early_grace), ("late_grace", late_grace),
    ):
        if not is_uint(value):
            raise InvalidInput(f"{name} must be a non-negative integer")
    if not is_uint(late_scale) or late_scale == 0:
        raise InvalidInput("late_scale must be a positive integer")
    if duration > end_time:
        raise InvalidInput("end_time must not precede the stake's opening")

    real_amount = amount + accrued
    staked_for = now + duration - end_time
    if staked_for < 0:
        raise InvalidInput("now precedes the stake's opening")

    if now < end_time:
        kind = KIND_EARLY
        window = penalty_window(duration, early_grace)
        if staked_for == 0 or window >= staked_for:
            penalty = real_amount
        else:
            penalty = real_amount * window // staked_for
    elif now > end_time + late_grace:
        kind = KIND_LATE
        penalty = real_amount * (now - end_time - late_grace) // late_scale
    else:
        kind = KIND_GRACE
        penalty = 0

    if penalty > real_amount:
        penalty = real_amount
        payout = 0
    else:
        payout = real_amount - penalty

    return PenaltyQuote(payout=payout, penalty=penalty, kind=kind, staked_for=staked_for)

"""
Time-locked staking with pro-rata round rewards for StakeFlow.

Participants deposit the staking asset for a duration of their choice.
Each deposit is a separate stake with its own id.  While a round is
running, its reward budget is emitted at a constant rate and shared by
stake weight (see ``rewards``).  A stake can be withdrawn at any time;
what it pays out (principal plus earned reward) is reduced by the
penalty schedule in ``penalty``, and every forfeited unit is injected
back into the reward pool for the stakers who remain.

Operation flow
──────────────
  1. synchronize the global index to ``now``
  2. apply the operation's own effect
  3. synchronize the affected stake's snapshot
  4. verify ledger invariants
  5. move assets through custody (last step)

Every mutating operation is serialized by the reentrancy guard and is
atomic: if any step raises, the pool is restored to its exact prior
state and no event is published.
"""

from __future__ import annotations

import contextlib
import copy
import dataclasses
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Optional

from stakeflow_core.access import NULL_ACCOUNT, AccessControl, PauseSwitch, ReentrancyGuard
from stakeflow_core.config import PoolConfig
from stakeflow_core.custody import AssetBook
from stakeflow_core.directory import StakeDirectory
from stakeflow_core.errors import (
    ForbiddenAsset,
    InvalidInput,
    InvariantViolation,
    StakeNotFound,
    StakingError,
    Unauthorized,
    ZeroAmount,
)
from stakeflow_core.events import EventJournal, EventKind
from stakeflow_core.invariants import InvariantChecker
from stakeflow_core.penalty import KIND_EARLY, KIND_GRACE, PenaltyQuote, compute_penalty
from stakeflow_core.precision import is_uint
from stakeflow_core.rewards import RewardAccumulator, RewardState
from stakeflow_core.rounds import RoundController, RoundInfo

logger = logging.getLogger("stakeflow.staking")

# Stake id 0 is never allocated; it means "no stake".
NO_STAKE: int = 0


# ── StakeRecord ─────────────────────────────────────────────────────────

@dataclass
class StakeRecord:
    """
    One deposit.

    ``snapshot`` is the reward-per-share index at the stake's last
    synchronization and ``accrued`` the reward earned up to then.
    """
    stake_id: int
    owner: str
    amount: int
    duration: int
    end_time: int
    snapshot: int = 0
    accrued: int = 0

    @property
    def start_time(self) -> int:
        return self.end_time - self.duration

    def to_dict(self) -> dict:
        return {
            "stake_id": self.stake_id,
            "owner": self.owner,
            "amount": self.amount,
            "duration": self.duration,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "snapshot": self.snapshot,
            "accrued": self.accrued,
        }


# ── atomic sections ─────────────────────────────────────────────────────

class _Transaction:
    """Undo log and deferred custody transfers for one pool operation."""

    def __init__(self, pool: StakingPool) -> None:
        self._pool = pool
        self._state = dataclasses.replace(pool.state)
        self._roles = (pool.access.owner, pool.access.reward_funder)
        self._paused = pool.pause_switch.paused
        self.now = 0
        self._records: dict[int, Optional[StakeRecord]] = {}
        self.transfers: list[Callable[[], None]] = []

    def touch(self, stake_id: int) -> None:
        """Remember *stake_id*'s current record before it is changed."""
        if stake_id not in self._records:
            rec = self._pool.stakes.get(stake_id)
            self._records[stake_id] = copy.copy(rec) if rec is not None else None

    def transfer_in(self, asset: str, from_account: str, amount: int) -> None:
        book = self._pool.custody
        self.transfers.append(lambda: book.transfer_in(asset, from_account, amount))

    def transfer_out(self, asset: str, to_account: str, amount: int) -> None:
        book = self._pool.custody
        self.transfers.append(lambda: book.transfer_out(asset, to_account, amount))

    def rollback(self) -> None:
        pool = self._pool
        for f in dataclasses.fields(RewardState):
            setattr(pool.state, f.name, getattr(self._state, f.name))
        pool.access.owner, pool.access.reward_funder = self._roles
        pool.pause_switch.paused = self._paused
        for sid, saved in self._records.items():
            current = pool.stakes.pop(sid, None)
            if current is not None:
                pool.directory.remove(current.owner, sid)
            if saved is not None:
                pool.stakes[sid] = saved
                pool.directory.add(saved.owner, sid)


# ── StakingPool ─────────────────────────────────────────────────────────

class StakingPool:
    """
    The staking ledger: one instance per pool, created explicitly.

    Mutating entry points:
      ``deposit()``            — open a stake
      ``withdraw()``           — close a stake, pay out net of penalty
      ``charge_reward()``      — reward funder tops up the pool
      ``start_round()``        — owner starts the next distribution round
      ``set_reward_funder()``, ``transfer_ownership()``,
      ``pause()`` / ``unpause()``, ``recover_foreign_asset()``
    """

    def __init__(
        self,
        config: Optional[PoolConfig] = None,
        custody: Optional[AssetBook] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config if config is not None else PoolConfig()
        cfg = self.config
        if not cfg.staking_asset:
            raise InvalidInput("staking_asset must be set")
        if not is_uint(cfg.late_scale) or cfg.late_scale == 0:
            raise InvalidInput("late_scale must be a positive integer")

        self.staking_asset = cfg.staking_asset
        self.custody = custody if custody is not None else AssetBook(cfg.custody_account)
        self.access = AccessControl(cfg.owner, cfg.reward_funder)
        self.pause_switch = PauseSwitch()
        self.directory = StakeDirectory()
        self.events = EventJournal()
        self.stakes: dict[int, StakeRecord] = {}

        self.accumulator = RewardAccumulator(RewardState())
        self.rounds = RoundController(self.accumulator, cfg.round_duration)
        self._guard = ReentrancyGuard()
        self._checker = InvariantChecker() if cfg.check_invariants else None
        self._clock = clock

    @property
    def state(self) -> RewardState:
        return self.accumulator.state

    # ── plumbing ────────────────────────────────────────────────────

    def _now(self, now: Optional[int], mutating: bool = True) -> int:
        if now is None:
            now = int(self._clock())
        if not is_uint(now):
            raise InvalidInput("now must be a non-negative integer")
        if mutating and now < self.state.last_sync_time:
            raise InvalidInput(
                f"Clock moved backwards: {now} < last sync {self.state.last_sync_time}"
            )
        return now

    @contextlib.contextmanager
    def _operation(self, name: str, now: Optional[int]) -> Iterator[_Transaction]:
        # Time is resolved under the lock; a stale timestamp must not rewind last_sync_time.
        with self._guard.enter(name):
            txn = _Transaction(self)
            if self._checker is not None:
                self._checker.capture(self)
            try:
                txn.now = self._now(now)
                yield txn
                if self._checker is not None:
                    ok, msg = self._checker.verify(self, txn.now)
                    if not ok:
                        raise InvariantViolation(msg)
                for transfer in txn.transfers:
                    transfer()
            except InvariantViolation as exc:
                txn.rollback()
                self.events.discard()
                logger.error("%s rolled back: %s", name, exc, extra={"operation": name})
                raise
            except StakingError as exc:
                txn.rollback()
                self.events.discard()
                logger.warning("%s rejected: %s", name, exc, extra={"operation": name})
                raise
            except Exception:
                txn.rollback()
                self.events.discard()
                logger.exception("%s failed unexpectedly; state restored", name, extra={"operation": name})
                raise
            self.events.commit()

    @staticmethod
    def _check_caller(caller: str) -> None:
        if not isinstance(caller, str) or caller == NULL_ACCOUNT:
            raise InvalidInput("caller must be a non-null account")

    @staticmethod
    def _check_amount(amount: int, name: str = "amount") -> None:
        if not is_uint(amount):
            raise InvalidInput(f"{name} must be a non-negative integer")
        if amount == 0:
            raise ZeroAmount(f"{name} must be positive")

    def _quote(self, rec: StakeRecord, accrued: int, now: int) -> PenaltyQuote:
        cfg = self.config
        return compute_penalty(
            rec.amount, accrued, rec.duration, rec.end_time, now,
            early_grace=cfg.early_grace,
            late_grace=cfg.late_grace,
            late_scale=cfg.late_scale,
        )

    # ── stake ledger ────────────────────────────────────────────────

    def deposit(self, caller: str, amount: int, duration: int, now: Optional[int] = None) -> int:
        """
        Lock *amount* for *duration* seconds.  Returns the new stake id.

        ``total_staked`` is raised before the stake's snapshot is taken,
        so the new stake starts earning from this instant only.
        """
        self._check_caller(caller)
        self._check_amount(amount)
        if not is_uint(duration):
            raise InvalidInput("duration must be a non-negative integer")

        with self._operation("deposit", now) as txn:
            now = txn.now
            self.pause_switch.require_not_paused()
            acc = self.accumulator
            acc.synchronize(now)
            self.state.total_staked += amount

            stake_id = self.state.next_stake_id
            self.state.next_stake_id += 1
            txn.touch(stake_id)
            rec = StakeRecord(
                stake_id=stake_id,
                owner=caller,
                amount=amount,
                duration=duration,
                end_time=now + duration,
                snapshot=acc.reward_per_share(now),
            )
            self.stakes[stake_id] = rec
            self.directory.add(caller, stake_id)
            acc.synchronize(now, rec)

            self.events.stage(
                EventKind.STAKED, now,
                stake_id=stake_id, owner=caller, amount=amount,
                duration=duration, end_time=rec.end_time,
            )
            txn.transfer_in(self.staking_asset, caller, amount)

        logger.info(
            "Stake %d opened by %s: amount=%d duration=%ds", stake_id, caller, amount, duration,
            extra={"operation": "deposit", "stake_id": stake_id, "owner": caller, "amount": amount},
        )
        return stake_id

    def withdraw(self, caller: str, stake_id: int, now: Optional[int] = None) -> int:
        """
        Close *stake_id* and pay out principal plus reward, net of penalty.

        Never fails for timing reasons.  The penalty is recycled into
        the reward pool and the record is deleted whatever the payout.
        """
        with self._operation("withdraw", now) as txn:
            now = txn.now
            rec = self.stakes.get(stake_id)
            if rec is None or rec.owner != caller:
                raise Unauthorized(f"{caller or '<null>'} does not own stake {stake_id}")
            txn.touch(stake_id)

            acc = self.accumulator
            acc.synchronize(now, rec)
            self.state.total_staked -= rec.amount

            quote = self._quote(rec, rec.accrued, now)
            if quote.penalty:
                acc.inject_reward(quote.penalty, now)
                self.events.stage(
                    EventKind.REWARD_INJECTED, now,
                    stake_id=stake_id, amount=quote.penalty, source="penalty",
                )

            self.directory.remove(rec.owner, stake_id)
            del self.stakes[stake_id]

            self.events.stage(
                EventKind.UNSTAKED, now,
                stake_id=stake_id, owner=caller, amount=rec.amount,
                reward=rec.accrued, penalty=quote.penalty, payout=quote.payout,
                kind=quote.kind,
            )
            if quote.payout:
                txn.transfer_out(self.staking_asset, caller, quote.payout)

        logger.info(
            "Stake %d closed by %s: payout=%d penalty=%d (%s)",
            stake_id, caller, quote.payout, quote.penalty, quote.kind,
            extra={"operation": "withdraw", "stake_id": stake_id, "owner": caller, "amount": quote.payout},
        )
        return quote.payout

    # ── rewards & rounds ────────────────────────────────────────────

    def charge_reward(self, caller: str, amount: int, now: Optional[int] = None) -> None:
        """Reward funder adds *amount* to the pool (pending, or the running round)."""
        self._check_amount(amount)
        with self._operation("charge_reward", now) as txn:
            now = txn.now
            self.access.require_funder(caller)
            in_round = self.accumulator.round_in_progress(now)
            self.accumulator.inject_reward(amount, now)
            self.events.stage(
                EventKind.REWARD_CHARGED, now,
                funder=caller, amount=amount, in_round=in_round,
                reward_rate=self.state.reward_rate,
            )
            txn.transfer_in(self.staking_asset, caller, amount)

        logger.info(
            "Reward charged by %s: %d (rate now %d/s)", caller, amount, self.state.reward_rate,
            extra={"operation": "charge_reward", "amount": amount},
        )

    def start_round(self, caller: str, now: Optional[int] = None) -> RoundInfo:
        with self._operation("start_round", now) as txn:
            now = txn.now
            self.access.require_owner(caller)
            info = self.rounds.start_round(now)
            self.events.stage(
                EventKind.ROUND_STARTED, now,
                round_number=info.round_number, end_time=info.end_time,
                reward_rate=info.reward_rate,
            )
        return info

    # ── administration ──────────────────────────────────────────────

    def set_reward_funder(self, caller: str, new_funder: str, now: Optional[int] = None) -> None:
        with self._operation("set_reward_funder", now) as txn:
            now = txn.now
            self.access.require_owner(caller)
            previous = self.access.set_reward_funder(new_funder)
            self.events.stage(
                EventKind.REWARD_FUNDER_CHANGED, now,
                previous=previous, funder=new_funder,
            )
        logger.info("Reward funder changed: %s -> %s", previous or "<none>", new_funder)

    def transfer_ownership(self, caller: str, new_owner: str, now: Optional[int] = None) -> None:
        with self._operation("transfer_ownership", now) as txn:
            now = txn.now
            self.access.require_owner(caller)
            previous = self.access.transfer_ownership(new_owner)
            self.events.stage(
                EventKind.OWNERSHIP_TRANSFERRED, now,
                previous=previous, owner=new_owner,
            )
        logger.info("Ownership transferred: %s -> %s", previous, new_owner)

    def pause(self, caller: str, now: Optional[int] = None) -> None:
        with self._operation("pause", now) as txn:
            now = txn.now
            self.access.require_owner(caller)
            self.pause_switch.pause()
            self.events.stage(EventKind.PAUSED, now, by=caller)
        logger.info("Deposits paused by %s", caller)

    def unpause(self, caller: str, now: Optional[int] = None) -> None:
        with self._operation("unpause", now) as txn:
            now = txn.now
            self.access.require_owner(caller)
            self.pause_switch.unpause()
            self.events.stage(EventKind.UNPAUSED, now, by=caller)
        logger.info("Deposits unpaused by %s", caller)

    def recover_foreign_asset(
        self, caller: str, asset_id: str, amount: int, now: Optional[int] = None,
    ) -> None:
        """Send *amount* of a non-staking asset held in custody to the owner."""
        with self._operation("recover_foreign_asset", now) as txn:
            now = txn.now
            self.access.require_owner(caller)
            if asset_id == self.staking_asset:
                raise ForbiddenAsset(f"{asset_id} is the staking asset")
            self._check_amount(amount)
            self.events.stage(
                EventKind.FOREIGN_ASSET_RECOVERED, now,
                asset=asset_id, amount=amount, to=self.access.owner,
            )
            txn.transfer_out(asset_id, self.access.owner, amount)
        logger.info(
            "Recovered %d %s to %s", amount, asset_id, caller,
            extra={"operation": "recover_foreign_asset", "amount": amount},
        )

    # ── queries ─────────────────────────────────────────────────────

    @property
    def total_staked(self) -> int:
        return self.state.total_staked

    @property
    def reward_rate(self) -> int:
        return self.state.reward_rate

    def reward_per_share(self, now: Optional[int] = None) -> int:
        now = self._now(now, mutating=False)
        with self._guard.shared():
            return self.accumulator.reward_per_share(now)

    def is_round_active(self, now: Optional[int] = None) -> bool:
        now = self._now(now, mutating=False)
        return self.accumulator.round_in_progress(now)

    def round_info(self, now: Optional[int] = None) -> RoundInfo:
        now = self._now(now, mutating=False)
        with self._guard.shared():
            return self.rounds.round_info(now)

    def get_stake(self, stake_id: int) -> StakeRecord:
        rec = self.stakes.get(stake_id)
        if rec is None:
            raise StakeNotFound(f"Stake {stake_id} not found")
        return rec

    def earned(self, stake_id: int, now: Optional[int] = None) -> int:
        now = self._now(now, mutating=False)
        with self._guard.shared():
            return self.accumulator.earned(self.get_stake(stake_id), now)

    def preview_withdraw(self, stake_id: int, now: Optional[int] = None) -> PenaltyQuote:
        """What ``withdraw`` would pay out at *now*, without changing anything."""
        now = self._now(now, mutating=False)
        with self._guard.shared():
            rec = self.get_stake(stake_id)
            return self._quote(rec, self.accumulator.earned(rec, now), now)

    def stakes_of(self, account: str) -> list[int]:
        with self._guard.shared():
            return self.directory.ids_for(account)

    def stake_info(self, stake_id: int, now: Optional[int] = None) -> dict:
        """Stake detail plus reward to date and the current withdrawal quote."""
        now = self._now(now, mutating=False)
        with self._guard.shared():
            rec = self.get_stake(stake_id)
            earned = self.accumulator.earned(rec, now)
            quote = self._quote(rec, earned, now)
            info = rec.to_dict()
            if quote.kind == KIND_EARLY:
                status = "Locked"
            elif quote.kind == KIND_GRACE:
                status = "Unlocked"
            else:
                status = "Overdue"
            info.update({
                "earned": earned,
                "status": status,
                "withdraw_quote": quote.to_dict(),
            })
            return info

    def get_pool_summary(self, now: Optional[int] = None) -> dict:
        now = self._now(now, mutating=False)
        with self._guard.shared():
            s = self.state
            return {
                "staking_asset": self.staking_asset,
                "total_staked": s.total_staked,
                "open_stakes": len(self.stakes),
                "stakers": len(self.directory.owners()),
                "reward_per_share": self.accumulator.reward_per_share(now),
                "reward_rate": s.reward_rate,
                "pending_reward": s.pending_reward,
                "remaining_emission": self.accumulator.remaining_emission(now),
                "custody_balance": self.custody.custody_balance(self.staking_asset),
                "round": self.rounds.round_info(now).to_dict(),
                "paused": self.pause_switch.paused,
                **self.access.to_dict(),
            }

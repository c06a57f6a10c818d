"""
Post-operation invariant checks for StakeFlow.

Checked after every mutating pool operation:
  - Sum of live stake amounts equals ``total_staked``
  - The reward-per-share index never decreases
  - ``last_sync_time`` never moves backwards
  - ``last_sync_time`` never exceeds the current time
  - ``last_sync_time`` never exceeds ``round_end_time`` once a round started
  - Round and stake-id counters never decrease
  - Every live stake id is below ``next_stake_id``
  - Every live stake is indexed under its owner, and nothing else is
  - No stake snapshot is ahead of the stored index

If any invariant fails, the operation is rolled back and rejected.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class LedgerSnapshot:
    """Key pool fields captured before an operation."""
    reward_per_share_stored: int = 0
    round_number: int = 1
    next_stake_id: int = 1
    total_staked: int = 0
    last_sync_time: int = 0


class InvariantChecker:
    """
    Captures a pre-operation snapshot of the pool and validates
    invariants after the operation is applied.
    """

    def __init__(self):
        self._snapshot: LedgerSnapshot | None = None

    def capture(self, pool) -> None:
        s = pool.state
        self._snapshot = LedgerSnapshot(
            reward_per_share_stored=s.reward_per_share_stored,
            round_number=s.round_number,
            next_stake_id=s.next_stake_id,
            total_staked=s.total_staked,
            last_sync_time=s.last_sync_time,
        )

    def verify(self, pool, now: int) -> tuple[bool, str]:
        """
        Verify all invariants against the current pool state.
        Returns (passed, error_message).
        """
        errors: list[str] = []
        for check in (
            self._check_total_staked,
            self._check_index_monotonic,
            self._check_sync_time,
            self._check_counters,
            self._check_directory,
            self._check_snapshots,
        ):
            ok, msg = check(pool, now)
            if not ok:
                errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_total_staked(self, pool, now: int) -> tuple[bool, str]:
        live = sum(r.amount for r in pool.stakes.values())
        if live != pool.state.total_staked:
            return False, f"total_staked {pool.state.total_staked} != sum of stakes {live}"
        return True, ""

    def _check_index_monotonic(self, pool, now: int) -> tuple[bool, str]:
        snap = self._snapshot
        if snap is None:
            return True, ""
        if pool.state.reward_per_share_stored < snap.reward_per_share_stored:
            return (False,
                    f"Reward index decreased: {snap.reward_per_share_stored} -> "
                    f"{pool.state.reward_per_share_stored}")
        return True, ""

    def _check_sync_time(self, pool, now: int) -> tuple[bool, str]:
        s = pool.state
        snap = self._snapshot
        if snap is not None and s.last_sync_time < snap.last_sync_time:
            return (False,
                    f"last_sync_time moved backwards: {snap.last_sync_time} -> "
                    f"{s.last_sync_time}")
        if s.last_sync_time > now:
            return False, f"last_sync_time {s.last_sync_time} is in the future ({now})"
        if s.round_end_time > 0 and s.last_sync_time > s.round_end_time:
            return (False,
                    f"last_sync_time {s.last_sync_time} past round end {s.round_end_time}")
        return True, ""

    def _check_counters(self, pool, now: int) -> tuple[bool, str]:
        s = pool.state
        snap = self._snapshot
        if snap is not None:
            if s.round_number < snap.round_number:
                return False, f"Round counter decreased: {snap.round_number} -> {s.round_number}"
            if s.next_stake_id < snap.next_stake_id:
                return False, f"Stake id counter decreased: {snap.next_stake_id} -> {s.next_stake_id}"
        for sid in pool.stakes:
            if not 1 <= sid < s.next_stake_id:
                return False, f"Stake id {sid} outside allocated range"
        return True, ""

    def _check_directory(self, pool, now: int) -> tuple[bool, str]:
        indexed = 0
        for sid, rec in pool.stakes.items():
            if not pool.directory.contains(rec.owner, sid):
                return False, f"Stake {sid} missing from {rec.owner}'s directory"
        for owner in pool.directory.owners():
            for sid in pool.directory.ids_for(owner):
                indexed += 1
                rec = pool.stakes.get(sid)
                if rec is None or rec.owner != owner:
                    return False, f"Directory of {owner} lists dead stake {sid}"
        if indexed != len(pool.stakes):
            return False, f"Directory holds {indexed} ids for {len(pool.stakes)} stakes"
        return True, ""

    def _check_snapshots(self, pool, now: int) -> tuple[bool, str]:
        stored = pool.state.reward_per_share_stored
        for sid, rec in pool.stakes.items():
            if rec.snapshot > stored:
                return False, f"Stake {sid} snapshot {rec.snapshot} ahead of index {stored}"
        return True, ""

"""
Per-account stake directories for StakeFlow.

Each account holding open stakes has an ordered set of its stake ids,
in creation order.  An account's stakes can be listed without scanning
the whole ledger, and the account is dropped once its last stake is
withdrawn.
"""

from __future__ import annotations


class StakeDirectory:
    """Account → open stake ids, for every account in the pool."""

    def __init__(self):
        # Dict keys as an insertion-ordered set.
        self._by_owner: dict[str, dict[int, None]] = {}

    def add(self, owner: str, stake_id: int) -> bool:
        """Index *stake_id* under *owner*; returns False if it already was."""
        ids = self._by_owner.setdefault(owner, {})
        if stake_id in ids:
            return False
        ids[stake_id] = None
        return True

    def remove(self, owner: str, stake_id: int) -> bool:
        ids = self._by_owner.get(owner)
        if ids is None or stake_id not in ids:
            return False
        del ids[stake_id]
        if not ids:
            del self._by_owner[owner]
        return True

    def contains(self, owner: str, stake_id: int) -> bool:
        return stake_id in self._by_owner.get(owner, ())

    def ids_for(self, owner: str) -> list[int]:
        return list(self._by_owner.get(owner, ()))

    def count_for(self, owner: str) -> int:
        return len(self._by_owner.get(owner, ()))

    def owners(self) -> list[str]:
        return sorted(self._by_owner)

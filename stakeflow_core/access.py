"""
Access control and call guards for StakeFlow.

  - ``AccessControl``  — the pool owner and the reward-funder role
  - ``PauseSwitch``    — owner-controlled switch that blocks new deposits
  - ``ReentrancyGuard`` — serializes mutating calls and rejects re-entry

Roles are explicit values held by the pool, not ambient identity.
"""

from __future__ import annotations

import contextlib
import threading
from collections.abc import Iterator

from stakeflow_core.errors import InvalidInput, Paused, ReentrantCall, Unauthorized

# The null account.  No caller can ever hold a role under this name.
NULL_ACCOUNT: str = ""


class AccessControl:
    """Owner and reward-funder identities."""

    def __init__(self, owner: str, reward_funder: str = NULL_ACCOUNT) -> None:
        if owner == NULL_ACCOUNT:
            raise InvalidInput("owner must not be the null account")
        self.owner = owner
        self.reward_funder = reward_funder

    def is_owner(self, caller: str) -> bool:
        return caller != NULL_ACCOUNT and caller == self.owner

    def is_funder(self, caller: str) -> bool:
        return caller != NULL_ACCOUNT and caller == self.reward_funder

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise Unauthorized(f"{caller or '<null>'} is not the pool owner")

    def require_funder(self, caller: str) -> None:
        if not self.is_funder(caller):
            raise Unauthorized(f"{caller or '<null>'} is not the reward funder")

    def set_reward_funder(self, new_funder: str) -> str:
        """Replace the funder; returns the previous one."""
        if new_funder == NULL_ACCOUNT:
            raise InvalidInput("reward funder must not be the null account")
        previous, self.reward_funder = self.reward_funder, new_funder
        return previous

    def transfer_ownership(self, new_owner: str) -> str:
        """Replace the owner; returns the previous one."""
        if new_owner == NULL_ACCOUNT:
            raise InvalidInput("owner must not be the null account")
        previous, self.owner = self.owner, new_owner
        return previous

    def to_dict(self) -> dict:
        return {"owner": self.owner, "reward_funder": self.reward_funder}


class PauseSwitch:
    """Blocks new deposits while set."""

    def __init__(self, paused: bool = False) -> None:
        self.paused = paused

    def pause(self) -> None:
        self.paused = True

    def unpause(self) -> None:
        self.paused = False

    def require_not_paused(self) -> None:
        if self.paused:
            raise Paused("Deposits are paused")


class ReentrancyGuard:
    """
    One mutating call at a time.

    Calls from other threads wait on the lock; a call from the thread
    that is already inside a guarded section raises ``ReentrantCall``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holder: int | None = None

    @property
    def entered(self) -> bool:
        return self._holder is not None

    @contextlib.contextmanager
    def enter(self, operation: str = "") -> Iterator[None]:
        me = threading.get_ident()
        if self._holder == me:
            raise ReentrantCall(f"Re-entrant call to {operation or 'ledger'}")
        with self._lock:
            self._holder = me
            try:
                yield
            finally:
                self._holder = None

    @contextlib.contextmanager
    def shared(self) -> Iterator[None]:
        """Section for reads: waits for other threads' writes, never for our own."""
        if self._holder == threading.get_ident():
            yield
            return
        with self._lock:
            yield

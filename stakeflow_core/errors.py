"""
Error kinds raised by the StakeFlow ledger.

Every error aborts the whole operation: the ledger restores its state
before re-raising, so callers never observe a partial effect.  There is
no retry logic inside the ledger; recovery (re-approving an allowance,
waiting for a round to end, ...) is left to the caller.
"""

from __future__ import annotations


class StakingError(Exception):
    """Base class for all ledger errors.

    ``code`` is a stable, machine-readable name used by the API layer.
    """
    code: str = "StakingError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class Unauthorized(StakingError):
    """Caller lacks the required role or stake ownership."""
    code = "Unauthorized"


class ZeroAmount(StakingError, ValueError):
    """A quantity that must be positive was zero."""
    code = "ZeroAmount"


class InvalidInput(StakingError, ValueError):
    """A null or degenerate argument (null account, negative amount, ...)."""
    code = "InvalidInput"


class RoundActive(StakingError):
    """An operation requiring no active round was called during one."""
    code = "RoundActive"


class ForbiddenAsset(StakingError):
    """Recovery of the staking asset itself was requested."""
    code = "ForbiddenAsset"


class Paused(StakingError):
    """New deposits are blocked by the pause switch."""
    code = "Paused"


class ReentrantCall(StakingError):
    """A mutating operation was re-entered from inside another one."""
    code = "ReentrantCall"


class InsufficientFunds(StakingError):
    """Custody could not move the requested amount (balance or allowance)."""
    code = "InsufficientFunds"


class StakeNotFound(StakingError, LookupError):
    """No live stake exists under the requested id."""
    code = "StakeNotFound"


class InvariantViolation(StakingError):
    """A post-operation ledger invariant failed; the operation was rolled back."""
    code = "InvariantViolation"

"""
In-memory asset custody for StakeFlow.

``AssetBook`` keeps integer balances per (asset, account) and the
allowance each account has granted to the pool's custody account.
The pool only ever talks to it through two calls:

  ``transfer_in(asset, from_account, amount)``  — pull into custody
  ``transfer_out(asset, to_account, amount)``   — pay out of custody

Both either move the full amount or raise ``InsufficientFunds`` without
touching any balance.
"""

from __future__ import annotations

import logging

from stakeflow_core.errors import InsufficientFunds, InvalidInput
from stakeflow_core.precision import is_uint

logger = logging.getLogger("stakeflow.custody")

DEFAULT_CUSTODY_ACCOUNT = "stakeflow:custody"


class AssetBook:
    """Balances and custody allowances for any number of assets."""

    def __init__(self, custody_account: str = DEFAULT_CUSTODY_ACCOUNT) -> None:
        if not custody_account:
            raise InvalidInput("custody_account must not be empty")
        self.custody_account = custody_account
        self._balances: dict[str, dict[str, int]] = {}
        self._allowances: dict[str, dict[str, int]] = {}

    # ── queries ─────────────────────────────────────────────────────

    def balance_of(self, asset: str, account: str) -> int:
        return self._balances.get(asset, {}).get(account, 0)

    def allowance(self, asset: str, account: str) -> int:
        return self._allowances.get(asset, {}).get(account, 0)

    def custody_balance(self, asset: str) -> int:
        return self.balance_of(asset, self.custody_account)

    def assets(self) -> list[str]:
        return sorted(self._balances)

    # ── account-side helpers ────────────────────────────────────────

    def credit(self, asset: str, account: str, amount: int) -> None:
        """Mint *amount* to *account* (funding / test setup)."""
        _check_amount(amount)
        book = self._balances.setdefault(asset, {})
        book[account] = book.get(account, 0) + amount

    def approve(self, asset: str, account: str, amount: int) -> None:
        """Set how much of *asset* the custody may pull from *account*."""
        _check_amount(amount)
        self._allowances.setdefault(asset, {})[account] = amount

    # ── custody transfers ───────────────────────────────────────────

    def transfer_in(self, asset: str, from_account: str, amount: int) -> None:
        _check_amount(amount)
        allowed = self.allowance(asset, from_account)
        if allowed < amount:
            raise InsufficientFunds(
                f"Allowance too low: {from_account} approved {allowed}, need {amount}"
            )
        have = self.balance_of(asset, from_account)
        if have < amount:
            raise InsufficientFunds(
                f"Balance too low: {from_account} holds {have}, need {amount}"
            )
        self._allowances.setdefault(asset, {})[from_account] = allowed - amount
        self._move(asset, from_account, self.custody_account, amount)

    def transfer_out(self, asset: str, to_account: str, amount: int) -> None:
        _check_amount(amount)
        have = self.custody_balance(asset)
        if have < amount:
            raise InsufficientFunds(
                f"Custody holds {have} of {asset}, need {amount}"
            )
        self._move(asset, self.custody_account, to_account, amount)

    def _move(self, asset: str, src: str, dst: str, amount: int) -> None:
        book = self._balances.setdefault(asset, {})
        book[src] = book.get(src, 0) - amount
        book[dst] = book.get(dst, 0) + amount
        logger.debug("Moved %d %s: %s -> %s", amount, asset, src, dst)


def _check_amount(amount: int) -> None:
    if not is_uint(amount):
        raise InvalidInput("amount must be a non-negative integer")

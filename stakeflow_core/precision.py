"""
Precision constants and helpers for StakeFlow.

All accounting is integer-only.  Amounts are counted in the staking
asset's smallest unit and the reward-per-share index is a fixed-point
integer scaled by ``SCALE``:

    1 unit of index = 1 / 10**18 reward unit per staked unit

Divisions truncate toward zero (floor for non-negative operands).
"""

from __future__ import annotations

# Fixed-point scale of the reward-per-share index.
SCALE: int = 10 ** 18

# Default number of decimals of the staking asset, used for display only.
ASSET_DECIMALS: int = 18

SECONDS_PER_DAY: int = 86_400


def days(n: int) -> int:
    """Return *n* days expressed in seconds."""
    return n * SECONDS_PER_DAY


def is_uint(value: object) -> bool:
    """True for non-negative ``int`` values (``bool`` excluded)."""
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def format_amount(units: int, decimals: int = ASSET_DECIMALS, symbol: str = "") -> str:
    """Render an integer unit count as a decimal string without floats.

    >>> format_amount(1_500_000_000_000_000_000)
    '1.500000000000000000'
    >>> format_amount(42, decimals=2, symbol="STK")
    '0.42 STK'
    """
    whole, frac = divmod(units, 10 ** decimals)
    text = f"{whole}.{frac:0{decimals}d}" if decimals else str(whole)
    return f"{text} {symbol}" if symbol else text

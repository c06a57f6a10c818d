"""
StakeFlow - a time-weighted staking and reward-distribution ledger.

Key features:
- Integer-only reward-per-share accumulator (scaled by 10**18)
- Explicitly started, fixed-length distribution rounds
- Early / late withdrawal penalties recycled into the reward pool
- Atomic, serialized ledger operations with invariant checking
- aiohttp REST API and TOML configuration
"""

__version__ = "1.0.0"
__all__ = [
    "precision",
    "errors",
    "penalty",
    "rewards",
    "rounds",
    "staking",
    "custody",
    "access",
    "directory",
    "events",
    "invariants",
    "config",
    "logging_config",
    "api",
]

"""
TOML-based configuration for StakeFlow pools.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from stakeflow_core.config import load_config
    cfg = load_config("stakeflow.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]

from stakeflow_core.custody import DEFAULT_CUSTODY_ACCOUNT
from stakeflow_core.penalty import EARLY_GRACE, LATE_GRACE, LATE_SCALE
from stakeflow_core.rounds import ROUND_DURATION


@dataclass
class PoolConfig:
    """Pool identity, roles and schedule (all durations in seconds)."""
    staking_asset: str = "STK"
    owner: str = "owner"
    reward_funder: str = ""
    custody_account: str = DEFAULT_CUSTODY_ACCOUNT
    round_duration: int = ROUND_DURATION
    early_grace: int = EARLY_GRACE
    late_grace: int = LATE_GRACE
    late_scale: int = LATE_SCALE
    # Verify ledger invariants after every operation (rollback on failure).
    check_invariants: bool = True


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 65_536


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class StakeFlowConfig:
    """Top-level configuration container."""
    pool: PoolConfig = field(default_factory=PoolConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_INT_FIELDS = ("round_duration", "early_grace", "late_grace", "late_scale", "port",
               "rate_limit_rpm", "max_body_bytes")


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _env_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def validate_config(cfg: StakeFlowConfig) -> None:
    """Reject schedules the ledger cannot run with."""
    p = cfg.pool
    for name in _INT_FIELDS:
        for section in (p, cfg.api):
            if hasattr(section, name):
                v = getattr(section, name)
                if not isinstance(v, int) or isinstance(v, bool):
                    raise ValueError(f"{name} must be an integer")
    if p.round_duration <= 0:
        raise ValueError("pool.round_duration must be positive")
    if p.late_scale <= 0:
        raise ValueError("pool.late_scale must be positive")
    if p.early_grace < 0 or p.late_grace < 0:
        raise ValueError("grace periods must be non-negative")
    if not p.owner:
        raise ValueError("pool.owner must be set")
    if not p.staking_asset:
        raise ValueError("pool.staking_asset must be set")


def load_config(path: str | None = None) -> StakeFlowConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        STAKEFLOW_OWNER          -> pool.owner
        STAKEFLOW_FUNDER         -> pool.reward_funder
        STAKEFLOW_ASSET          -> pool.staking_asset
        STAKEFLOW_ROUND_DURATION -> pool.round_duration
        STAKEFLOW_API_HOST       -> api.host
        STAKEFLOW_API_PORT       -> api.port
        STAKEFLOW_API_KEY        -> api.api_key
        STAKEFLOW_CORS_ORIGINS   -> api.cors_origins (comma-separated)
        STAKEFLOW_LOG_LEVEL      -> logging.level
        STAKEFLOW_LOG_FMT        -> logging.format
    """
    cfg = StakeFlowConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("pool", cfg.pool),
                ("api", cfg.api),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("STAKEFLOW_OWNER"):
        cfg.pool.owner = v
    if v := os.environ.get("STAKEFLOW_FUNDER"):
        cfg.pool.reward_funder = v
    if v := os.environ.get("STAKEFLOW_ASSET"):
        cfg.pool.staking_asset = v
    if v := os.environ.get("STAKEFLOW_ROUND_DURATION"):
        cfg.pool.round_duration = _env_int("STAKEFLOW_ROUND_DURATION", v)
    if v := os.environ.get("STAKEFLOW_API_HOST"):
        cfg.api.host = v
    if v := os.environ.get("STAKEFLOW_API_PORT"):
        cfg.api.port = _env_int("STAKEFLOW_API_PORT", v)
    if v := os.environ.get("STAKEFLOW_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("STAKEFLOW_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("STAKEFLOW_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("STAKEFLOW_LOG_FMT"):
        cfg.logging.format = v

    validate_config(cfg)
    return cfg

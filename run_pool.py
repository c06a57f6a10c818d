#!/usr/bin/env python3
"""
StakeFlow pool runner — builds a staking pool and serves its REST API.

Usage:
    python run_pool.py --config stakeflow.toml
    python run_pool.py --owner ops --funder treasury --port 8080 \\
                       --fund alice=1000000 --fund treasury=50000000

``--fund ACCOUNT=AMOUNT`` credits the in-memory asset book and approves
the pool's custody for the same amount (local / test deployments).

Environment variables (alternative to flags):
    STAKEFLOW_OWNER, STAKEFLOW_FUNDER, STAKEFLOW_ASSET,
    STAKEFLOW_API_HOST, STAKEFLOW_API_PORT, STAKEFLOW_LOG_LEVEL
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from stakeflow_core.api import APIServer  # noqa: E402
from stakeflow_core.config import StakeFlowConfig, load_config, validate_config  # noqa: E402
from stakeflow_core.custody import AssetBook  # noqa: E402
from stakeflow_core.logging_config import setup_from_config  # noqa: E402
from stakeflow_core.staking import StakingPool  # noqa: E402

logger = logging.getLogger("stakeflow.runner")


def parse_fund(spec: str) -> tuple[str, int]:
    account, sep, amount = spec.partition("=")
    if not sep or not account:
        raise argparse.ArgumentTypeError(f"expected ACCOUNT=AMOUNT, got {spec!r}")
    try:
        value = int(amount)
    except ValueError:
        raise argparse.ArgumentTypeError(f"amount must be an integer: {amount!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError("amount must be non-negative")
    return account, value


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="StakeFlow staking pool")
    p.add_argument("--config", default=None, help="Path to stakeflow.toml config file")
    p.add_argument("--host", default=None, help="API listen host")
    p.add_argument("--port", type=int, default=None, help="API listen port")
    p.add_argument("--owner", default=None, help="Pool owner account")
    p.add_argument("--funder", default=None, help="Reward funder account")
    p.add_argument("--asset", default=None, help="Staking asset id")
    p.add_argument("--fund", action="append", type=parse_fund, default=[],
                   metavar="ACCOUNT=AMOUNT",
                   help="Credit and approve an account in the local asset book")
    return p.parse_args(argv)


def apply_args(cfg: StakeFlowConfig, args: argparse.Namespace) -> StakeFlowConfig:
    """CLI flags override file and environment settings."""
    if args.host:
        cfg.api.host = args.host
    if args.port is not None:
        cfg.api.port = args.port
    if args.owner:
        cfg.pool.owner = args.owner
    if args.funder:
        cfg.pool.reward_funder = args.funder
    if args.asset:
        cfg.pool.staking_asset = args.asset
    validate_config(cfg)
    return cfg


def build_pool(cfg: StakeFlowConfig, funding: list[tuple[str, int]]) -> StakingPool:
    book = AssetBook(cfg.pool.custody_account)
    for account, amount in funding:
        book.credit(cfg.pool.staking_asset, account, amount)
        book.approve(cfg.pool.staking_asset, account, amount)
        logger.info("Funded %s with %d %s", account, amount, cfg.pool.staking_asset)
    return StakingPool(cfg.pool, custody=book)


async def serve(cfg: StakeFlowConfig, pool: StakingPool) -> None:
    if not cfg.api.enabled:
        logger.warning("API disabled in config; nothing to serve")
        return
    api = APIServer(pool, cfg.api.host, cfg.api.port, api_config=cfg.api)
    await api.start()
    if not cfg.api.api_key:
        logger.warning(
            "Running without an API key: any client can submit requests "
            "under any X-Account. Set [api] api_key in stakeflow.toml."
        )
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await api.stop()


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    cfg = apply_args(load_config(args.config), args)
    setup_from_config(cfg.logging)
    pool = build_pool(cfg, args.fund)
    logger.info(
        "Pool ready: asset=%s owner=%s funder=%s round=%ds",
        cfg.pool.staking_asset, cfg.pool.owner,
        cfg.pool.reward_funder or "<none>", cfg.pool.round_duration,
    )
    await serve(cfg, pool)


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()

"""
REST / HTTP API for a StakeFlow pool.

Built on ``aiohttp``.  The calling account is named in the
``X-Account`` header; role checks (owner, funder, stake ownership) are
done by the pool itself.

Endpoints
---------
GET  /health                    Liveness + invariant-relevant totals
GET  /pool                      Pool summary
GET  /round                     Current round info
GET  /stakes/{account}          Open stakes of an account
GET  /stake/{stake_id}          Stake detail, reward to date, withdraw quote
GET  /events                    Event journal (?kind=Staked&stake_id=3&limit=50)
POST /stake                     {"amount": 1000, "duration": 7776000}
POST /unstake                   {"stake_id": 3}
POST /reward/charge             {"amount": 5000}            (funder)
POST /round/start                                           (owner)
POST /admin/funder              {"funder": "carol"}         (owner)
POST /admin/recover             {"asset": "USD", "amount": 10}  (owner)
POST /admin/pause, /admin/unpause                           (owner)

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (explicit origin allow-list).
- Request body size cap (``max_body_bytes``).
- Amounts must be JSON integers; floats and strings are rejected.

Usage:
    api = APIServer(pool, host="127.0.0.1", port=8080)
    await api.start()
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from stakeflow_core.errors import (
    ForbiddenAsset,
    InsufficientFunds,
    InvalidInput,
    InvariantViolation,
    Paused,
    ReentrantCall,
    RoundActive,
    StakeNotFound,
    StakingError,
    Unauthorized,
    ZeroAmount,
)

if TYPE_CHECKING:
    from stakeflow_core.config import APIConfig
    from stakeflow_core.staking import StakingPool

logger = logging.getLogger("stakeflow.api")

# Ledger error → HTTP status
ERROR_STATUS: dict[type[StakingError], int] = {
    Unauthorized: 403,
    ZeroAmount: 400,
    InvalidInput: 400,
    ForbiddenAsset: 400,
    RoundActive: 409,
    ReentrantCall: 409,
    Paused: 423,
    InsufficientFunds: 402,
    StakeNotFound: 404,
    InvariantViolation: 500,
}


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _uint(value: Any, name: str = "value") -> int:
    """Accept only non-negative JSON integers (bools and floats rejected)."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if value < 0:
        raise web.HTTPBadRequest(text=f"{name} must be non-negative")
    return value


def _path_int(request: web.Request, key: str) -> int:
    try:
        return int(request.match_info[key])
    except ValueError:
        raise web.HTTPBadRequest(text=f"{key} must be an integer") from None


def _caller(request: web.Request) -> str:
    caller = request.headers.get("X-Account", "").strip()
    if not caller:
        raise web.HTTPBadRequest(text="X-Account header required")
    return caller


async def _json_body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types."""
    return json.dumps(obj, default=str)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """Require ``X-API-Key`` on POST requests (header only, never query)."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method == "POST":
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """Add CORS headers for allow-listed origins.  ``*`` is ignored."""

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key, X-Account"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Render ledger errors as JSON with a status matching the error kind."""
    try:
        return await handler(request)
    except StakingError as exc:
        status = ERROR_STATUS.get(type(exc), 400)
        return web.json_response(
            {"error": exc.code, "message": exc.message},
            status=status,
        )


def build_middlewares(cfg: APIConfig | None) -> list:
    middlewares: list = []
    if cfg is not None:
        if cfg.rate_limit_rpm > 0:
            middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
        if cfg.cors_origins:
            middlewares.append(_make_cors_middleware(cfg.cors_origins))
        if cfg.api_key:
            middlewares.append(_make_api_key_middleware(cfg.api_key))
    middlewares.append(error_middleware)
    return middlewares


class APIServer:
    """Thin aiohttp wrapper around a StakingPool."""

    def __init__(
        self,
        pool: StakingPool,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
    ):
        self.pool = pool
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        max_body = self._api_config.max_body_bytes if self._api_config else 65_536
        app = web.Application(
            middlewares=build_middlewares(self._api_config),
            client_max_size=max_body,
        )
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/pool", self._pool_summary)
        app.router.add_get("/round", self._round)
        app.router.add_get("/stakes/{account}", self._stakes_of)
        app.router.add_get("/stake/{stake_id}", self._stake)
        app.router.add_get("/events", self._events)
        app.router.add_post("/stake", self._deposit)
        app.router.add_post("/unstake", self._withdraw)
        app.router.add_post("/reward/charge", self._charge_reward)
        app.router.add_post("/round/start", self._start_round)
        app.router.add_post("/admin/funder", self._set_funder)
        app.router.add_post("/admin/recover", self._recover)
        app.router.add_post("/admin/pause", self._pause)
        app.router.add_post("/admin/unpause", self._unpause)

    # ── read handlers ────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        pool = self.pool
        return web.json_response({
            "ok": True,
            "total_staked": pool.total_staked,
            "open_stakes": len(pool.stakes),
            "round_active": pool.is_round_active(),
            "events": len(pool.events),
        })

    async def _pool_summary(self, _request: web.Request) -> web.Response:
        return web.json_response(self.pool.get_pool_summary(), dumps=_json_dumps)

    async def _round(self, _request: web.Request) -> web.Response:
        return web.json_response(self.pool.round_info().to_dict())

    async def _stakes_of(self, request: web.Request) -> web.Response:
        account = request.match_info["account"]
        ids = self.pool.stakes_of(account)
        return web.json_response({
            "account": account,
            "stake_ids": ids,
            "stakes": [self.pool.stake_info(sid) for sid in ids],
        }, dumps=_json_dumps)

    async def _stake(self, request: web.Request) -> web.Response:
        stake_id = _path_int(request, "stake_id")
        return web.json_response(self.pool.stake_info(stake_id), dumps=_json_dumps)

    async def _events(self, request: web.Request) -> web.Response:
        q = request.query
        kind = q.get("kind") or None
        try:
            stake_id = int(q["stake_id"]) if "stake_id" in q else None
            limit = int(q["limit"]) if "limit" in q else 100
        except ValueError:
            raise web.HTTPBadRequest(text="stake_id and limit must be integers") from None
        try:
            events = self.pool.events.query(kind=kind, stake_id=stake_id, limit=limit)
        except ValueError:
            raise web.HTTPBadRequest(text=f"Unknown event kind: {kind}") from None
        return web.json_response(
            {"events": [e.to_dict() for e in events], "count": len(events)},
            dumps=_json_dumps,
        )

    # ── write handlers ───────────────────────────────────────────

    async def _deposit(self, request: web.Request) -> web.Response:
        caller = _caller(request)
        body = await _json_body(request)
        amount = _uint(body.get("amount"), "amount")
        duration = _uint(body.get("duration"), "duration")
        stake_id = self.pool.deposit(caller, amount, duration)
        return web.json_response(
            {"status": "staked", "stake_id": stake_id, "amount": amount, "duration": duration},
            status=201,
        )

    async def _withdraw(self, request: web.Request) -> web.Response:
        caller = _caller(request)
        body = await _json_body(request)
        stake_id = _uint(body.get("stake_id"), "stake_id")
        payout = self.pool.withdraw(caller, stake_id)
        return web.json_response({"status": "unstaked", "stake_id": stake_id, "payout": payout})

    async def _charge_reward(self, request: web.Request) -> web.Response:
        caller = _caller(request)
        body = await _json_body(request)
        amount = _uint(body.get("amount"), "amount")
        self.pool.charge_reward(caller, amount)
        return web.json_response({
            "status": "charged",
            "amount": amount,
            "reward_rate": self.pool.reward_rate,
        })

    async def _start_round(self, request: web.Request) -> web.Response:
        caller = _caller(request)
        info = self.pool.start_round(caller)
        return web.json_response({"status": "started", **info.to_dict()})

    async def _set_funder(self, request: web.Request) -> web.Response:
        caller = _caller(request)
        body = await _json_body(request)
        funder = body.get("funder", "")
        if not isinstance(funder, str):
            raise web.HTTPBadRequest(text="funder must be a string")
        self.pool.set_reward_funder(caller, funder)
        return web.json_response({"status": "updated", "reward_funder": funder})

    async def _recover(self, request: web.Request) -> web.Response:
        caller = _caller(request)
        body = await _json_body(request)
        asset = body.get("asset", "")
        if not isinstance(asset, str) or not asset:
            raise web.HTTPBadRequest(text="asset required")
        amount = _uint(body.get("amount"), "amount")
        self.pool.recover_foreign_asset(caller, asset, amount)
        return web.json_response({"status": "recovered", "asset": asset, "amount": amount})

    async def _pause(self, request: web.Request) -> web.Response:
        self.pool.pause(_caller(request))
        return web.json_response({"status": "paused"})

    async def _unpause(self, request: web.Request) -> web.Response:
        self.pool.unpause(_caller(request))
        return web.json_response({"status": "unpaused"})

"""
Tests for stakeflow_core.config — TOML configuration and environment overrides.

Covers:
  - Default values for all dataclass sections
  - TOML parsing and section merging
  - Environment variable overrides (precedence over TOML)
  - Validation of the pool schedule
  - _merge helper edge cases
  - Missing TOML files
"""

from __future__ import annotations

import os
import tempfile
import textwrap
import unittest
from unittest.mock import patch

from stakeflow_core.config import (
    APIConfig,
    LoggingConfig,
    PoolConfig,
    StakeFlowConfig,
    _merge,
    load_config,
    validate_config,
)
from stakeflow_core.penalty import EARLY_GRACE, LATE_GRACE, LATE_SCALE
from stakeflow_core.rounds import ROUND_DURATION


def _write_toml(content: str) -> str:
    fd, path = tempfile.mkstemp(suffix=".toml")
    with os.fdopen(fd, "w") as f:
        f.write(textwrap.dedent(content))
    return path


# ═══════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════

class TestDefaults(unittest.TestCase):

    def test_pool_defaults(self):
        p = PoolConfig()
        self.assertEqual(p.staking_asset, "STK")
        self.assertEqual(p.reward_funder, "")
        self.assertEqual(p.round_duration, ROUND_DURATION)
        self.assertEqual(p.early_grace, EARLY_GRACE)
        self.assertEqual(p.late_grace, LATE_GRACE)
        self.assertEqual(p.late_scale, LATE_SCALE)
        self.assertTrue(p.check_invariants)

    def test_api_defaults(self):
        a = APIConfig()
        self.assertTrue(a.enabled)
        self.assertEqual(a.host, "127.0.0.1")
        self.assertEqual(a.port, 8080)
        self.assertEqual(a.api_key, "")
        self.assertEqual(a.rate_limit_rpm, 120)
        self.assertEqual(a.cors_origins, [])

    def test_logging_defaults(self):
        lc = LoggingConfig()
        self.assertEqual(lc.level, "INFO")
        self.assertEqual(lc.format, "human")
        self.assertIsNone(lc.file)

    def test_no_path_gives_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config(None)
        self.assertEqual(cfg, StakeFlowConfig())


# ═══════════════════════════════════════════════════════════════════
#  TOML loading
# ═══════════════════════════════════════════════════════════════════

class TestTomlLoading(unittest.TestCase):

    def setUp(self):
        self.path = _write_toml("""
            [pool]
            staking_asset = "GOV"
            owner = "treasury"
            reward-funder = "emissions"
            round_duration = 604800

            [api]
            port = 9090
            cors_origins = ["https://app.example"]

            [logging]
            level = "DEBUG"
            format = "json"
        """)

    def tearDown(self):
        os.unlink(self.path)

    def test_sections_merged(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config(self.path)
        self.assertEqual(cfg.pool.staking_asset, "GOV")
        self.assertEqual(cfg.pool.owner, "treasury")
        self.assertEqual(cfg.pool.reward_funder, "emissions")
        self.assertEqual(cfg.pool.round_duration, 604800)
        self.assertEqual(cfg.api.port, 9090)
        self.assertEqual(cfg.api.cors_origins, ["https://app.example"])
        self.assertEqual(cfg.logging.format, "json")
        # Untouched fields keep their defaults
        self.assertEqual(cfg.pool.late_scale, LATE_SCALE)

    def test_env_overrides_file(self):
        env = {
            "STAKEFLOW_OWNER": "council",
            "STAKEFLOW_API_PORT": "7000",
            "STAKEFLOW_CORS_ORIGINS": "https://a.example, https://b.example",
            "STAKEFLOW_LOG_LEVEL": "warning",
        }
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config(self.path)
        self.assertEqual(cfg.pool.owner, "council")
        self.assertEqual(cfg.api.port, 7000)
        self.assertEqual(cfg.api.cors_origins, ["https://a.example", "https://b.example"])
        self.assertEqual(cfg.logging.level, "WARNING")

    def test_missing_file_uses_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config("/nonexistent/stakeflow.toml")
        self.assertEqual(cfg.pool.owner, "owner")


# ═══════════════════════════════════════════════════════════════════
#  Validation
# ═══════════════════════════════════════════════════════════════════

class TestValidation(unittest.TestCase):

    def test_bad_env_int(self):
        with patch.dict(os.environ, {"STAKEFLOW_ROUND_DURATION": "soon"}, clear=True):
            with self.assertRaises(ValueError):
                load_config(None)

    def test_zero_round_duration(self):
        cfg = StakeFlowConfig()
        cfg.pool.round_duration = 0
        with self.assertRaises(ValueError):
            validate_config(cfg)

    def test_zero_late_scale(self):
        cfg = StakeFlowConfig()
        cfg.pool.late_scale = 0
        with self.assertRaises(ValueError):
            validate_config(cfg)

    def test_negative_grace(self):
        cfg = StakeFlowConfig()
        cfg.pool.late_grace = -1
        with self.assertRaises(ValueError):
            validate_config(cfg)

    def test_float_duration_from_toml(self):
        path = _write_toml("""
            [pool]
            round_duration = 1.5
        """)
        try:
            with patch.dict(os.environ, {}, clear=True):
                with self.assertRaises(ValueError):
                    load_config(path)
        finally:
            os.unlink(path)

    def test_owner_required(self):
        cfg = StakeFlowConfig()
        cfg.pool.owner = ""
        with self.assertRaises(ValueError):
            validate_config(cfg)


# ═══════════════════════════════════════════════════════════════════
#  _merge
# ═══════════════════════════════════════════════════════════════════

class TestMerge(unittest.TestCase):

    def test_unknown_keys_ignored(self):
        p = PoolConfig()
        _merge(p, {"nonsense": 1, "owner": "x"})
        self.assertEqual(p.owner, "x")
        self.assertFalse(hasattr(p, "nonsense"))

    def test_hyphenated_keys(self):
        a = APIConfig()
        _merge(a, {"rate-limit-rpm": 5})
        self.assertEqual(a.rate_limit_rpm, 5)


if __name__ == "__main__":
    unittest.main()

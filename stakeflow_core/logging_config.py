"""
Logging setup for StakeFlow.

Ledger log calls attach their context (operation, stake id, owner,
amount) through ``extra=``; both formats carry it:
  - **human** – ``12:00:01 [INFO   ] stakeflow.staking: Stake 3 opened ... {deposit #3}``
  - **json**  – one object per line, context under its own keys

Usage:
    from stakeflow_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="logs/pool.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from stakeflow_core.config import LoggingConfig

# Keys the pool passes as ``extra`` on ledger log records.
LEDGER_FIELDS = ("operation", "stake_id", "owner", "amount")


def ledger_context(record: logging.LogRecord) -> dict:
    return {k: getattr(record, k) for k in LEDGER_FIELDS if hasattr(record, k)}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **ledger_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Single line per record, level coloured when writing to a terminal."""

    LEVEL_COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True) -> None:
        super().__init__()
        self.colour = colour

    def _tag(self, record: logging.LogRecord) -> str:
        ctx = ledger_context(record)
        if "operation" not in ctx:
            return ""
        tag = ctx["operation"]
        if "stake_id" in ctx:
            tag += f" #{ctx['stake_id']}"
        return f" {{{tag}}}"

    def format(self, record: logging.LogRecord) -> str:
        level = f"[{record.levelname:<7}]"
        if self.colour:
            level = f"{self.LEVEL_COLOURS.get(record.levelname, '')}{level}{self.RESET}"
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        text = f"{clock} {level} {record.name}: {record.getMessage()}{self._tag(record)}"
        if record.exc_info and record.exc_info[1]:
            text += "\n" + self.formatException(record.exc_info)
        return text


def _console_handler(fmt: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(HumanFormatter(colour=sys.stderr.isatty()))
    return handler


def _file_handler(log_file: str) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(path))
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Replace the root logger's handlers.

    *fmt* picks the console format (``"human"`` or ``"json"``).  A
    *log_file* always receives JSON.  Unknown level names fall back to
    INFO.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(_console_handler(fmt))
    if log_file:
        root.addHandler(_file_handler(log_file))


def setup_from_config(cfg: LoggingConfig) -> None:
    setup_logging(level=cfg.level, fmt=cfg.format, log_file=cfg.file)

"""
Event journal for StakeFlow.

Every committed ledger operation records one or more ``PoolEvent``
entries.  Operations that fail record nothing: events are staged while
the operation runs and only published once it commits.

Event kinds:
  Staked, Unstaked, RewardCharged, RewardInjected, RoundStarted,
  RewardFunderChanged, OwnershipTransferred, Paused, Unpaused,
  ForeignAssetRecovered
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EventKind(Enum):
    STAKED = "Staked"
    UNSTAKED = "Unstaked"
    REWARD_CHARGED = "RewardCharged"
    REWARD_INJECTED = "RewardInjected"
    ROUND_STARTED = "RoundStarted"
    REWARD_FUNDER_CHANGED = "RewardFunderChanged"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"
    PAUSED = "Paused"
    UNPAUSED = "Unpaused"
    FOREIGN_ASSET_RECOVERED = "ForeignAssetRecovered"


@dataclass
class PoolEvent:
    """A single journal entry."""
    seq: int
    kind: EventKind
    timestamp: int
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "kind": self.kind.value,
            "timestamp": self.timestamp,
            **self.fields,
        }


class EventJournal:
    """Append-only list of committed events."""

    def __init__(self):
        self._events: list[PoolEvent] = []
        self._staged: list[tuple[EventKind, int, dict[str, Any]]] = []

    def __len__(self) -> int:
        return len(self._events)

    def stage(self, kind: EventKind, timestamp: int, **fields: Any) -> None:
        """Queue an event for the operation in progress."""
        self._staged.append((kind, timestamp, fields))

    def commit(self) -> list[PoolEvent]:
        """Publish staged events; returns the newly published ones."""
        published = []
        for kind, ts, fields in self._staged:
            ev = PoolEvent(seq=len(self._events) + 1, kind=kind, timestamp=ts, fields=fields)
            self._events.append(ev)
            published.append(ev)
        self._staged.clear()
        return published

    def discard(self) -> None:
        self._staged.clear()

    def query(
        self,
        kind: Optional[EventKind | str] = None,
        stake_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[PoolEvent]:
        """Events filtered by kind and/or stake id, oldest first."""
        if isinstance(kind, str):
            kind = EventKind(kind)
        result = [
            e for e in self._events
            if (kind is None or e.kind == kind)
            and (stake_id is None or e.fields.get("stake_id") == stake_id)
        ]
        if limit is not None:
            result = result[-limit:] if limit > 0 else []
        return result

    def last(self) -> PoolEvent | None:
        return self._events[-1] if self._events else None

"""Outbound trunk pool with round-robin selection and failover ordering."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

LOGGER = logging.getLogger(__name__)

EWMA_OLD_WEIGHT = 0.8
EWMA_NEW_WEIGHT = 0.2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TrunkStats:
    """Running origination statistics for one trunk."""

    total_calls: int = 0
    success_calls: int = 0
    failed_calls: int = 0
    avg_response_time: float = 0.0
    last_used: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "success_calls": self.success_calls,
            "failed_calls": self.failed_calls,
            "avg_response_time": self.avg_response_time,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }


class TrunkPool:
    """Thread-safe ordered pool of outbound trunks.

    The cursor is advanced with an atomic read-modify-write so concurrent
    originations fan out across trunks instead of all starting at the same one.
    """

    def __init__(
        self,
        trunks: Iterable[str] = (),
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._trunks: list[str] = []
        self._cursor = 0
        self._stats: dict[str, TrunkStats] = {}
        self._now = now
        self._lock = threading.Lock()
        self.replace(trunks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._trunks)

    @property
    def trunks(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._trunks)

    @property
    def cursor(self) -> int:
        with self._lock:
            return self._cursor

    def replace(self, trunks: Iterable[str]) -> None:
        """Swap the configured trunk list, dropping duplicates and keeping order."""

        unique: list[str] = []
        for trunk in trunks:
            if trunk and trunk not in unique:
                unique.append(trunk)
        with self._lock:
            self._trunks = unique
            self._cursor = self._cursor % len(unique) if unique else 0
        LOGGER.info("Trunk pool loaded with %d trunks", len(unique))

    def add(self, trunk: str) -> bool:
        with self._lock:
            if trunk in self._trunks:
                return False
            self._trunks.append(trunk)
            return True

    def remove(self, trunk: str) -> bool:
        with self._lock:
            if trunk not in self._trunks:
                return False
            self._trunks.remove(trunk)
            self._cursor = self._cursor % len(self._trunks) if self._trunks else 0
            return True

    def next_round_robin(self) -> str | None:
        """Return the trunk at the cursor and advance it, or ``None`` when empty."""

        with self._lock:
            if not self._trunks:
                return None
            trunk = self._trunks[self._cursor % len(self._trunks)]
            self._cursor = (self._cursor + 1) % len(self._trunks)
            return trunk

    def ordered_from(self, start_index: int) -> list[str]:
        """Every trunk once, starting at ``start_index`` and wrapping around."""

        with self._lock:
            return self._ordered_from(start_index)

    def _ordered_from(self, start_index: int) -> list[str]:
        count = len(self._trunks)
        return [self._trunks[(start_index + offset) % count] for offset in range(count)]

    def failover_sequence(self) -> list[str]:
        """Capture the cursor, advance it once and return the ordering from the captured start."""

        with self._lock:
            if not self._trunks:
                return []
            start = self._cursor
            self._cursor = (self._cursor + 1) % len(self._trunks)
            return self._ordered_from(start)

    def record_outcome(self, trunk: str, success: bool, latency_ms: float = 0.0) -> None:
        """Update statistics after an origination attempt. Never raises."""

        with self._lock:
            stats = self._stats.setdefault(trunk, TrunkStats())
            stats.total_calls += 1
            stats.last_used = self._now()
            if not success:
                stats.failed_calls += 1
                return
            stats.success_calls += 1
            if latency_ms > 0:
                if stats.avg_response_time == 0:
                    stats.avg_response_time = float(latency_ms)
                else:
                    stats.avg_response_time = (
                        stats.avg_response_time * EWMA_OLD_WEIGHT + latency_ms * EWMA_NEW_WEIGHT
                    )

    def stats(self) -> dict[str, TrunkStats]:
        with self._lock:
            return {
                name: TrunkStats(
                    total_calls=stats.total_calls,
                    success_calls=stats.success_calls,
                    failed_calls=stats.failed_calls,
                    avg_response_time=stats.avg_response_time,
                    last_used=stats.last_used,
                )
                for name, stats in self._stats.items()
            }

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            trunks = list(self._trunks)
            cursor = self._cursor
        return {
            "trunks": trunks,
            "stats": {name: stats.to_dict() for name, stats in self.stats().items()},
            "round_robin_index": cursor,
        }

"""In-memory order pipeline observability store for runtime metrics."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineEventLog:
    """Stores details about noteworthy pipeline events."""

    last_failure_at: datetime | None = None
    last_failure_order: str | None = None
    last_failure_message: str | None = None
    last_deferred_at: datetime | None = None
    last_deferred_order: str | None = None
    last_rate_limited_at: datetime | None = None
    last_retry_after_seconds: float | None = None


@dataclass
class PipelineMetricsSnapshot:
    """Serializable snapshot returned to API consumers."""

    totals: Dict[str, int]
    events: PipelineEventLog

    def as_dict(self) -> Dict[str, object]:
        events = self.events
        return {
            "totals": self.totals,
            "events": {
                "last_failure_at": events.last_failure_at.isoformat() if events.last_failure_at else None,
                "last_failure_order": events.last_failure_order,
                "last_failure_message": events.last_failure_message,
                "last_deferred_at": events.last_deferred_at.isoformat() if events.last_deferred_at else None,
                "last_deferred_order": events.last_deferred_order,
                "last_rate_limited_at": events.last_rate_limited_at.isoformat()
                if events.last_rate_limited_at
                else None,
                "last_retry_after_seconds": events.last_retry_after_seconds,
            },
        }


@dataclass
class PipelineObservabilityStore:
    """Tracks order pipeline counters and recent events for one service."""

    _lock: Lock = field(default_factory=Lock)
    _totals: Counter = field(default_factory=Counter)
    _events: PipelineEventLog = field(default_factory=PipelineEventLog)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._totals[counter] += amount

    def record_enqueued(self) -> None:
        self.increment("enqueued")

    def record_overflow(self) -> None:
        self.increment("overflow_spawned")

    def record_rejected(self) -> None:
        self.increment("rejected")

    def record_outcome(self, status: str) -> None:
        self.increment(status.lower())

    def record_retry(self) -> None:
        self.increment("retried")

    def record_rate_limited(self, retry_after_seconds: float) -> None:
        with self._lock:
            self._totals["rate_limited"] += 1
            self._events.last_rate_limited_at = _utcnow()
            self._events.last_retry_after_seconds = retry_after_seconds

    def record_deferred(self, order_number: str) -> None:
        with self._lock:
            self._totals["deferred"] += 1
            self._events.last_deferred_at = _utcnow()
            self._events.last_deferred_order = order_number

    def record_failure(self, order_number: str, error_message: str) -> None:
        with self._lock:
            self._totals["failed"] += 1
            self._events.last_failure_at = _utcnow()
            self._events.last_failure_order = order_number
            self._events.last_failure_message = error_message

    def snapshot(self) -> PipelineMetricsSnapshot:
        with self._lock:
            totals = dict(self._totals)
            events_copy = PipelineEventLog(
                last_failure_at=self._events.last_failure_at,
                last_failure_order=self._events.last_failure_order,
                last_failure_message=self._events.last_failure_message,
                last_deferred_at=self._events.last_deferred_at,
                last_deferred_order=self._events.last_deferred_order,
                last_rate_limited_at=self._events.last_rate_limited_at,
                last_retry_after_seconds=self._events.last_retry_after_seconds,
            )
        return PipelineMetricsSnapshot(totals=totals, events=events_copy)

# src/models/job_run.py

"""Job run audit record, shared run counters and the run summary."""

import threading
from dataclasses import dataclass, field
from datetime import datetime

STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_SESSION_INVALID = "session_invalid"
STATUS_FAILED = "failed"

COUNTER_NAMES: tuple[str, ...] = (
    "scanned",
    "dispatched",
    "updated",
    "failed",
    "http429",
    "retries",
    "gate_detected",
    "not_applicable",
    "price_not_found",
    "deactivated",
    "skipped_invalid_id",
    "auth_errors",
    "weak_accepted",
    "overrides_applied",
    "api_fallbacks",
)

# Any of these being non-zero turns a run into "partial"
INCIDENT_COUNTERS: tuple[str, ...] = (
    "failed",
    "gate_detected",
    "price_not_found",
    "deactivated",
    "skipped_invalid_id",
    "auth_errors",
)


class RunCounters:
    """Named integer counters safe to bump from several worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, int] = dict.fromkeys(COUNTER_NAMES, 0)

    def incr(self, name: str, amount: int = 1) -> int:
        """Add *amount* to counter *name* and return the new value."""
        if name not in self._values:
            raise KeyError(f"Unknown run counter: {name}")
        with self._lock:
            self._values[name] += amount
            return self._values[name]

    def get(self, name: str) -> int:
        """Return the current value of counter *name*."""
        with self._lock:
            return self._values[name]

    def snapshot(self) -> dict[str, int]:
        """Return a consistent copy of every counter."""
        with self._lock:
            return dict(self._values)

    def had_incidents(self) -> bool:
        """True when any incident counter is non-zero."""
        values = self.snapshot()
        return any(values[name] > 0 for name in INCIDENT_COUNTERS)


@dataclass
class JobRun:
    """One execution of the refresh batch, kept for operational history."""

    platform: str
    started_at: datetime
    id: int | None = None
    status: str = STATUS_RUNNING
    finished_at: datetime | None = None
    stats: dict[str, object] = field(
        default_factory=lambda: dict[str, object]()
    )
    error_sample: str | None = None
    stopped_early: bool = False


@dataclass
class RunSummary:
    """Structured result handed back to whatever triggered the run."""

    status: str
    counters: dict[str, int]
    duration_ms: int
    error_sample: str | None = None
    stopped_early: bool = False
    run_id: int | None = None
    platform: str = ""

    @property
    def ok(self) -> bool:
        """True for runs that processed the batch (fully or partially)."""
        return self.status in (STATUS_SUCCESS, STATUS_PARTIAL)

    def to_dict(self) -> dict[str, object]:
        """Flatten the summary for JSON output and the job run record."""
        data: dict[str, object] = {
            "run_id": self.run_id,
            "platform": self.platform,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "stopped_early": self.stopped_early,
            "error_sample": self.error_sample,
        }
        data.update(self.counters)
        return data

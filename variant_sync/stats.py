"""Cumulative counters for Variant Watcher.

Counters only ever grow and are reset by restarting the process.
They are never persisted.
"""

import enum
import threading
from dataclasses import dataclass, field


class SyncStatus(enum.Enum):
    """Outcome classification of a single ``sync_create`` call."""
    IGNORED = "ignored"      # path inside the output folder
    VANISHED = "vanished"    # source gone before it could be processed
    SKIPPED = "skipped"      # every variant already present
    CONVERGED = "converged"  # >= 1 variant created, no failures
    ERRORED = "errored"      # decode failed or >= 1 variant failed


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of the counters."""
    observed: int = 0
    skipped: int = 0
    converged: int = 0
    errored: int = 0

    def lines(self) -> list[str]:
        return [
            "--- Current Stats ---",
            f"Files observed:              {self.observed}",
            f"Skipped (all variants exist): {self.skipped}",
            f"Converged (new variants):    {self.converged}",
            f"Errored:                     {self.errored}",
            "---------------------",
        ]


@dataclass
class SyncStats:
    """Thread-safe aggregated counters, owned by the run loop."""
    observed: int = 0
    skipped: int = 0
    converged: int = 0
    errored: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def mark_observed(self) -> None:
        with self._lock:
            self.observed += 1

    def record(self, status: SyncStatus) -> None:
        """Count a final classification; IGNORED and VANISHED are not counted."""
        with self._lock:
            if status is SyncStatus.SKIPPED:
                self.skipped += 1
            elif status is SyncStatus.CONVERGED:
                self.converged += 1
            elif status is SyncStatus.ERRORED:
                self.errored += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                observed=self.observed,
                skipped=self.skipped,
                converged=self.converged,
                errored=self.errored,
            )

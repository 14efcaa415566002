"""Progress accounting for the transfer phase."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class ProgressSnapshot:
    total: int
    completed: int
    successful: int
    failed: int
    in_flight: int
    max_in_flight: int

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return 100.0 * self.completed / self.total


class ProgressTracker:
    """Lock-guarded unit counters with throttled progress updates."""

    def __init__(
        self,
        total: int = 0,
        update_interval: int = 10,
        min_update_interval_seconds: float = 5.0,
    ):
        """
        Initialize progress tracker.

        Args:
            total: Number of units that will be tracked
            update_interval: Report progress every N completed units
            min_update_interval_seconds: Minimum time between updates (seconds)
        """
        if update_interval < 1:
            raise ValueError("update_interval must be at least 1")
        self.total = total
        self.update_interval = update_interval
        self.min_update_interval_seconds = min_update_interval_seconds
        self.completed = 0
        self.successful = 0
        self.failed = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.last_update_time = time.time()
        self._lock = threading.Lock()

    def start_unit(self) -> None:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

    def finish_unit(self, success: bool) -> None:
        with self._lock:
            self.in_flight -= 1
            self.completed += 1
            if success:
                self.successful += 1
            else:
                self.failed += 1

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                total=self.total,
                completed=self.completed,
                successful=self.successful,
                failed=self.failed,
                in_flight=self.in_flight,
                max_in_flight=self.max_in_flight,
            )

    def should_update(self) -> bool:
        """
        Determine if progress should be reported after a unit completes.

        Returns:
            True on every Nth completion, the last completion, or once the
            time interval has elapsed
        """
        with self._lock:
            now = time.time()
            if (
                self.completed % self.update_interval == 0
                or self.completed == self.total
                or now - self.last_update_time >= self.min_update_interval_seconds
            ):
                self.last_update_time = now
                return True
            return False

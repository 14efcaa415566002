"""Bounded-concurrency execution of transfer units."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import List, Optional, Sequence

from bcp_migrate.exceptions import ConfigurationError
from bcp_migrate.models.table_metadata import MigrationReport, TransferResult, TransferUnit
from bcp_migrate.services.transfer_executor import TransferExecutor
from bcp_migrate.utils.logger import StructuredLogger
from bcp_migrate.utils.progress_tracker import ProgressTracker


class ParallelScheduler:
    """Drain a queue of transfer units with a fixed pool of workers."""

    def __init__(self, logger: StructuredLogger, progress_update_interval: int = 10):
        """
        Initialize scheduler.

        Args:
            logger: Structured logger for unit events
            progress_update_interval: Log progress every N completed units

        Raises:
            ConfigurationError: If progress_update_interval is below 1
        """
        if progress_update_interval < 1:
            raise ConfigurationError("progress_update_interval must be at least 1")
        self.logger = logger
        self.progress_update_interval = progress_update_interval
        self.tracker: Optional[ProgressTracker] = None

    async def execute(
        self,
        units: Sequence[TransferUnit],
        max_concurrency: int,
        executor: TransferExecutor,
    ) -> MigrationReport:
        """
        Run every unit through ``executor`` with at most ``max_concurrency`` in flight.

        A failed unit is recorded and the pool moves on. The report is built
        only after every unit has finished.

        Args:
            units: Units in dispatch order
            max_concurrency: Number of workers
            executor: Transfer executor

        Returns:
            Aggregate migration report
        """
        if max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")

        started = time.monotonic()
        queue: asyncio.Queue = asyncio.Queue()
        for position, unit in enumerate(units):
            queue.put_nowait((position, unit))

        results: List[Optional[TransferResult]] = [None] * len(units)
        self.tracker = ProgressTracker(
            total=len(units), update_interval=self.progress_update_interval
        )

        worker_count = min(max_concurrency, len(units))
        self.logger.info(
            f"Transferring {len(units)} units with {worker_count} workers"
        )
        workers = [
            asyncio.create_task(self._worker(queue, results, executor))
            for _ in range(worker_count)
        ]
        await asyncio.gather(*workers)

        report = MigrationReport.from_results(
            [r for r in results if r is not None], time.monotonic() - started
        )
        self.logger.info(
            "Transfer phase finished",
            total_units=report.total_units,
            successful=report.successful_units,
            failed=report.failed_units,
            duration_seconds=round(report.duration, 2),
        )
        return report

    async def _worker(
        self,
        queue: asyncio.Queue,
        results: List[Optional[TransferResult]],
        executor: TransferExecutor,
    ) -> None:
        while True:
            try:
                position, unit = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                results[position] = await self.run_unit(unit, executor)
            finally:
                queue.task_done()

    async def run_unit(
        self, unit: TransferUnit, executor: TransferExecutor
    ) -> TransferResult:
        """Export then import one unit, always removing its temporary file."""
        tracker = self.tracker or ProgressTracker(total=1)
        tracker.start_unit()
        started_at = datetime.now()
        start = time.monotonic()
        result = TransferResult(
            unit=unit.label,
            table=unit.table.ref,
            success=False,
            chunk_id=unit.chunk.chunk_id if unit.chunk else None,
            started_at=started_at,
        )

        try:
            artifact = await executor.export_unit(unit)
            result.source_rows = artifact.rows
            result.bytes_transferred = artifact.size_bytes
            result.target_rows = await executor.import_unit(unit, artifact)
            result.success = True
        except Exception as e:
            result.error = str(e) or type(e).__name__
        finally:
            try:
                executor.cleanup(unit)
            except Exception as e:
                self.logger.warning(f"Cleanup failed for {unit.label}: {e}")

        result.finished_at = datetime.now()
        result.duration = time.monotonic() - start
        tracker.finish_unit(result.success)

        if result.success:
            self.logger.log_migration_event(
                "unit_complete",
                unit.label,
                rows_migrated=result.target_rows or 0,
                duration=result.duration,
                bytes=result.bytes_transferred,
            )
        else:
            self.logger.error(
                f"Transfer failed for {unit.label}", error=result.error
            )

        if tracker.should_update():
            snapshot = tracker.snapshot()
            self.logger.info(
                f"Progress: {snapshot.completed}/{snapshot.total} units "
                f"({snapshot.percent:.0f}%)",
                successful=snapshot.successful,
                failed=snapshot.failed,
            )
        return result

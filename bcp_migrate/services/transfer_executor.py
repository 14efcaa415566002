"""Run the native bcp utility to export and import transfer units."""

from __future__ import annotations

import asyncio
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from bcp_migrate.exceptions import TransferUnitError
from bcp_migrate.models.table_metadata import (
    ROW_NUMBER_COLUMN,
    ConnectionConfig,
    KeyRangePredicate,
    RowWindowPredicate,
    TransferUnit,
    quote_identifier,
)
from bcp_migrate.utils.logger import SafeLogger, StructuredLogger

_ROWS_COPIED = re.compile(r"(\d+)\s+rows?\s+copied", re.IGNORECASE)


@dataclass(frozen=True)
class Artifact:
    """Native-format file produced by an export."""

    path: Path
    rows: Optional[int] = None
    size_bytes: int = 0


class TransferExecutor(Protocol):
    async def export_unit(self, unit: TransferUnit) -> Artifact: ...

    async def import_unit(self, unit: TransferUnit, artifact: Artifact) -> int: ...

    def cleanup(self, unit: TransferUnit) -> None: ...


def parse_rows_copied(output: str) -> Optional[int]:
    """Read the ``N rows copied.`` summary printed by bcp."""
    match = _ROWS_COPIED.search(output or "")
    return int(match.group(1)) if match else None


class BcpTransferExecutor:
    """Transfer executor backed by the ``bcp`` command line tool."""

    def __init__(
        self,
        source: ConnectionConfig,
        destination: ConnectionConfig,
        logger: StructuredLogger,
        temp_dir: Optional[str] = None,
        bcp_path: str = "bcp",
        batch_size: int = 10000,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the executor.

        Args:
            source: Source connection (exports only)
            destination: Destination connection (imports only)
            logger: Logger instance
            temp_dir: Directory for native-format files
            bcp_path: bcp executable
            batch_size: Rows per committed import batch
            timeout: Per-command timeout in seconds, None for no limit
        """
        self.source = source
        self.destination = destination
        self.logger = logger
        self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir()) / "bcp_migrate"
        self.bcp_path = bcp_path
        self.batch_size = batch_size
        self.timeout = timeout

    def artifact_path(self, unit: TransferUnit) -> Path:
        return self.temp_dir / unit.artifact_name

    def extraction_query(self, unit: TransferUnit) -> Optional[str]:
        """
        Build the SELECT for a chunked unit; None exports the whole table.

        Raises:
            TransferUnitError: If a row-window chunk has no column list or
                no row order
        """
        if unit.chunk is None:
            return None

        table = unit.table.ref.quoted
        predicate = unit.chunk.predicate
        columns = ", ".join(quote_identifier(c) for c in unit.columns) or "*"

        if isinstance(predicate, KeyRangePredicate):
            return f"SELECT {columns} FROM {table} WHERE {predicate.to_sql()}"

        if isinstance(predicate, RowWindowPredicate):
            if not unit.columns:
                raise TransferUnitError(
                    f"Row-window chunk of {unit.table.ref} needs an explicit column list"
                )
            if not predicate.order_by:
                raise TransferUnitError(
                    f"Row-window chunk of {unit.table.ref} needs a unique row order"
                )
            return (
                f"SELECT {columns} FROM ("
                f"SELECT {columns}, ROW_NUMBER() OVER (ORDER BY {predicate.order_clause()}) "
                f"AS {quote_identifier(ROW_NUMBER_COLUMN)} FROM {table}"
                f") AS src WHERE {predicate.to_sql()}"
            )

        raise TransferUnitError(f"Unsupported chunk predicate: {predicate!r}")

    def export_command(self, unit: TransferUnit, artifact: Path) -> List[str]:
        query = self.extraction_query(unit)
        if query is None:
            head = [self.bcp_path, unit.table.ref.quoted, "out", str(artifact)]
        else:
            head = [self.bcp_path, query, "queryout", str(artifact)]
        return head + ["-n", "-q"] + self.source.bcp_args()

    def import_command(self, unit: TransferUnit, artifact: Path) -> List[str]:
        command = [
            self.bcp_path,
            unit.table.ref.quoted,
            "in",
            str(artifact),
            "-n",
            "-q",
            "-b",
            str(self.batch_size),
        ] + self.destination.bcp_args()
        if unit.table.has_identity:
            command.append("-E")
        # Chunks of one table load concurrently, so only whole-table loads lock the table
        if unit.chunk is None:
            command += ["-h", "TABLOCK"]
        return command

    async def export_unit(self, unit: TransferUnit) -> Artifact:
        """Export one unit from the source into its native-format file."""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        path = self.artifact_path(unit)
        output = await self._run(self.export_command(unit, path), unit, "export")
        size = path.stat().st_size if path.exists() else 0
        return Artifact(path=path, rows=parse_rows_copied(output), size_bytes=size)

    async def import_unit(self, unit: TransferUnit, artifact: Artifact) -> int:
        """Import an exported file into the destination; returns rows imported."""
        output = await self._run(self.import_command(unit, artifact.path), unit, "import")
        rows = parse_rows_copied(output)
        if rows is None:
            return artifact.rows or 0
        return rows

    def cleanup(self, unit: TransferUnit) -> None:
        """Remove the unit's file; problems are only logged."""
        path = self.artifact_path(unit)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove {path}: {e}")

    async def _run(self, command: List[str], unit: TransferUnit, step: str) -> str:
        self.logger.debug(
            f"Running bcp {step} for {unit.label}",
            command=" ".join(SafeLogger.sanitize_command(command)),
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransferUnitError(f"Could not start bcp for {unit.label}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TransferUnitError(
                f"bcp {step} for {unit.label} timed out after {self.timeout}s"
            )

        output = stdout.decode(errors="replace") if stdout else ""
        if process.returncode != 0:
            errors = stderr.decode(errors="replace") if stderr else ""
            message = (errors.strip() or output.strip() or "Unknown error")[-2000:]
            raise TransferUnitError(
                f"bcp {step} for {unit.label} failed (exit {process.returncode}): {message}"
            )
        return output

"""Foreign key backup, drop and restore around the transfer phase."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from bcp_migrate.database.metadata import MetadataProvider
from bcp_migrate.database.mssql_client import MSSQLClient
from bcp_migrate.exceptions import BackupError, ConstraintOperationError
from bcp_migrate.models.table_metadata import ForeignKeyConstraint, TableRef
from bcp_migrate.utils.logger import StructuredLogger


class LifecycleState(str, Enum):
    NOT_STARTED = "not_started"
    BACKED_UP = "backed_up"
    DROPPED = "dropped"
    RESTORED = "restored"


@dataclass
class ConstraintSet:
    """Foreign keys captured from the destination for one run."""

    constraints: List[ForeignKeyConstraint] = field(default_factory=list)
    drop_script_path: Optional[str] = None
    create_script_path: Optional[str] = None
    state: LifecycleState = LifecycleState.NOT_STARTED
    dropped: List[ForeignKeyConstraint] = field(default_factory=list)
    failures: List[ConstraintOperationError] = field(default_factory=list)

    @property
    def backup_paths(self) -> List[str]:
        return [p for p in (self.drop_script_path, self.create_script_path) if p]


class ConstraintService:
    """Service for the backup → drop → restore foreign key lifecycle."""

    def __init__(
        self,
        logger: StructuredLogger,
        backup_dir: str = "backups",
        metadata_factory: Callable[[MSSQLClient], MetadataProvider] = MetadataProvider,
    ):
        """
        Initialize constraint service.

        Args:
            logger: Logger instance
            backup_dir: Directory where drop/create scripts are written
            metadata_factory: Builds the metadata provider for a client
        """
        self.logger = logger
        self.backup_dir = backup_dir
        self.metadata_factory = metadata_factory

    async def backup(
        self,
        destination: MSSQLClient,
        tables: Optional[Iterable[TableRef]] = None,
        backup_dir: Optional[str] = None,
    ) -> ConstraintSet:
        """
        Capture foreign keys on the destination and persist their scripts.

        Args:
            destination: Destination database client
            tables: Limit to foreign keys owned by or referencing these tables
            backup_dir: Directory for this backup, defaults to the service's

        Returns:
            Constraint set in the backed-up state
        """
        constraints = await self.metadata_factory(destination).list_foreign_keys()
        if tables is not None:
            selected = set(tables)
            constraints = [
                fk
                for fk in constraints
                if fk.parent in selected or fk.referenced in selected
            ]

        constraint_set = ConstraintSet(constraints=constraints)
        drop_path, create_path = self.write_scripts(
            constraints, destination.database, backup_dir
        )
        constraint_set.drop_script_path = drop_path
        constraint_set.create_script_path = create_path
        constraint_set.state = LifecycleState.BACKED_UP

        self.logger.info(
            f"Backed up {len(constraints)} foreign keys",
            drop_script=drop_path,
            create_script=create_path,
        )
        return constraint_set

    def write_scripts(
        self,
        constraints: List[ForeignKeyConstraint],
        database: str,
        backup_dir: Optional[str] = None,
    ) -> tuple:
        """
        Write drop and create scripts, one GO-separated batch per constraint.

        Returns:
            Tuple of (drop script path, create script path)
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        directory = Path(backup_dir or self.backup_dir)
        drop_path = directory / f"{database}_drop_foreign_keys_{timestamp}.sql"
        create_path = directory / f"{database}_create_foreign_keys_{timestamp}.sql"

        try:
            directory.mkdir(parents=True, exist_ok=True)
            drop_path.write_text(
                self._render_script(
                    "Drop", database, [fk.drop_script for fk in constraints]
                ),
                encoding="utf-8",
            )
            create_path.write_text(
                self._render_script(
                    "Create", database, [fk.create_script for fk in constraints]
                ),
                encoding="utf-8",
            )
        except OSError as e:
            raise BackupError(f"Could not write foreign key backup: {e}") from e

        return str(drop_path), str(create_path)

    @staticmethod
    def _render_script(action: str, database: str, statements: List[str]) -> str:
        lines = [
            f"-- {action} foreign keys for database [{database}]",
            f"-- Generated {datetime.now().isoformat(timespec='seconds')}",
            "",
        ]
        for statement in statements:
            lines += [statement, "GO", ""]
        return "\n".join(lines)

    async def drop(
        self, destination: MSSQLClient, constraint_set: ConstraintSet
    ) -> List[ConstraintOperationError]:
        """
        Drop every backed-up constraint; a failed drop does not stop the rest.

        Returns:
            Errors for constraints that could not be dropped
        """
        if constraint_set.state != LifecycleState.BACKED_UP:
            raise BackupError("Foreign keys must be backed up before they are dropped")

        errors: List[ConstraintOperationError] = []
        for fk in constraint_set.constraints:
            try:
                await destination.execute(fk.drop_script)
                constraint_set.dropped.append(fk)
            except Exception as e:
                error = ConstraintOperationError(str(fk), "DROP", str(e))
                errors.append(error)
                self.logger.warning(str(error))

        constraint_set.state = LifecycleState.DROPPED
        constraint_set.failures.extend(errors)
        self.logger.info(
            f"Dropped {len(constraint_set.dropped)} of "
            f"{len(constraint_set.constraints)} foreign keys"
        )
        return errors

    async def restore(
        self, destination: MSSQLClient, constraint_set: ConstraintSet
    ) -> List[ConstraintOperationError]:
        """
        Recreate every constraint that was dropped.

        Failures are logged and returned, never raised; the create script on
        disk stays available for manual reapplication.

        Returns:
            Errors for constraints that could not be recreated
        """
        if constraint_set.state != LifecycleState.DROPPED:
            self.logger.info("No dropped foreign keys to restore")
            return []

        errors: List[ConstraintOperationError] = []
        for fk in constraint_set.dropped:
            try:
                await destination.execute_script(fk.create_script)
            except Exception as e:
                error = ConstraintOperationError(str(fk), "CREATE", str(e))
                errors.append(error)
                self.logger.error(str(error))

        constraint_set.state = LifecycleState.RESTORED
        constraint_set.failures.extend(errors)
        restored = len(constraint_set.dropped) - len(errors)
        if errors:
            self.logger.error(
                f"Restored {restored} of {len(constraint_set.dropped)} foreign keys",
                create_script=constraint_set.create_script_path,
            )
        else:
            self.logger.info(f"Restored {restored} foreign keys")
        return errors

    async def restore_from_file(
        self, destination: MSSQLClient, script_path: str
    ) -> List[ConstraintOperationError]:
        """
        Replay a persisted create script batch by batch.

        Args:
            destination: Destination database client
            script_path: Path to a create script written by :meth:`backup`

        Returns:
            Errors for batches that failed
        """
        path = Path(script_path)
        if not path.exists():
            raise FileNotFoundError(f"Backup script not found: {script_path}")

        batches = MSSQLClient.split_batches(path.read_text(encoding="utf-8"))
        self.logger.info(f"Replaying {len(batches)} statements from {script_path}")

        errors: List[ConstraintOperationError] = []
        for number, batch in enumerate(batches, start=1):
            try:
                await destination.execute_script(batch)
            except Exception as e:
                error = ConstraintOperationError(f"batch {number}", "CREATE", str(e))
                errors.append(error)
                self.logger.error(str(error))
        return errors

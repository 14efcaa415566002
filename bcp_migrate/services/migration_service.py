"""Migration service for orchestrating data migration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from bcp_migrate.database.metadata import MetadataProvider
from bcp_migrate.database.mssql_client import MSSQLClient
from bcp_migrate.exceptions import ConfigurationError, MigrationError
from bcp_migrate.models.table_metadata import (
    ChunkPlan,
    DependencyEdge,
    MigrationConfig,
    MigrationReport,
    TableDescriptor,
    TableRef,
    TransferUnit,
)
from bcp_migrate.services.chunk_planner import ChunkPlanner
from bcp_migrate.services.constraint_service import ConstraintService
from bcp_migrate.services.scheduler import ParallelScheduler
from bcp_migrate.services.transfer_executor import TransferExecutor
from bcp_migrate.utils.dependency import DependencyAnalyzer
from bcp_migrate.utils.logger import StructuredLogger


@dataclass
class MigrationPlan:
    """Everything decided before the destination is touched."""

    tables: List[TableDescriptor]
    levels: List[List[TableDescriptor]] = field(default_factory=list)
    broken_edges: List[DependencyEdge] = field(default_factory=list)
    chunk_plans: Dict[TableRef, ChunkPlan] = field(default_factory=dict)
    units: List[TransferUnit] = field(default_factory=list)


class MigrationService:
    """Service orchestrating a full copy from source to destination."""

    def __init__(
        self,
        source: MSSQLClient,
        destination: MSSQLClient,
        dependency_analyzer: DependencyAnalyzer,
        chunk_planner: ChunkPlanner,
        constraint_service: ConstraintService,
        scheduler: ParallelScheduler,
        executor: TransferExecutor,
        logger: StructuredLogger,
        metadata_factory: Callable[[MSSQLClient], MetadataProvider] = MetadataProvider,
    ):
        """
        Initialize migration service.

        Args:
            source: Source database client (read-only)
            destination: Destination database client
            dependency_analyzer: Resolver for table order
            chunk_planner: Planner splitting large tables
            constraint_service: Foreign key lifecycle manager
            scheduler: Parallel unit scheduler
            executor: Transfer executor used by the scheduler
            logger: Structured logger for migration events
            metadata_factory: Builds a metadata provider for a client
        """
        self.source = source
        self.destination = destination
        self.dependency_analyzer = dependency_analyzer
        self.chunk_planner = chunk_planner
        self.constraint_service = constraint_service
        self.scheduler = scheduler
        self.executor = executor
        self.logger = logger
        self.metadata_factory = metadata_factory

    def select_tables(
        self, tables: Sequence[TableDescriptor], config: MigrationConfig
    ) -> List[TableDescriptor]:
        """
        Apply the schema and table filters of ``config``.

        Raises:
            ConfigurationError: If an explicitly included table does not exist
        """
        selected = list(tables)

        if config.include_schemas:
            schemas = {s.lower() for s in config.include_schemas}
            selected = [t for t in selected if t.schema.lower() in schemas]

        if config.include_tables:
            wanted = {self._key(TableRef.parse(name)) for name in config.include_tables}
            available = {self._key(t.ref) for t in selected}
            missing = sorted(".".join(k) for k in wanted - available)
            if missing:
                raise ConfigurationError(f"Unknown tables: {', '.join(missing)}")
            selected = [t for t in selected if self._key(t.ref) in wanted]

        if config.exclude_tables:
            excluded = {self._key(TableRef.parse(name)) for name in config.exclude_tables}
            selected = [t for t in selected if self._key(t.ref) not in excluded]

        return selected

    @staticmethod
    def _key(ref: TableRef) -> tuple:
        return (ref.schema.lower(), ref.name.lower())

    async def build_plan(self, config: MigrationConfig) -> MigrationPlan:
        """
        Resolve table order and expand every table into transfer units.

        Only reads metadata from the source.

        Args:
            config: Migration configuration

        Returns:
            Migration plan
        """
        metadata = self.metadata_factory(self.source)
        tables = self.select_tables(await metadata.list_tables(), config)
        if not tables:
            raise ConfigurationError("No tables selected for migration")

        # Dependencies come from the source, whose foreign keys are never dropped
        edges = await self.dependency_analyzer.analyze_dependencies(metadata)
        for table in self.dependency_analyzer.get_self_referencing_tables(edges):
            self.logger.info(f"Self-referencing foreign key on {table} ignored for ordering")

        resolution = self.dependency_analyzer.resolve(tables, edges)
        self.logger.info(
            f"Analyzed dependencies: {len(resolution.order)} tables in "
            f"{len(resolution.levels)} levels",
            broken_edges=len(resolution.broken_edges),
        )

        plan = MigrationPlan(
            tables=resolution.order,
            levels=resolution.levels,
            broken_edges=resolution.broken_edges,
        )
        for table in resolution.order:
            chunk_plan = await self.chunk_planner.plan_table(
                metadata,
                table,
                enabled=config.chunking_enabled,
                threshold_mb=config.chunking_threshold_mb,
                max_chunk_mb=config.max_chunk_size_mb,
                max_chunks=config.max_chunks_per_table,
            )
            columns: List[str] = []
            if chunk_plan.is_chunked:
                try:
                    columns = await metadata.get_columns(table.ref)
                except Exception as e:
                    self.logger.debug(f"Column list unavailable for {table}: {e}")
                    chunk_plan = ChunkPlan.unchunked(table.ref)

            plan.chunk_plans[table.ref] = chunk_plan
            if chunk_plan.is_chunked:
                plan.units.extend(
                    TransferUnit.create(table, chunk, columns) for chunk in chunk_plan.chunks
                )
            else:
                plan.units.append(TransferUnit.create(table))

        return plan

    async def truncate_tables(self, tables: Sequence[TableDescriptor]) -> None:
        """Empty destination tables, dependents first."""
        for table in reversed(list(tables)):
            try:
                await self.destination.truncate_table(table.ref)
            except Exception as e:
                raise MigrationError(f"Could not truncate {table}: {e}") from e
        self.logger.info(f"Truncated {len(tables)} destination tables")

    async def run(
        self, config: MigrationConfig, plan: Optional[MigrationPlan] = None
    ) -> MigrationReport:
        """
        Run a full migration.

        Foreign keys are restored whenever they were dropped, even when
        units failed or truncation aborted the run.

        Args:
            config: Migration configuration
            plan: Previously built plan, built here when omitted

        Returns:
            Migration report
        """
        if plan is None:
            plan = await self.build_plan(config)

        constraint_set = await self.constraint_service.backup(
            self.destination,
            [t.ref for t in plan.tables],
            backup_dir=config.backup_dir,
        )

        report: Optional[MigrationReport] = None
        try:
            await self.constraint_service.drop(self.destination, constraint_set)
            if config.truncate_destination:
                await self.truncate_tables(plan.tables)
            report = await self.scheduler.execute(
                plan.units, config.max_concurrency, self.executor
            )
        finally:
            await self.constraint_service.restore(self.destination, constraint_set)

        report.constraint_failures = [str(e) for e in constraint_set.failures]
        report.backup_paths = constraint_set.backup_paths
        report.broken_edges = plan.broken_edges
        return report

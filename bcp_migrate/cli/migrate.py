import asyncio
from typing import List, Optional

import typer
from rich.table import Table

from bcp_migrate.config import DBConfig, optional_timeout
from bcp_migrate.database.mssql_client import MSSQLClient
from bcp_migrate.exceptions import MigrationError
from bcp_migrate.models.table_metadata import MigrationReport
from bcp_migrate.services.chunk_planner import ChunkPlanner
from bcp_migrate.services.constraint_service import ConstraintService
from bcp_migrate.services.migration_service import MigrationPlan, MigrationService
from bcp_migrate.services.scheduler import ParallelScheduler
from bcp_migrate.services.transfer_executor import BcpTransferExecutor
from bcp_migrate.utils.dependency import DependencyAnalyzer
from bcp_migrate.utils.logger import StructuredLogger
from bcp_migrate.cli.constants import console, get_logger
from bcp_migrate.cli.options import (
    get_force_option,
    get_table_option,
    get_verbose_option,
    table_overrides,
    validate_max_concurrency,
)


def build_migration_service(
    cfg: DBConfig,
    source: MSSQLClient,
    destination: MSSQLClient,
    logger: StructuredLogger,
) -> MigrationService:
    """Wire every collaborator of a migration run."""
    return MigrationService(
        source=source,
        destination=destination,
        dependency_analyzer=DependencyAnalyzer(logger),
        chunk_planner=ChunkPlanner(
            logger,
            enabled=cfg.chunking_enabled,
            threshold_mb=cfg.chunking_threshold_mb,
            max_chunk_mb=cfg.max_chunk_size_mb,
            max_chunks=cfg.max_chunks_per_table,
        ),
        constraint_service=ConstraintService(logger, backup_dir=cfg.backup_dir),
        scheduler=ParallelScheduler(logger),
        executor=BcpTransferExecutor(
            cfg.source,
            cfg.destination,
            logger,
            temp_dir=cfg.temp_dir,
            bcp_path=cfg.bcp_path,
            batch_size=cfg.bcp_batch_size,
            timeout=optional_timeout(cfg.unit_timeout_seconds),
        ),
        logger=logger,
    )


def print_plan(plan: MigrationPlan) -> None:
    plan_table = Table(title="Migration Plan", show_header=True, header_style="bold cyan")
    plan_table.add_column("#", justify="right")
    plan_table.add_column("Table", style="cyan")
    plan_table.add_column("Level", justify="right")
    plan_table.add_column("Strategy", style="yellow")
    plan_table.add_column("Units", justify="right")

    level_of = {t.ref: i + 1 for i, level in enumerate(plan.levels) for t in level}
    for position, table in enumerate(plan.tables, start=1):
        chunk_plan = plan.chunk_plans.get(table.ref)
        strategy = chunk_plan.strategy if chunk_plan else "unchunked"
        units = len(chunk_plan.chunks) if chunk_plan and chunk_plan.is_chunked else 1
        plan_table.add_row(
            str(position), str(table), str(level_of.get(table.ref, "")), strategy, str(units)
        )
    console.print(plan_table)

    for edge in plan.broken_edges:
        console.print(f"[yellow]Cycle broken at foreign key edge {edge}[/yellow]")
    console.print(f"[cyan]{len(plan.units)} transfer units[/cyan]")


def print_report(report: MigrationReport) -> None:
    console.rule("[bold cyan]Migration Results[/bold cyan]")
    for result in report.results:
        if result.success:
            console.print(
                f"[green]✓ {result.unit}: {result.target_rows or 0:,} rows in {result.duration:.2f}s[/green]"
            )
        else:
            console.print(f"[red]✗ {result.unit}: {result.error}[/red]")

    for failure in report.constraint_failures:
        console.print(f"[red]  - {failure}[/red]")
    if report.constraint_failures and report.backup_paths:
        console.print(
            f"[yellow]Foreign key scripts kept for manual recovery: {', '.join(report.backup_paths)}[/yellow]"
        )

    console.print(
        f"Units: {report.total_units}  succeeded: {report.successful_units}  "
        f"failed: {report.failed_units}  rows: {report.total_rows:,}  "
        f"bytes: {report.total_bytes:,}"
    )


def register_migrate_commands(app: typer.Typer) -> None:
    """Register migration commands."""

    @app.command("plan")
    def plan(
        tables: Optional[List[str]] = get_table_option(),
        no_chunking: bool = typer.Option(False, "--no-chunking", help="Move every table as one unit"),
        verbose: bool = get_verbose_option(),
    ):
        """Show table order and chunking without touching the destination."""
        cfg = DBConfig()
        logger = get_logger(cfg.log_file, verbose)
        config = cfg.migration_config(
            include_tables=table_overrides(tables),
            chunking_enabled=False if no_chunking else None,
        )

        async def _run():
            source = MSSQLClient(cfg.source)
            destination = MSSQLClient(cfg.destination)
            try:
                await source.connect()
                service = build_migration_service(cfg, source, destination, logger)
                print_plan(await service.build_plan(config))
            except MigrationError as e:
                console.print(f"[red]Error: {e}[/red]")
                raise typer.Exit(1)
            finally:
                await source.close()

        asyncio.run(_run())

    @app.command("migrate")
    def migrate(
        force: bool = get_force_option(),
        tables: Optional[List[str]] = get_table_option(),
        max_concurrency: Optional[int] = typer.Option(
            None, "--max-concurrency", "-j", callback=validate_max_concurrency,
            help="Transfers running at once (default: MAX_CONCURRENCY)",
        ),
        no_chunking: bool = typer.Option(False, "--no-chunking", help="Move every table as one unit"),
        no_truncate: bool = typer.Option(False, "--no-truncate", help="Keep existing destination rows"),
        verbose: bool = get_verbose_option(),
    ):
        """Copy all selected tables from source to destination.

        1. Resolves table order from foreign keys
        2. Plans chunks for large tables
        3. Backs up and drops destination foreign keys
        4. Truncates destination tables (unless --no-truncate)
        5. Runs bcp export/import for every unit in parallel
        6. Restores foreign keys
        """
        cfg = DBConfig()
        logger = get_logger(cfg.log_file, verbose)
        config = cfg.migration_config(
            include_tables=table_overrides(tables),
            max_concurrency=max_concurrency,
            chunking_enabled=False if no_chunking else None,
            truncate_destination=False if no_truncate else None,
        )

        async def _run() -> MigrationReport:
            source = MSSQLClient(cfg.source)
            destination = MSSQLClient(cfg.destination)
            try:
                await source.connect()
                await destination.connect()
                service = build_migration_service(cfg, source, destination, logger)
                plan = await service.build_plan(config)
                print_plan(plan)

                if not force and not typer.confirm(
                    f"Drop foreign keys and copy {len(plan.units)} units into "
                    f"{cfg.dest_db}@{cfg.dest_host}?"
                ):
                    console.print("[yellow]Cancelled.[/yellow]")
                    raise typer.Exit(0)

                console.rule("[bold cyan]Starting Migration[/bold cyan]")
                return await service.run(config, plan)
            finally:
                await source.close()
                await destination.close()

        try:
            report = asyncio.run(_run())
        except MigrationError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

        print_report(report)
        if report.success and not report.constraint_failures:
            console.rule(
                f"[bold green]Migration completed successfully in {report.duration:.2f}s![/bold green]"
            )
        else:
            console.rule(
                f"[bold yellow]Migration completed with errors in {report.duration:.2f}s[/bold yellow]"
            )
            raise typer.Exit(1)

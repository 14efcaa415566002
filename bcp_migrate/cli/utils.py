import asyncio

import typer
from rich.table import Table

from bcp_migrate.config import DBConfig
from bcp_migrate.database.metadata import MetadataProvider
from bcp_migrate.database.mssql_client import MSSQLClient
from bcp_migrate.exceptions import MigrationError
from bcp_migrate.services.constraint_service import ConstraintService
from bcp_migrate.cli.constants import console, get_logger
from bcp_migrate.cli.options import get_force_option


def register_utils_commands(app: typer.Typer) -> None:
    """Register utility commands."""

    @app.command()
    def check():
        """Test connectivity to both source and destination databases.

        Exits with error code 1 if any connection fails.
        """
        cfg = DBConfig()
        console.rule("[bold cyan]DB CONNECTION CHECK[/bold cyan]")

        async def _check(label: str, client: MSSQLClient) -> bool:
            try:
                await client.connect()
                row = await client.fetch_one("SELECT @@VERSION")
                version = str(row[0]).splitlines()[0] if row and row[0] else ""
                console.print(f"[green]{label} OK[/green] {version}")
                return True
            except Exception as e:
                console.print(f"[red]{label} error:[/red] {e}")
                return False
            finally:
                await client.close()

        async def _run() -> bool:
            source_ok = await _check("Source", MSSQLClient(cfg.source))
            destination_ok = await _check("Destination", MSSQLClient(cfg.destination))
            return source_ok and destination_ok

        if not asyncio.run(_run()):
            raise typer.Exit(1)
        console.print("[bold green]All connections OK[/bold green]")

    @app.command()
    def tables():
        """List source tables with primary key and identity flags."""
        cfg = DBConfig()

        async def _run():
            client = MSSQLClient(cfg.source)
            await client.connect()
            try:
                return await MetadataProvider(client).list_tables()
            finally:
                await client.close()

        table_display = Table(title="Source Tables", show_header=True, header_style="bold cyan")
        table_display.add_column("Schema", style="yellow")
        table_display.add_column("Name", style="cyan")
        table_display.add_column("Primary Key")
        table_display.add_column("Identity")

        try:
            source_tables = asyncio.run(_run())
        except MigrationError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

        for table in source_tables:
            table_display.add_row(
                table.schema,
                table.name,
                "✓" if table.has_primary_key else "",
                "✓" if table.has_identity else "",
            )

        console.print(table_display)

    @app.command("restore-constraints")
    def restore_constraints(
        script: str = typer.Argument(..., help="Create script written by a previous run"),
        force: bool = get_force_option(),
    ):
        """Reapply a foreign key create script to the destination."""
        cfg = DBConfig()
        logger = get_logger(cfg.log_file)

        if not force and not typer.confirm(
            f"Apply {script} to {cfg.dest_db}@{cfg.dest_host}?"
        ):
            console.print("[yellow]Cancelled.[/yellow]")
            return

        async def _run():
            destination = MSSQLClient(cfg.destination)
            await destination.connect()
            try:
                service = ConstraintService(logger, backup_dir=cfg.backup_dir)
                return await service.restore_from_file(destination, script)
            finally:
                await destination.close()

        try:
            errors = asyncio.run(_run())
        except (FileNotFoundError, MigrationError) as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

        if errors:
            for error in errors:
                console.print(f"[red]✗ {error}[/red]")
            raise typer.Exit(1)
        console.print("[bold green]Foreign keys restored[/bold green]")

from __future__ import annotations

import asyncio
from typing import List, Optional

import typer
from rich.table import Table

from bcp_migrate.config import DBConfig
from bcp_migrate.database.metadata import MetadataProvider
from bcp_migrate.database.mssql_client import MSSQLClient
from bcp_migrate.exceptions import MigrationError
from bcp_migrate.models.table_metadata import TableRef
from bcp_migrate.services.validation_service import ValidationService
from bcp_migrate.cli.constants import console, get_logger
from bcp_migrate.cli.options import get_table_option


def register_validate_commands(app: typer.Typer) -> None:
    """Register validation commands."""

    @app.command("validate")
    def validate(tables: Optional[List[str]] = get_table_option()):
        """Compare row counts between source and destination."""
        cfg = DBConfig()
        logger = get_logger(cfg.log_file)

        async def _run():
            source = MSSQLClient(cfg.source)
            destination = MSSQLClient(cfg.destination)
            await source.connect()
            await destination.connect()
            try:
                if tables:
                    refs = [TableRef.parse(name) for name in tables]
                else:
                    refs = [t.ref for t in await MetadataProvider(source).list_tables()]
                service = ValidationService(source, destination, logger)
                return await service.validate_all_tables(refs)
            finally:
                await source.close()
                await destination.close()

        try:
            results = asyncio.run(_run())
        except MigrationError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

        status_table = Table(title="Validation", show_header=True, header_style="bold cyan")
        status_table.add_column("Table", style="cyan")
        status_table.add_column("Source Rows", style="yellow", justify="right")
        status_table.add_column("Destination Rows", style="yellow", justify="right")
        status_table.add_column("Status")

        all_ok = True
        for result in results:
            if result.all_match:
                status = "[green]✓ Match[/green]"
            elif result.errors:
                status = f"[red]✗ {result.errors[0]}[/red]"
                all_ok = False
            else:
                status = "[red]✗ Mismatch[/red]"
                all_ok = False
            status_table.add_row(
                result.table, f"{result.source_count:,}", f"{result.dest_count:,}", status
            )

        console.print(status_table)
        if all_ok:
            console.print("[bold green]All tables match![/bold green]")
        else:
            console.print("[bold red]Validation failed: row counts mismatch[/bold red]")
            raise typer.Exit(1)

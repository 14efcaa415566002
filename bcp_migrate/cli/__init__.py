import typer

from . import migrate, utils, validate

app = typer.Typer(help="SQL Server → SQL Server bulk copy migration tool (bcp)")

migrate.register_migrate_commands(app)
utils.register_utils_commands(app)
validate.register_validate_commands(app)

__all__ = ["app"]

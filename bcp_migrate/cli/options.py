from __future__ import annotations

from typing import List, Optional

import typer


def get_force_option() -> typer.Option:
    """Get force option factory."""
    return typer.Option(
        False, "--force", "-f", help="Skip confirmation prompts"
    )


def get_table_option() -> typer.Option:
    """Get table filter option factory."""
    return typer.Option(
        None,
        "--table",
        "-t",
        help="Table to migrate as schema.table (repeatable, default: all tables)",
    )


def get_verbose_option() -> typer.Option:
    return typer.Option(False, "--verbose", "-v", help="Log bcp command lines")


def validate_max_concurrency(value: Optional[int]) -> Optional[int]:
    """Validate max concurrency is positive."""
    if value is not None and value <= 0:
        raise typer.BadParameter("--max-concurrency must be greater than 0")
    return value


def table_overrides(tables: Optional[List[str]]) -> Optional[List[str]]:
    """Map an empty --table option to "no override"."""
    return list(tables) if tables else None

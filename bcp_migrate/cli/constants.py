import logging
from typing import Optional

from rich.console import Console

from bcp_migrate.utils.logger import StructuredLogger

console = Console()


def get_logger(log_file: Optional[str] = None, verbose: bool = False) -> StructuredLogger:
    """Build the logger handed to every service of one command."""
    level = logging.DEBUG if verbose else logging.INFO
    return StructuredLogger("bcp_migrate", level=level, log_file=log_file)

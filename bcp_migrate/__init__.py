"""SQL Server bulk copy migration tool."""

from __future__ import annotations

from bcp_migrate.services.migration_service import MigrationService
from bcp_migrate.utils.dependency import DependencyAnalyzer

__version__ = "0.1.0"
__all__ = ["DependencyAnalyzer", "MigrationService", "__version__"]

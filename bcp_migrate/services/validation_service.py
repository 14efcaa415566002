"""Validation service for data integrity checks."""

from __future__ import annotations

from typing import List, Sequence

from bcp_migrate.database.mssql_client import MSSQLClient
from bcp_migrate.models.table_metadata import TableRef, ValidationResult
from bcp_migrate.utils.logger import StructuredLogger


class ValidationService:
    """Compare row counts between source and destination."""

    def __init__(
        self,
        source: MSSQLClient,
        destination: MSSQLClient,
        logger: StructuredLogger,
    ):
        self.source = source
        self.destination = destination
        self.logger = logger

    async def validate_table(self, table: TableRef) -> ValidationResult:
        source_count = await self.source.count_rows(table)
        dest_count = await self.destination.count_rows(table)
        return ValidationResult(
            table=str(table), source_count=source_count, dest_count=dest_count
        )

    async def validate_all_tables(
        self, tables: Sequence[TableRef]
    ) -> List[ValidationResult]:
        """
        Validate all tables.

        Args:
            tables: Tables to compare

        Returns:
            List of validation results
        """
        results: List[ValidationResult] = []
        for table in tables:
            try:
                result = await self.validate_table(table)
                results.append(result)
                if result.all_match:
                    self.logger.info(
                        f"Validation passed: {table}",
                        source_count=result.source_count,
                        dest_count=result.dest_count,
                    )
                else:
                    self.logger.error(
                        f"Validation failed: {table}",
                        source_count=result.source_count,
                        dest_count=result.dest_count,
                    )
            except Exception as e:
                self.logger.error(f"Validation error for {table}: {e}")
                results.append(
                    ValidationResult(
                        table=str(table),
                        source_count=0,
                        dest_count=0,
                        errors=[str(e)],
                    )
                )

        return results

"""SQL Server database client."""

from __future__ import annotations

import asyncio
import re
from typing import Any, List, Optional, Sequence

import pyodbc

from bcp_migrate.exceptions import DatabaseConnectionError
from bcp_migrate.models.table_metadata import ConnectionConfig, TableRef

_GO_LINE = re.compile(r"^\s*GO\s*;?\s*$", re.IGNORECASE)


class MSSQLClient:
    """SQL Server client used for catalog queries and DDL.

    pyodbc is blocking, so every call runs in a worker thread. A lock keeps
    the single connection from being used by two threads at once.
    """

    def __init__(self, config: ConnectionConfig, timeout: int = 30):
        """
        Initialize SQL Server client.

        Args:
            config: Connection descriptor
            timeout: Login timeout in seconds
        """
        self.config = config
        self.timeout = timeout
        self.connection: Optional[pyodbc.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def database(self) -> str:
        return self.config.database

    async def connect(self) -> None:
        """Open an autocommit connection."""
        try:
            self.connection = await asyncio.to_thread(
                pyodbc.connect,
                self.config.odbc_connection_string(),
                autocommit=True,
                timeout=self.timeout,
            )
        except pyodbc.Error as e:
            raise DatabaseConnectionError(
                f"Could not connect to {self.config.server}/{self.config.database}: {e}"
            ) from e

    async def close(self) -> None:
        """Close the connection."""
        if self.connection is not None:
            await asyncio.to_thread(self.connection.close)
            self.connection = None

    async def fetch_all(
        self, sql: str, parameters: Optional[Sequence[Any]] = None
    ) -> List[Any]:
        """
        Execute a query and return all rows.

        Args:
            sql: SQL query to execute
            parameters: Optional query parameters

        Returns:
            List of rows
        """
        return await self._run(self._fetch_all_sync, sql, parameters)

    async def fetch_one(
        self, sql: str, parameters: Optional[Sequence[Any]] = None
    ) -> Optional[Any]:
        """Execute a query and return the first row, or None."""
        return await self._run(self._fetch_one_sync, sql, parameters)

    async def execute(
        self, sql: str, parameters: Optional[Sequence[Any]] = None
    ) -> int:
        """Execute a statement and return the affected row count."""
        return await self._run(self._execute_sync, sql, parameters)

    async def execute_script(self, script: str) -> int:
        """
        Execute every GO-separated batch of a script.

        Returns:
            Number of batches executed
        """
        batches = self.split_batches(script)
        for batch in batches:
            await self.execute(batch)
        return len(batches)

    async def count_rows(self, table: TableRef) -> int:
        row = await self.fetch_one(f"SELECT COUNT_BIG(*) FROM {table.quoted}")
        return int(row[0]) if row else 0

    async def truncate_table(self, table: TableRef) -> None:
        """Truncate a table, falling back to DELETE when TRUNCATE is refused."""
        try:
            await self.execute(f"TRUNCATE TABLE {table.quoted}")
        except pyodbc.Error:
            await self.execute(f"DELETE FROM {table.quoted}")

    @staticmethod
    def split_batches(script: str) -> List[str]:
        """
        Split a T-SQL script into batches on ``GO`` separator lines.

        Args:
            script: Script text

        Returns:
            Non-empty batches with surrounding whitespace removed
        """
        batches: List[str] = []
        current: List[str] = []
        for line in script.splitlines():
            if _GO_LINE.match(line):
                batches.append("\n".join(current))
                current = []
            else:
                current.append(line)
        batches.append("\n".join(current))
        return [b.strip() for b in batches if b.strip() and not _is_comment_only(b)]

    async def _run(self, func, sql: str, parameters: Optional[Sequence[Any]]):
        if self.connection is None:
            raise RuntimeError("SQL Server connection not established")
        async with self._lock:
            return await asyncio.to_thread(func, sql, parameters)

    def _cursor(self, sql: str, parameters: Optional[Sequence[Any]]) -> pyodbc.Cursor:
        cursor = self.connection.cursor()
        if parameters:
            cursor.execute(sql, list(parameters))
        else:
            cursor.execute(sql)
        return cursor

    def _fetch_all_sync(self, sql: str, parameters: Optional[Sequence[Any]]) -> List[Any]:
        cursor = self._cursor(sql, parameters)
        try:
            return cursor.fetchall()
        finally:
            cursor.close()

    def _fetch_one_sync(self, sql: str, parameters: Optional[Sequence[Any]]) -> Optional[Any]:
        cursor = self._cursor(sql, parameters)
        try:
            return cursor.fetchone()
        finally:
            cursor.close()

    def _execute_sync(self, sql: str, parameters: Optional[Sequence[Any]]) -> int:
        cursor = self._cursor(sql, parameters)
        try:
            return cursor.rowcount
        finally:
            cursor.close()


def _is_comment_only(batch: str) -> bool:
    return all(
        not line.strip() or line.strip().startswith("--") for line in batch.splitlines()
    )

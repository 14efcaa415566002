"""Catalog queries against SQL Server system views."""

from __future__ import annotations

from itertools import groupby
from typing import List, Optional, Tuple

from bcp_migrate.database.mssql_client import MSSQLClient
from bcp_migrate.models.table_metadata import (
    DependencyEdge,
    ForeignKeyConstraint,
    KeyColumnInfo,
    KeyRange,
    KeyType,
    TableDescriptor,
    TableRef,
    TableSize,
    quote_identifier,
)

INTEGER_TYPES = {"tinyint", "smallint", "int", "bigint"}
DECIMAL_TYPES = {"decimal", "numeric", "money", "smallmoney", "float", "real"}
TEMPORAL_TYPES = {
    "date",
    "datetime",
    "datetime2",
    "smalldatetime",
    "datetimeoffset",
    "time",
}
IDENTIFIER_TYPES = {"uniqueidentifier"}


def classify_type(type_name: str) -> KeyType:
    """Map a SQL Server type name to a key type category."""
    name = (type_name or "").lower()
    if name in INTEGER_TYPES:
        return KeyType.INTEGER
    if name in DECIMAL_TYPES:
        return KeyType.DECIMAL
    if name in TEMPORAL_TYPES:
        return KeyType.TEMPORAL
    if name in IDENTIFIER_TYPES:
        return KeyType.IDENTIFIER
    return KeyType.OTHER


class MetadataProvider:
    """Read-only metadata about one database."""

    def __init__(self, client: MSSQLClient):
        self.client = client

    async def list_tables(self) -> List[TableDescriptor]:
        """List user tables with their primary key and identity flags."""
        rows = await self.client.fetch_all(
            """
            SELECT
                s.name,
                t.name,
                CAST(OBJECTPROPERTY(t.object_id, 'TableHasPrimaryKey') AS bit),
                CAST(OBJECTPROPERTY(t.object_id, 'TableHasIdentity') AS bit)
            FROM sys.tables AS t
            JOIN sys.schemas AS s ON s.schema_id = t.schema_id
            WHERE t.is_ms_shipped = 0
            ORDER BY s.name, t.name
            """
        )
        return [
            TableDescriptor(
                schema=row[0],
                name=row[1],
                has_primary_key=bool(row[2]),
                has_identity=bool(row[3]),
            )
            for row in rows
        ]

    async def list_foreign_keys(self) -> List[ForeignKeyConstraint]:
        """List foreign keys with their columns in key order."""
        rows = await self.client.fetch_all(
            """
            SELECT
                fk.name,
                ps.name,
                pt.name,
                pc.name,
                rs.name,
                rt.name,
                rc.name,
                fk.delete_referential_action_desc,
                fk.update_referential_action_desc,
                fk.is_not_trusted,
                fk.is_disabled
            FROM sys.foreign_keys AS fk
            JOIN sys.foreign_key_columns AS fkc
                ON fkc.constraint_object_id = fk.object_id
            JOIN sys.tables AS pt ON pt.object_id = fk.parent_object_id
            JOIN sys.schemas AS ps ON ps.schema_id = pt.schema_id
            JOIN sys.columns AS pc
                ON pc.object_id = fkc.parent_object_id
                AND pc.column_id = fkc.parent_column_id
            JOIN sys.tables AS rt ON rt.object_id = fk.referenced_object_id
            JOIN sys.schemas AS rs ON rs.schema_id = rt.schema_id
            JOIN sys.columns AS rc
                ON rc.object_id = fkc.referenced_object_id
                AND rc.column_id = fkc.referenced_column_id
            ORDER BY ps.name, pt.name, fk.name, fkc.constraint_column_id
            """
        )

        constraints: List[ForeignKeyConstraint] = []
        for (schema, table, name), group in groupby(
            rows, key=lambda r: (r[1], r[2], r[0])
        ):
            columns = list(group)
            first = columns[0]
            constraints.append(
                ForeignKeyConstraint(
                    name=name,
                    parent=TableRef(schema, table),
                    parent_columns=tuple(r[3] for r in columns),
                    referenced=TableRef(first[4], first[5]),
                    referenced_columns=tuple(r[6] for r in columns),
                    delete_action=first[7],
                    update_action=first[8],
                    is_trusted=not bool(first[9]),
                    is_disabled=bool(first[10]),
                )
            )
        return constraints

    async def list_table_dependencies(self) -> List[DependencyEdge]:
        """One edge per foreign key, from the owning table to the referenced one."""
        return [
            DependencyEdge(fk.parent, fk.referenced, fk.name)
            for fk in await self.list_foreign_keys()
        ]

    async def get_table_size(self, table: TableRef) -> Optional[TableSize]:
        row = await self.client.fetch_one(
            """
            SELECT
                COALESCE(SUM(CASE WHEN ps.index_id IN (0, 1) THEN ps.row_count END), 0),
                COALESCE(SUM(ps.used_page_count), 0) * 8.0 / 1024
            FROM sys.dm_db_partition_stats AS ps
            WHERE ps.object_id = OBJECT_ID(?)
            """,
            [table.quoted],
        )
        if row is None:
            return None
        return TableSize(row_count=int(row[0]), used_space_mb=float(row[1]))

    async def get_key_column(self, table: TableRef) -> Optional[KeyColumnInfo]:
        """
        Pick the column used for range chunking.

        A single-column primary key wins; otherwise the identity column is
        used. Composite keys yield no key column.
        """
        primary_key = await self._primary_key_columns(table)
        if len(primary_key) == 1:
            name, type_name, is_identity = primary_key[0]
            return KeyColumnInfo(
                name=name,
                data_type=type_name,
                key_type=classify_type(type_name),
                is_primary_key=True,
                is_identity=bool(is_identity),
            )

        row = await self.client.fetch_one(
            """
            SELECT c.name, TYPE_NAME(c.system_type_id)
            FROM sys.columns AS c
            WHERE c.object_id = OBJECT_ID(?) AND c.is_identity = 1
            """,
            [table.quoted],
        )
        if row is None:
            return None
        return KeyColumnInfo(
            name=row[0],
            data_type=row[1],
            key_type=classify_type(row[1]),
            is_primary_key=False,
            is_identity=True,
        )

    async def get_key_range(self, table: TableRef, column: str) -> Optional[KeyRange]:
        quoted = quote_identifier(column)
        row = await self.client.fetch_one(
            f"SELECT MIN({quoted}), MAX({quoted}), COUNT_BIG(*) FROM {table.quoted}"
        )
        if row is None:
            return None
        return KeyRange(minimum=row[0], maximum=row[1], count=int(row[2]))

    async def get_columns(self, table: TableRef) -> List[str]:
        """Column names in table order, matching a native-format export."""
        rows = await self.client.fetch_all(
            """
            SELECT c.name
            FROM sys.columns AS c
            WHERE c.object_id = OBJECT_ID(?)
            ORDER BY c.column_id
            """,
            [table.quoted],
        )
        return [row[0] for row in rows]

    async def get_order_columns(self, table: TableRef) -> List[str]:
        """
        Columns giving a unique row order for row-window chunks.

        Primary key columns when there is a primary key, otherwise the key
        columns of the narrowest enabled, unfiltered unique index. An empty
        list means no unique order exists and the table must not be split
        into row windows.
        """
        primary_key = await self._primary_key_columns(table)
        if primary_key:
            return [name for name, _, _ in primary_key]

        rows = await self.client.fetch_all(
            """
            SELECT i.index_id, c.name
            FROM sys.indexes AS i
            JOIN sys.index_columns AS ic
                ON ic.object_id = i.object_id AND ic.index_id = i.index_id
            JOIN sys.columns AS c
                ON c.object_id = ic.object_id AND c.column_id = ic.column_id
            WHERE i.object_id = OBJECT_ID(?)
                AND i.is_unique = 1
                AND i.is_disabled = 0
                AND i.has_filter = 0
                AND ic.is_included_column = 0
            ORDER BY
                (SELECT COUNT(*) FROM sys.index_columns AS k
                 WHERE k.object_id = i.object_id
                    AND k.index_id = i.index_id
                    AND k.is_included_column = 0),
                i.index_id,
                ic.key_ordinal
            """,
            [table.quoted],
        )
        if not rows:
            return []
        index_id = rows[0][0]
        return [row[1] for row in rows if row[0] == index_id]

    async def _primary_key_columns(self, table: TableRef) -> List[Tuple[str, str, bool]]:
        rows = await self.client.fetch_all(
            """
            SELECT c.name, TYPE_NAME(c.system_type_id), c.is_identity
            FROM sys.indexes AS i
            JOIN sys.index_columns AS ic
                ON ic.object_id = i.object_id AND ic.index_id = i.index_id
            JOIN sys.columns AS c
                ON c.object_id = ic.object_id AND c.column_id = ic.column_id
            WHERE i.object_id = OBJECT_ID(?) AND i.is_primary_key = 1
            ORDER BY ic.key_ordinal
            """,
            [table.quoted],
        )
        return [(row[0], row[1], bool(row[2])) for row in rows]

"""Table metadata models."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, NamedTuple, Optional, Sequence, Tuple, Union

ROW_NUMBER_COLUMN = "__bcp_row_num"


def quote_identifier(identifier: str) -> str:
    """Quote an identifier for use in T-SQL statements."""
    if "\x00" in identifier:
        raise ValueError(f"Invalid identifier: {identifier!r}")
    return "[" + identifier.replace("]", "]]") + "]"


def sql_literal(value: Any) -> str:
    """Render a key boundary as a T-SQL literal."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, (datetime, date)):
        return "'" + value.isoformat() + "'"
    return "'" + str(value).replace("'", "''") + "'"


class TableRef(NamedTuple):
    """Table identity: the (schema, name) pair."""

    schema: str
    name: str

    def __str__(self) -> str:
        return f"{self.schema}.{self.name}"

    @property
    def quoted(self) -> str:
        return f"{quote_identifier(self.schema)}.{quote_identifier(self.name)}"

    @classmethod
    def parse(cls, value: str, default_schema: str = "dbo") -> "TableRef":
        """Parse ``schema.table`` or a bare table name."""
        schema, dot, name = value.strip().partition(".")
        if not dot:
            return cls(default_schema, schema)
        return cls(schema, name)


@dataclass(frozen=True)
class TableDescriptor:
    """A table selected for migration."""

    schema: str
    name: str
    has_primary_key: bool = False
    has_identity: bool = False

    @property
    def ref(self) -> TableRef:
        return TableRef(self.schema, self.name)

    def __str__(self) -> str:
        return str(self.ref)


@dataclass(frozen=True)
class DependencyEdge:
    """``dependent`` holds a foreign key that references ``referenced``."""

    dependent: TableRef
    referenced: TableRef
    constraint_name: Optional[str] = None

    @property
    def pair(self) -> Tuple[TableRef, TableRef]:
        return (self.dependent, self.referenced)

    def __str__(self) -> str:
        return f"{self.dependent} -> {self.referenced}"


class KeyType(str, Enum):
    """Data type category of a key column."""

    INTEGER = "integer"
    DECIMAL = "decimal"
    TEMPORAL = "temporal"
    IDENTIFIER = "identifier"
    OTHER = "other"

    @property
    def is_numeric(self) -> bool:
        return self in (KeyType.INTEGER, KeyType.DECIMAL)


@dataclass(frozen=True)
class KeyColumnInfo:
    """Key column used to split a table into ranges."""

    name: str
    data_type: str
    key_type: KeyType
    is_primary_key: bool = False
    is_identity: bool = False


@dataclass(frozen=True)
class TableSize:
    row_count: int
    used_space_mb: float


@dataclass(frozen=True)
class KeyRange:
    minimum: Any
    maximum: Any
    count: int = 0


@dataclass(frozen=True)
class KeyRangePredicate:
    """Range on a key column; the last chunk of a table has no upper bound."""

    column: str
    lower: Any
    upper: Any
    upper_inclusive: bool = True
    unbounded_upper: bool = False

    def to_sql(self) -> str:
        column = quote_identifier(self.column)
        clauses = [f"{column} >= {sql_literal(self.lower)}"]
        if not self.unbounded_upper:
            operator = "<=" if self.upper_inclusive else "<"
            clauses.append(f"{column} {operator} {sql_literal(self.upper)}")
        return " AND ".join(clauses)

    def describe(self) -> str:
        closing = "]" if self.upper_inclusive or self.unbounded_upper else ")"
        upper = f"{self.upper}+" if self.unbounded_upper else str(self.upper)
        return f"{self.column} [{self.lower}, {upper}{closing}"


@dataclass(frozen=True)
class RowWindowPredicate:
    """Window ``[start_row, end_row]`` (1-based) over a fixed row ordering."""

    start_row: int
    end_row: int
    order_by: Tuple[str, ...] = ()
    unbounded_end: bool = False

    def to_sql(self) -> str:
        column = quote_identifier(ROW_NUMBER_COLUMN)
        if self.unbounded_end:
            return f"{column} >= {self.start_row}"
        return f"{column} BETWEEN {self.start_row} AND {self.end_row}"

    def order_clause(self) -> str:
        if not self.order_by:
            raise ValueError("Row windows need a unique ordering")
        return ", ".join(quote_identifier(column) for column in self.order_by)

    def describe(self) -> str:
        end = f"{self.end_row}+" if self.unbounded_end else str(self.end_row)
        return f"rows [{self.start_row}, {end}]"


ChunkPredicate = Union[KeyRangePredicate, RowWindowPredicate]


@dataclass(frozen=True)
class ChunkSpec:
    chunk_id: int
    predicate: ChunkPredicate
    estimated_rows: int = 0


@dataclass
class ChunkPlan:
    """How one table is split. No chunks means the table moves as one unit."""

    table: TableRef
    chunks: List[ChunkSpec] = field(default_factory=list)

    @classmethod
    def unchunked(cls, table: TableRef) -> "ChunkPlan":
        return cls(table=table)

    @property
    def is_chunked(self) -> bool:
        return bool(self.chunks)

    @property
    def strategy(self) -> str:
        if not self.chunks:
            return "unchunked"
        if isinstance(self.chunks[0].predicate, KeyRangePredicate):
            return "key_range"
        return "row_window"


_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class TransferUnit:
    """One table, or one chunk of a table, moved by a single export/import."""

    table: TableDescriptor
    chunk: Optional[ChunkSpec] = None
    columns: Tuple[str, ...] = ()
    artifact_name: str = ""

    @classmethod
    def create(
        cls,
        table: TableDescriptor,
        chunk: Optional[ChunkSpec] = None,
        columns: Sequence[str] = (),
    ) -> "TransferUnit":
        return cls(
            table=table,
            chunk=chunk,
            columns=tuple(columns),
            artifact_name=artifact_name_for(table.ref, chunk),
        )

    @property
    def label(self) -> str:
        if self.chunk is None:
            return str(self.table.ref)
        return f"{self.table.ref}#{self.chunk.chunk_id}"


def artifact_name_for(table: TableRef, chunk: Optional[ChunkSpec] = None) -> str:
    """Unique native-format file name for one unit."""
    stem = _UNSAFE_FILENAME_CHARS.sub("_", f"{table.schema}_{table.name}")
    chunk_part = f"chunk{chunk.chunk_id:04d}" if chunk is not None else "full"
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{stem}_{chunk_part}_{timestamp}_{uuid.uuid4().hex[:8]}.dat"


@dataclass(frozen=True)
class ForeignKeyConstraint:
    """A foreign key on the destination, with the scripts to drop and recreate it."""

    name: str
    parent: TableRef
    parent_columns: Tuple[str, ...]
    referenced: TableRef
    referenced_columns: Tuple[str, ...]
    delete_action: str = "NO_ACTION"
    update_action: str = "NO_ACTION"
    is_trusted: bool = True
    is_disabled: bool = False

    @property
    def drop_script(self) -> str:
        return (
            f"ALTER TABLE {self.parent.quoted} "
            f"DROP CONSTRAINT {quote_identifier(self.name)};"
        )

    @property
    def create_script(self) -> str:
        parent_columns = ", ".join(quote_identifier(c) for c in self.parent_columns)
        referenced_columns = ", ".join(
            quote_identifier(c) for c in self.referenced_columns
        )
        check = "WITH CHECK" if self.is_trusted and not self.is_disabled else "WITH NOCHECK"
        script = (
            f"ALTER TABLE {self.parent.quoted} {check} "
            f"ADD CONSTRAINT {quote_identifier(self.name)} "
            f"FOREIGN KEY ({parent_columns}) "
            f"REFERENCES {self.referenced.quoted} ({referenced_columns}) "
            f"ON DELETE {_action_sql(self.delete_action)} "
            f"ON UPDATE {_action_sql(self.update_action)};"
        )
        if self.is_disabled:
            script += (
                f"\nALTER TABLE {self.parent.quoted} "
                f"NOCHECK CONSTRAINT {quote_identifier(self.name)};"
            )
        return script

    def __str__(self) -> str:
        return f"{self.parent}.{self.name}"


def _action_sql(action: str) -> str:
    return (action or "NO_ACTION").replace("_", " ").upper()


@dataclass(frozen=True)
class ConnectionConfig:
    """Connection descriptor for one SQL Server database."""

    host: str
    database: str
    port: int = 1433
    user: Optional[str] = None
    password: str = ""
    driver: str = "ODBC Driver 18 for SQL Server"
    trust_server_certificate: bool = True

    @property
    def server(self) -> str:
        return f"{self.host},{self.port}" if self.port != 1433 else self.host

    def odbc_connection_string(self) -> str:
        parts = {
            "DRIVER": "{" + self.driver + "}",
            "SERVER": self.server,
            "DATABASE": self.database,
            "TrustServerCertificate": "yes" if self.trust_server_certificate else "no",
        }
        if self.user:
            parts["UID"] = self.user
            parts["PWD"] = self.password
            parts["Trusted_Connection"] = "no"
        else:
            parts["Trusted_Connection"] = "yes"
        return ";".join(f"{k}={v}" for k, v in parts.items() if v)

    def bcp_args(self) -> List[str]:
        """Connection arguments for a ``bcp`` command line."""
        args = ["-S", self.server, "-d", self.database]
        if self.user:
            args += ["-U", self.user, "-P", self.password]
        else:
            args.append("-T")
        if self.trust_server_certificate:
            args.append("-u")
        return args


@dataclass
class MigrationConfig:
    """Migration configuration."""

    max_concurrency: int = 4
    chunking_enabled: bool = True
    chunking_threshold_mb: int = 500
    max_chunk_size_mb: int = 200
    max_chunks_per_table: int = 8
    truncate_destination: bool = True
    include_schemas: List[str] = field(default_factory=list)
    include_tables: List[str] = field(default_factory=list)
    exclude_tables: List[str] = field(default_factory=list)
    backup_dir: Optional[str] = None


@dataclass
class TransferResult:
    """Outcome of one transfer unit."""

    unit: str
    table: TableRef
    success: bool
    chunk_id: Optional[int] = None
    source_rows: Optional[int] = None
    target_rows: Optional[int] = None
    bytes_transferred: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration: float = 0.0
    error: Optional[str] = None


@dataclass
class MigrationReport:
    """Aggregate of every unit's result, built once all units are terminal."""

    total_units: int
    successful_units: int
    failed_units: int
    total_rows: int
    total_bytes: int
    duration: float
    results: List[TransferResult] = field(default_factory=list)
    constraint_failures: List[str] = field(default_factory=list)
    backup_paths: List[str] = field(default_factory=list)
    broken_edges: List[DependencyEdge] = field(default_factory=list)

    @classmethod
    def from_results(
        cls, results: Sequence[TransferResult], duration: float
    ) -> "MigrationReport":
        ordered = sorted(results, key=lambda r: r.duration, reverse=True)
        successful = sum(1 for r in ordered if r.success)
        return cls(
            total_units=len(ordered),
            successful_units=successful,
            failed_units=len(ordered) - successful,
            total_rows=sum(r.target_rows or 0 for r in ordered if r.success),
            total_bytes=sum(r.bytes_transferred for r in ordered),
            duration=duration,
            results=ordered,
        )

    @property
    def failed_results(self) -> List[TransferResult]:
        return [r for r in self.results if not r.success]

    @property
    def success(self) -> bool:
        return self.failed_units == 0


@dataclass
class ValidationResult:
    """Row count comparison for one table."""

    table: str
    source_count: int
    dest_count: int
    errors: List[str] = field(default_factory=list)

    @property
    def all_match(self) -> bool:
        return not self.errors and self.source_count == self.dest_count

"""Decide whether and how to split a table into independent transfer chunks."""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

from bcp_migrate.models.table_metadata import (
    ChunkPlan,
    ChunkSpec,
    KeyColumnInfo,
    KeyRange,
    KeyRangePredicate,
    KeyType,
    RowWindowPredicate,
    TableDescriptor,
    TableRef,
    TableSize,
)
from bcp_migrate.utils.logger import StructuredLogger


def _spread(total: int, parts: int) -> List[int]:
    """Split ``total`` rows over ``parts`` chunks as evenly as possible."""
    base, extra = divmod(max(total, 0), parts)
    return [base + (1 if i < extra else 0) for i in range(parts)]


class ChunkPlanner:
    """Plan chunking for large tables.

    Chunking is an optimization: whenever size or key information is missing
    the table is simply moved as a single unit.
    """

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        enabled: bool = True,
        threshold_mb: float = 500,
        max_chunk_mb: float = 200,
        max_chunks: int = 8,
    ):
        """
        Initialize chunk planner.

        Args:
            logger: Structured logger
            enabled: When False every table is planned unchunked
            threshold_mb: Tables using less space than this are not split
            max_chunk_mb: Target size of one chunk
            max_chunks: Upper bound on chunks per table
        """
        self.logger = logger
        self.enabled = enabled
        self.threshold_mb = threshold_mb
        self.max_chunk_mb = max_chunk_mb
        self.max_chunks = max_chunks

    def plan(
        self,
        table: TableRef,
        size: Optional[TableSize],
        key_column: Optional[KeyColumnInfo] = None,
        key_range: Optional[KeyRange] = None,
        threshold_mb: Optional[float] = None,
        max_chunk_mb: Optional[float] = None,
        max_chunks: Optional[int] = None,
        order_columns: Sequence[str] = (),
    ) -> ChunkPlan:
        """
        Build the chunk plan for one table.

        Args:
            table: Table identity
            size: Row count and used space, None when unknown
            key_column: Candidate key column, if any
            key_range: Min/max of the key column, if known
            threshold_mb: Override of the planner's threshold
            max_chunk_mb: Override of the planner's chunk size
            max_chunks: Override of the planner's chunk limit
            order_columns: Unique row ordering for row-window chunks; without
                one a table without a usable key range is not split

        Returns:
            Chunk plan; no chunks means the table is transferred whole
        """
        threshold_mb = self.threshold_mb if threshold_mb is None else threshold_mb
        max_chunk_mb = self.max_chunk_mb if max_chunk_mb is None else max_chunk_mb
        max_chunks = self.max_chunks if max_chunks is None else max_chunks

        if size is None or max_chunk_mb <= 0:
            return ChunkPlan.unchunked(table)
        if size.used_space_mb < threshold_mb:
            return ChunkPlan.unchunked(table)

        desired = math.ceil(size.used_space_mb / max_chunk_mb)
        desired = max(1, min(desired, max_chunks))
        if desired <= 1:
            return ChunkPlan.unchunked(table)

        if self._has_usable_range(key_column, key_range):
            return self._key_range_plan(table, key_column, key_range, desired, size)
        # Row windows are only stable over a unique ordering
        if not order_columns:
            if self.logger:
                self.logger.debug(f"No unique row order for {table}, not chunking")
            return ChunkPlan.unchunked(table)
        return self._row_window_plan(table, size.row_count, desired, order_columns)

    async def plan_table(
        self,
        metadata,
        table: TableDescriptor,
        enabled: Optional[bool] = None,
        threshold_mb: Optional[float] = None,
        max_chunk_mb: Optional[float] = None,
        max_chunks: Optional[int] = None,
    ) -> ChunkPlan:
        """
        Gather metadata for ``table`` and plan it.

        Arguments left as None fall back to the planner's settings. Any
        metadata failure degrades to an unchunked plan.
        """
        ref = table.ref
        enabled = self.enabled if enabled is None else enabled
        threshold_mb = self.threshold_mb if threshold_mb is None else threshold_mb
        if not enabled:
            return ChunkPlan.unchunked(ref)

        try:
            size = await metadata.get_table_size(ref)
            if size is None or size.used_space_mb < threshold_mb:
                return ChunkPlan.unchunked(ref)

            key_column = await metadata.get_key_column(ref)
            key_range = None
            if key_column is not None and key_column.key_type.is_numeric:
                key_range = await metadata.get_key_range(ref, key_column.name)

            order_columns: Sequence[str] = ()
            if not self._has_usable_range(key_column, key_range):
                order_columns = await metadata.get_order_columns(ref)
        except Exception as e:
            if self.logger:
                self.logger.debug(f"Chunking metadata unavailable for {ref}: {e}")
            return ChunkPlan.unchunked(ref)

        plan = self.plan(
            ref,
            size,
            key_column,
            key_range,
            threshold_mb=threshold_mb,
            max_chunk_mb=max_chunk_mb,
            max_chunks=max_chunks,
            order_columns=order_columns,
        )
        if plan.is_chunked and self.logger:
            self.logger.info(
                f"Planned {len(plan.chunks)} chunks for {ref}",
                strategy=plan.strategy,
                used_space_mb=round(size.used_space_mb, 1),
            )
        return plan

    @staticmethod
    def _has_usable_range(
        key_column: Optional[KeyColumnInfo], key_range: Optional[KeyRange]
    ) -> bool:
        return (
            key_column is not None
            and key_column.key_type.is_numeric
            and key_range is not None
            and key_range.minimum is not None
            and key_range.maximum is not None
        )

    def _key_range_plan(
        self,
        table: TableRef,
        key_column: KeyColumnInfo,
        key_range: KeyRange,
        desired: int,
        size: TableSize,
    ) -> ChunkPlan:
        minimum, maximum = key_range.minimum, key_range.maximum
        row_count = key_range.count or size.row_count
        column = key_column.name

        if minimum == maximum:
            predicate = KeyRangePredicate(
                column, minimum, maximum, unbounded_upper=True
            )
            return ChunkPlan(table, [ChunkSpec(1, predicate, row_count)])

        if key_column.key_type == KeyType.INTEGER:
            bounds = self._integer_bounds(int(minimum), int(maximum), desired)
            upper_inclusive = True
        else:
            bounds = self._decimal_bounds(minimum, maximum, desired)
            upper_inclusive = False

        estimates = _spread(row_count, len(bounds))
        chunks: List[ChunkSpec] = []
        for i, (lower, upper) in enumerate(bounds):
            is_last = i == len(bounds) - 1
            predicate = KeyRangePredicate(
                column=column,
                lower=lower,
                upper=maximum if is_last else upper,
                upper_inclusive=upper_inclusive or is_last,
                unbounded_upper=is_last,
            )
            chunks.append(ChunkSpec(i + 1, predicate, estimates[i]))
        return ChunkPlan(table, chunks)

    @staticmethod
    def _integer_bounds(minimum: int, maximum: int, parts: int) -> List[tuple]:
        """Equal-width closed intervals; the last one ends at ``maximum``."""
        span = maximum - minimum + 1
        bounds = []
        for i in range(parts):
            lower = minimum + span * i // parts
            upper = minimum + span * (i + 1) // parts - 1
            if upper >= lower:
                bounds.append((lower, upper))
        return bounds

    @staticmethod
    def _decimal_bounds(minimum, maximum, parts: int) -> List[tuple]:
        """Equal-width half-open intervals ``[lower, upper)``."""
        width = (maximum - minimum) / parts
        edges = [minimum]
        for i in range(1, parts):
            edge = minimum + width * i
            if edges[-1] < edge < maximum:
                edges.append(edge)
        edges.append(maximum)
        return list(zip(edges, edges[1:]))

    @staticmethod
    def _row_window_plan(
        table: TableRef, row_count: int, desired: int, order_columns: Sequence[str]
    ) -> ChunkPlan:
        order_by = tuple(order_columns)
        if row_count <= 0:
            predicate = RowWindowPredicate(1, 0, order_by, unbounded_end=True)
            return ChunkPlan(table, [ChunkSpec(1, predicate, 0)])

        rows_per_chunk = math.ceil(row_count / desired)
        chunks: List[ChunkSpec] = []
        for i in range(desired):
            start = i * rows_per_chunk + 1
            if start > row_count:
                break
            end = min((i + 1) * rows_per_chunk, row_count)
            chunks.append(
                ChunkSpec(
                    len(chunks) + 1,
                    RowWindowPredicate(start, end, order_by),
                    end - start + 1,
                )
            )

        last = chunks[-1]
        chunks[-1] = ChunkSpec(
            last.chunk_id,
            RowWindowPredicate(
                last.predicate.start_row,
                last.predicate.end_row,
                order_by,
                unbounded_end=True,
            ),
            last.estimated_rows,
        )
        return ChunkPlan(table, chunks)

"""Unit tests for the chunk planner."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from bcp_migrate.models.table_metadata import (
    KeyColumnInfo,
    KeyRange,
    KeyRangePredicate,
    KeyType,
    RowWindowPredicate,
    TableDescriptor,
    TableRef,
    TableSize,
)
from bcp_migrate.services.chunk_planner import ChunkPlanner

TABLE = TableRef("Sales", "SalesOrderDetail")
INT_KEY = KeyColumnInfo("SalesOrderDetailID", "int", KeyType.INTEGER, is_primary_key=True)


def planner(**kwargs) -> ChunkPlanner:
    settings = dict(threshold_mb=500, max_chunk_mb=200, max_chunks=8)
    settings.update(kwargs)
    return ChunkPlanner(**settings)


class TestPlan:
    def test_below_threshold_is_unchunked(self):
        plan = planner().plan(TABLE, TableSize(10_000_000, 499.9), INT_KEY, KeyRange(1, 10_000_000))

        assert not plan.is_chunked
        assert plan.strategy == "unchunked"

    def test_unknown_size_is_unchunked(self):
        assert not planner().plan(TABLE, None, INT_KEY, KeyRange(1, 100)).is_chunked

    def test_single_chunk_is_unchunked(self):
        plan = planner(threshold_mb=100, max_chunk_mb=1000).plan(
            TABLE, TableSize(1000, 150), INT_KEY, KeyRange(1, 1000)
        )
        assert not plan.is_chunked

    def test_integer_key_range_scenario(self):
        """600 MB, 200 MB chunks, keys 1..1,000,000: three disjoint ranges."""
        plan = planner().plan(
            TABLE, TableSize(1_000_000, 600), INT_KEY, KeyRange(1, 1_000_000, 1_000_000)
        )

        assert plan.strategy == "key_range"
        assert [c.chunk_id for c in plan.chunks] == [1, 2, 3]
        bounds = [(c.predicate.lower, c.predicate.upper) for c in plan.chunks]
        assert bounds == [(1, 333333), (333334, 666666), (666667, 1_000_000)]
        assert plan.chunks[-1].predicate.unbounded_upper is True
        assert all(not c.predicate.unbounded_upper for c in plan.chunks[:-1])
        assert sum(c.estimated_rows for c in plan.chunks) == 1_000_000

    def test_integer_ranges_are_contiguous(self):
        plan = planner().plan(TABLE, TableSize(999, 5000), INT_KEY, KeyRange(-17, 982))

        assert len(plan.chunks) == 8
        assert plan.chunks[0].predicate.lower == -17
        for previous, current in zip(plan.chunks, plan.chunks[1:]):
            assert current.predicate.lower == previous.predicate.upper + 1
        assert plan.chunks[-1].predicate.upper == 982

    def test_chunk_count_never_exceeds_max_chunks(self):
        plan = planner(max_chunks=4).plan(TABLE, TableSize(10**9, 100_000), INT_KEY, KeyRange(1, 10**9))
        assert len(plan.chunks) == 4

    def test_narrow_range_skips_empty_intervals(self):
        plan = planner().plan(TABLE, TableSize(3, 1000), INT_KEY, KeyRange(10, 12))

        assert [(c.predicate.lower, c.predicate.upper) for c in plan.chunks] == [
            (10, 10),
            (11, 11),
            (12, 12),
        ]
        assert [c.chunk_id for c in plan.chunks] == [1, 2, 3]

    def test_single_value_range_is_one_chunk(self):
        plan = planner().plan(TABLE, TableSize(1, 800), INT_KEY, KeyRange(42, 42, 1))

        assert len(plan.chunks) == 1
        predicate = plan.chunks[0].predicate
        assert (predicate.lower, predicate.upper) == (42, 42)
        assert predicate.unbounded_upper is True

    def test_decimal_ranges_are_half_open_and_contiguous(self):
        key = KeyColumnInfo("Amount", "decimal", KeyType.DECIMAL, is_primary_key=True)
        plan = planner().plan(TABLE, TableSize(100, 800), key, KeyRange(Decimal("0.00"), Decimal("100.00")))

        assert len(plan.chunks) == 4
        for previous, current in zip(plan.chunks, plan.chunks[1:]):
            assert previous.predicate.upper_inclusive is False
            assert current.predicate.lower == previous.predicate.upper
        assert plan.chunks[0].predicate.lower == Decimal("0.00")
        assert plan.chunks[-1].predicate.upper == Decimal("100.00")
        assert plan.chunks[-1].predicate.unbounded_upper is True

    def test_temporal_key_falls_back_to_row_windows(self):
        key = KeyColumnInfo("ModifiedDate", "datetime", KeyType.TEMPORAL, is_primary_key=True)
        plan = planner().plan(
            TABLE,
            TableSize(10, 600),
            key,
            KeyRange(datetime(2020, 1, 1), datetime(2024, 1, 1)),
            order_columns=["ModifiedDate"],
        )

        assert plan.strategy == "row_window"
        windows = [(c.predicate.start_row, c.predicate.end_row) for c in plan.chunks]
        assert windows == [(1, 4), (5, 8), (9, 10)]
        assert plan.chunks[0].predicate.order_by == ("ModifiedDate",)
        assert plan.chunks[-1].predicate.unbounded_end is True

    def test_no_key_uses_row_windows(self):
        plan = planner().plan(TABLE, TableSize(1000, 1000), None, None, order_columns=["Id"])

        assert plan.strategy == "row_window"
        assert len(plan.chunks) == 5
        assert [c.estimated_rows for c in plan.chunks] == [200] * 5

    def test_row_windows_skip_past_row_count(self):
        plan = planner().plan(TABLE, TableSize(2, 1000), None, None, order_columns=["Id"])

        assert [(c.predicate.start_row, c.predicate.end_row) for c in plan.chunks] == [(1, 1), (2, 2)]

    def test_empty_table_gets_one_empty_chunk(self):
        plan = planner().plan(TABLE, TableSize(0, 700), None, None, order_columns=["Id"])

        assert len(plan.chunks) == 1
        assert plan.chunks[0].estimated_rows == 0
        assert isinstance(plan.chunks[0].predicate, RowWindowPredicate)

    def test_missing_range_values_use_row_windows(self):
        plan = planner().plan(
            TABLE, TableSize(50, 700), INT_KEY, KeyRange(None, None, 0), order_columns=["Id"]
        )
        assert plan.strategy == "row_window"

    def test_no_unique_order_is_unchunked(self, logger):
        plan = planner(logger=logger).plan(TABLE, TableSize(5000, 900), None, None, order_columns=[])

        assert not plan.is_chunked
        logger.debug.assert_called_once()


class TestPlanTable:
    @staticmethod
    def metadata(size=None, key=None, key_range=None, order=None):
        metadata = MagicMock()
        metadata.get_table_size = AsyncMock(return_value=size)
        metadata.get_key_column = AsyncMock(return_value=key)
        metadata.get_key_range = AsyncMock(return_value=key_range)
        metadata.get_order_columns = AsyncMock(return_value=order or [])
        return metadata

    @pytest.mark.asyncio
    async def test_gathers_key_range(self, logger):
        metadata = self.metadata(TableSize(1_000_000, 600), INT_KEY, KeyRange(1, 1_000_000))
        table = TableDescriptor("Sales", "SalesOrderDetail", has_primary_key=True)

        plan = await planner(logger=logger).plan_table(metadata, table)

        assert isinstance(plan.chunks[0].predicate, KeyRangePredicate)
        metadata.get_key_range.assert_awaited_once_with(table.ref, "SalesOrderDetailID")
        metadata.get_order_columns.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_row_window_gets_order_columns(self):
        metadata = self.metadata(TableSize(100, 600), None, order=["A", "B"])
        plan = await planner().plan_table(metadata, TableDescriptor("dbo", "Heap"))

        assert plan.chunks[0].predicate.order_by == ("A", "B")

    @pytest.mark.asyncio
    async def test_small_table_skips_key_queries(self):
        metadata = self.metadata(TableSize(100, 1))
        plan = await planner().plan_table(metadata, TableDescriptor("dbo", "Small"))

        assert not plan.is_chunked
        metadata.get_key_column.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_metadata_failure_degrades(self, logger):
        metadata = self.metadata()
        metadata.get_table_size.side_effect = RuntimeError("VIEW SERVER STATE denied")

        plan = await planner(logger=logger).plan_table(metadata, TableDescriptor("dbo", "T"))

        assert not plan.is_chunked
        logger.error.assert_not_called()

    @pytest.mark.asyncio
    async def test_disabled_planner(self):
        metadata = self.metadata(TableSize(100, 60_000))
        plan = await planner(enabled=False).plan_table(metadata, TableDescriptor("dbo", "T"))

        assert not plan.is_chunked
        metadata.get_table_size.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_heap_without_unique_index_is_unchunked(self):
        metadata = self.metadata(TableSize(5000, 900), None, order=[])

        plan = await planner().plan_table(metadata, TableDescriptor("dbo", "Notes"))

        assert not plan.is_chunked
        metadata.get_order_columns.assert_awaited_once_with(TableRef("dbo", "Notes"))

    @pytest.mark.asyncio
    async def test_call_settings_override_planner(self):
        metadata = self.metadata(TableSize(1_000_000, 900), INT_KEY, KeyRange(1, 1_000_000))
        table = TableDescriptor("Sales", "SalesOrderDetail", has_primary_key=True)

        assert not (await planner().plan_table(metadata, table, enabled=False)).is_chunked
        assert not (await planner().plan_table(metadata, table, threshold_mb=1000)).is_chunked
        limited = await planner().plan_table(metadata, table, max_chunks=2)
        assert len(limited.chunks) == 2
        wide = await planner().plan_table(metadata, table, max_chunk_mb=300)
        assert len(wide.chunks) == 3

    @pytest.mark.asyncio
    async def test_call_can_enable_disabled_planner(self):
        metadata = self.metadata(TableSize(1_000_000, 900), INT_KEY, KeyRange(1, 1_000_000))
        table = TableDescriptor("Sales", "SalesOrderDetail", has_primary_key=True)

        plan = await planner(enabled=False).plan_table(metadata, table, enabled=True)

        assert len(plan.chunks) == 5

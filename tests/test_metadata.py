"""Tests for catalog metadata queries."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from bcp_migrate.database.metadata import MetadataProvider, classify_type
from bcp_migrate.models.table_metadata import KeyType, TableRef

ORDERS = TableRef("Sales", "Orders")


@pytest.fixture
def client():
    mock = MagicMock()
    mock.fetch_all = AsyncMock(return_value=[])
    mock.fetch_one = AsyncMock(return_value=None)
    return mock


@pytest.mark.parametrize(
    "type_name,expected",
    [
        ("int", KeyType.INTEGER),
        ("BIGINT", KeyType.INTEGER),
        ("numeric", KeyType.DECIMAL),
        ("money", KeyType.DECIMAL),
        ("datetime2", KeyType.TEMPORAL),
        ("uniqueidentifier", KeyType.IDENTIFIER),
        ("nvarchar", KeyType.OTHER),
        (None, KeyType.OTHER),
    ],
)
def test_classify_type(type_name, expected):
    assert classify_type(type_name) == expected


@pytest.mark.asyncio
async def test_list_tables(client):
    client.fetch_all.return_value = [("Sales", "Orders", 1, 1), ("dbo", "Heap", 0, 0)]

    tables = await MetadataProvider(client).list_tables()

    assert [str(t) for t in tables] == ["Sales.Orders", "dbo.Heap"]
    assert tables[0].has_primary_key and tables[0].has_identity
    assert not tables[1].has_primary_key


@pytest.mark.asyncio
async def test_list_foreign_keys_groups_columns(client):
    client.fetch_all.return_value = [
        ("FK_Lines_Orders", "Sales", "Lines", "OrderId", "Sales", "Orders", "Id",
         "CASCADE", "NO_ACTION", False, False),
        ("FK_Lines_Product", "Sales", "Lines", "ProductId", "Prod", "Product", "Id",
         "NO_ACTION", "NO_ACTION", True, False),
        ("FK_Lines_Product", "Sales", "Lines", "VariantId", "Prod", "Product", "VariantId",
         "NO_ACTION", "NO_ACTION", True, False),
    ]

    constraints = await MetadataProvider(client).list_foreign_keys()

    assert [c.name for c in constraints] == ["FK_Lines_Orders", "FK_Lines_Product"]
    composite = constraints[1]
    assert composite.parent == TableRef("Sales", "Lines")
    assert composite.referenced == TableRef("Prod", "Product")
    assert composite.parent_columns == ("ProductId", "VariantId")
    assert composite.referenced_columns == ("Id", "VariantId")
    assert composite.is_trusted is False
    assert constraints[0].delete_action == "CASCADE"


@pytest.mark.asyncio
async def test_list_table_dependencies(client):
    client.fetch_all.return_value = [
        ("FK_Lines_Orders", "Sales", "Lines", "OrderId", "Sales", "Orders", "Id",
         "NO_ACTION", "NO_ACTION", False, False),
    ]

    edges = await MetadataProvider(client).list_table_dependencies()

    assert len(edges) == 1
    assert edges[0].dependent == TableRef("Sales", "Lines")
    assert edges[0].referenced == ORDERS
    assert edges[0].constraint_name == "FK_Lines_Orders"


@pytest.mark.asyncio
async def test_get_table_size(client):
    client.fetch_one.return_value = (1_000_000, Decimal("612.5"))

    size = await MetadataProvider(client).get_table_size(ORDERS)

    assert size.row_count == 1_000_000
    assert size.used_space_mb == 612.5
    assert client.fetch_one.await_args.args[1] == ["[Sales].[Orders]"]


@pytest.mark.asyncio
async def test_key_column_prefers_single_column_primary_key(client):
    client.fetch_all.return_value = [("OrderId", "bigint", True)]

    key = await MetadataProvider(client).get_key_column(ORDERS)

    assert key.name == "OrderId"
    assert key.key_type == KeyType.INTEGER
    assert key.is_primary_key and key.is_identity
    client.fetch_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_key_column_falls_back_to_identity(client):
    client.fetch_all.return_value = [("OrderId", "int", False), ("LineNo", "int", False)]
    client.fetch_one.return_value = ("RowId", "int")

    key = await MetadataProvider(client).get_key_column(ORDERS)

    assert key.name == "RowId"
    assert not key.is_primary_key
    assert key.is_identity


@pytest.mark.asyncio
async def test_no_key_column(client):
    assert await MetadataProvider(client).get_key_column(ORDERS) is None


@pytest.mark.asyncio
async def test_get_key_range(client):
    client.fetch_one.return_value = (1, 1_000_000, 999_000)

    key_range = await MetadataProvider(client).get_key_range(ORDERS, "OrderId")

    assert (key_range.minimum, key_range.maximum, key_range.count) == (1, 1_000_000, 999_000)
    assert "MIN([OrderId])" in client.fetch_one.await_args.args[0]


@pytest.mark.asyncio
async def test_order_columns_use_primary_key(client):
    client.fetch_all.return_value = [("OrderId", "int", False), ("LineNo", "int", False)]

    assert await MetadataProvider(client).get_order_columns(ORDERS) == ["OrderId", "LineNo"]


@pytest.mark.asyncio
async def test_order_columns_use_narrowest_unique_index(client):
    client.fetch_all.side_effect = [
        [],
        [(3, "Code"), (3, "Region"), (5, "Code"), (5, "Region"), (5, "ValidFrom")],
    ]

    assert await MetadataProvider(client).get_order_columns(ORDERS) == ["Code", "Region"]
    assert "is_unique = 1" in client.fetch_all.await_args.args[0]


@pytest.mark.asyncio
async def test_no_unique_order_for_plain_heap(client):
    client.fetch_all.side_effect = [[], []]

    assert await MetadataProvider(client).get_order_columns(ORDERS) == []

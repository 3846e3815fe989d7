"""
Unit tests for dependent object scanning.
"""

import pytest

from partkit.database.catalog import ConstraintRef, IndexRef
from partkit.schema.dependents import DependentObjects, DependentObjectScanner


class TestDependentObjects:
    """Test the scan result."""

    def test_lob_indexes_are_not_convertible(self):
        dependents = DependentObjects(
            "ORDERS",
            indexes=[IndexRef("PK_ORDERS"), IndexRef("SYS_IL01$$", "LOB")],
        )

        assert dependents.index_names == ["PK_ORDERS"]


class TestDependentObjectScanner:
    """Test scanning through a catalog."""

    @pytest.mark.asyncio
    async def test_scan(self, catalog):
        scanner = DependentObjectScanner(catalog)

        dependents = await scanner.scan("orders")

        assert len(dependents.indexes) == 3
        assert dependents.index_names == ["PK_ORDERS", "IX_ORDERS_DATE"]
        assert dependents.foreign_keys == []

    @pytest.mark.asyncio
    async def test_first_matching_reference_wins(self, catalog):
        catalog.add_table(
            "ORDER_LINES",
            foreign_keys=[
                ConstraintRef("FK_LINES_PRODUCTS", "PRODUCTS"),
                ConstraintRef("FK_LINES_ORDERS", "ORDERS"),
                ConstraintRef("FK_LINES_ORDERS_2", "ORDERS"),
            ],
        )
        scanner = DependentObjectScanner(catalog)

        constraint = await scanner.find_reference_constraint("ORDER_LINES", "app.orders")

        assert constraint.name == "FK_LINES_ORDERS"

    @pytest.mark.asyncio
    async def test_no_reference(self, catalog):
        catalog.add_table("AUDIT_TRAIL")
        scanner = DependentObjectScanner(catalog)

        assert await scanner.find_reference_constraint("AUDIT_TRAIL", "ORDERS") is None

"""
Dependent object scanning for partkit.

Finds the indexes and foreign keys a partitioning change has to carry along.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..database.catalog import CatalogQuery, ConstraintRef, IndexRef


logger = logging.getLogger(__name__)


@dataclass
class DependentObjects:
    """Indexes and foreign keys of one table."""

    table_name: str
    indexes: List[IndexRef] = field(default_factory=list)
    foreign_keys: List[ConstraintRef] = field(default_factory=list)

    @property
    def convertible_indexes(self) -> List[IndexRef]:
        """Indexes that can be named in an UPDATE INDEXES clause."""
        return [index for index in self.indexes if not index.is_lob]

    @property
    def index_names(self) -> List[str]:
        return [index.name for index in self.convertible_indexes]


class DependentObjectScanner:
    """Reads dependent objects through a catalog."""

    def __init__(self, catalog: CatalogQuery):
        self.catalog = catalog

    async def scan(self, table_name: str) -> DependentObjects:
        indexes = await self.catalog.list_indexes(table_name)
        foreign_keys = await self.catalog.list_foreign_keys(table_name)
        logger.debug(
            f"{table_name}: {len(indexes)} indexes, {len(foreign_keys)} foreign keys"
        )
        return DependentObjects(table_name, indexes, foreign_keys)

    async def find_reference_constraint(
        self, table_name: str, parent_table: str
    ) -> Optional[ConstraintRef]:
        """First foreign key of ``table_name`` that references ``parent_table``."""
        parent = parent_table.split(".")[-1].upper()
        for constraint in await self.catalog.list_foreign_keys(table_name):
            if constraint.referenced_table.split(".")[-1].upper() == parent:
                return constraint
        return None

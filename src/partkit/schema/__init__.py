"""
Schema package for partkit.

This package provides:
- The table and partitioning model
- DDL rendering for partitioning, tables and partition maintenance
- Dependent object scanning
- Operation log table setup
"""

from .ddl_builder import build_partition_clause, build_subpartitioning_clause
from .model import (
    ColumnDef,
    ConstraintDef,
    PartitionDef,
    PartitionType,
    SubpartitionSpec,
    SubpartitionType,
    TableDefinition,
)

__all__ = [
    "build_partition_clause",
    "build_subpartitioning_clause",
    "ColumnDef",
    "ConstraintDef",
    "PartitionDef",
    "PartitionType",
    "SubpartitionSpec",
    "SubpartitionType",
    "TableDefinition",
]

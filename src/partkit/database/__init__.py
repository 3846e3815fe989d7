"""
Database integration package for partkit.

This package provides:
- Async Oracle connection pooling
- Data dictionary queries for tables, partitions, indexes and foreign keys
- DDL and DBMS_STATS execution
"""

from .catalog import CatalogQuery, ConstraintRef, IndexRef, OracleCatalog, PartitioningInfo
from .connection import ConnectionPool
from .executor import DDLExecutor, OracleDDLExecutor, OracleStatisticsExecutor, StatisticsExecutor

__all__ = [
    "CatalogQuery",
    "ConstraintRef",
    "IndexRef",
    "OracleCatalog",
    "PartitioningInfo",
    "ConnectionPool",
    "DDLExecutor",
    "OracleDDLExecutor",
    "StatisticsExecutor",
    "OracleStatisticsExecutor",
]

"""
DDL synthesis for partkit.

Pure functions that turn the table and partitioning model into Oracle DDL
text. Nothing here touches a database; malformed input raises
:class:`~partkit.exceptions.BuildError` naming the offending field.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..exceptions import BuildError
from .model import (
    ColumnDef,
    ConstraintDef,
    ConstraintKind,
    PartitionDef,
    PartitionType,
    SubpartitionDef,
    SubpartitionSpec,
    SubpartitionType,
    TableDefinition,
    assign_tablespaces,
    is_valid_identifier,
)


logger = logging.getLogger(__name__)

INDENT = "  "

_RANGE_TYPES = (PartitionType.RANGE, PartitionType.INTERVAL)
_LIST_TYPES = (PartitionType.LIST, PartitionType.AUTO_LIST)

# Strategies whose partitions are derived by the database, not listed.
_WITHOUT_PARTITION_LIST = (PartitionType.REFERENCE, PartitionType.SYSTEM)


def _require_identifier(name: Optional[str], field: str) -> str:
    if not is_valid_identifier(name):
        raise BuildError(f"Invalid identifier: {name!r}", field=field)
    return name


def _column_list(columns: Sequence[str], field: str) -> str:
    if not columns:
        raise BuildError("At least one key column is required", field=field)
    for column in columns:
        _require_identifier(column, field)
    return ", ".join(columns)


def _tablespace(tablespace: Optional[str]) -> str:
    if not tablespace:
        return ""
    _require_identifier(tablespace, "tablespace")
    return f" TABLESPACE {tablespace}"


def _check_unique(names: Iterable[str], field: str, scope: str) -> None:
    seen = set()
    for name in names:
        key = name.upper()
        if key in seen:
            raise BuildError(f"Duplicate name {name} in {scope}", field=field)
        seen.add(key)


def _parse_partition_type(value) -> PartitionType:
    try:
        return PartitionType.parse(value)
    except ValueError:
        raise BuildError(
            f"Unsupported partition type: {value!r}", field="partition_type"
        ) from None


def _parse_subpartition_type(value) -> SubpartitionType:
    try:
        return SubpartitionType.parse(value)
    except ValueError:
        raise BuildError(
            f"Unsupported subpartition type: {value!r}", field="subpartition_type"
        ) from None


# -- partition level ---------------------------------------------------------


def _range_header(first: PartitionDef) -> str:
    return f"PARTITION BY RANGE ({_column_list(first.key_columns, 'key_columns')})"


def _interval_header(first: PartitionDef) -> str:
    if not first.interval_expr:
        raise BuildError(
            "INTERVAL partitioning requires an interval expression",
            field="interval_expr",
        )
    return f"{_range_header(first)} INTERVAL ({first.interval_expr})"


def _list_header(first: PartitionDef) -> str:
    return f"PARTITION BY LIST ({_column_list(first.key_columns, 'key_columns')})"


def _auto_list_header(first: PartitionDef) -> str:
    return f"{_list_header(first)} AUTOMATIC"


def _hash_header(first: PartitionDef) -> str:
    return f"PARTITION BY HASH ({_column_list(first.key_columns, 'key_columns')})"


def _reference_header(first: PartitionDef) -> str:
    if not first.reference_constraint:
        raise BuildError(
            "REFERENCE partitioning requires a foreign key constraint",
            field="reference_constraint",
        )
    _require_identifier(first.reference_constraint, "reference_constraint")
    return f"PARTITION BY REFERENCE ({first.reference_constraint})"


def _system_header(first: PartitionDef) -> str:
    return "PARTITION BY SYSTEM"


_HEADERS: Dict[PartitionType, Callable[[PartitionDef], str]] = {
    PartitionType.RANGE: _range_header,
    PartitionType.INTERVAL: _interval_header,
    PartitionType.LIST: _list_header,
    PartitionType.AUTO_LIST: _auto_list_header,
    PartitionType.HASH: _hash_header,
    PartitionType.REFERENCE: _reference_header,
    PartitionType.SYSTEM: _system_header,
}


def _partition_values(
    partition_type: PartitionType, values: Optional[str], name: str
) -> str:
    if partition_type in _RANGE_TYPES:
        return f" VALUES LESS THAN ({values or 'MAXVALUE'})"
    if partition_type in _LIST_TYPES:
        return f" VALUES ({values or 'DEFAULT'})"
    if values:
        raise BuildError(
            f"{partition_type.value} partition {name} cannot carry values",
            field="values",
        )
    return ""


def _subpartition_values(
    subpartition_type: SubpartitionType, values: Optional[str], name: str
) -> str:
    if subpartition_type is SubpartitionType.RANGE:
        return f" VALUES LESS THAN ({values or 'MAXVALUE'})"
    if subpartition_type is SubpartitionType.LIST:
        return f" VALUES ({values or 'DEFAULT'})"
    if values:
        raise BuildError(
            f"HASH subpartition {name} cannot carry values", field="values"
        )
    return ""


def _render_subpartition(
    subpartition: SubpartitionDef, subpartition_type: SubpartitionType
) -> str:
    _require_identifier(subpartition.name, "subpartitions")
    return (
        f"SUBPARTITION {subpartition.name}"
        f"{_subpartition_values(subpartition_type, subpartition.values, subpartition.name)}"
        f"{_tablespace(subpartition.tablespace)}"
    )


def _render_partition(
    partition: PartitionDef,
    partition_type: PartitionType,
    spec: Optional[SubpartitionSpec],
) -> str:
    _require_identifier(partition.name, "name")
    text = (
        f"PARTITION {partition.name}"
        f"{_partition_values(partition_type, partition.values, partition.name)}"
        f"{_tablespace(partition.tablespace)}"
    )

    if partition.subpartitions:
        if spec is None:
            raise BuildError(
                f"Partition {partition.name} lists subpartitions but the table "
                "has no subpartitioning",
                field="subpartitions",
            )
        _check_unique(
            (sub.name for sub in partition.subpartitions),
            "subpartitions",
            f"partition {partition.name}",
        )
        subpartition_type = _parse_subpartition_type(spec.subpartition_type)
        nested = ",\n".join(
            INDENT * 2 + _render_subpartition(sub, subpartition_type)
            for sub in partition.subpartitions
        )
        text += f" (\n{nested}\n{INDENT})"

    return text


def build_partition_clause(partitions: Sequence[PartitionDef]) -> str:
    """Render the PARTITION BY clause for a list of partitions.

    The strategy, key columns and table-level options come from the first
    partition; every partition must share its strategy.
    """
    if not partitions:
        raise BuildError("At least one partition is required", field="partitions")

    first = partitions[0]
    partition_type = _parse_partition_type(first.partition_type)
    render_header = _HEADERS.get(partition_type)
    if render_header is None:
        raise BuildError(
            f"Unsupported partition type: {partition_type.value}",
            field="partition_type",
        )

    for partition in partitions[1:]:
        if _parse_partition_type(partition.partition_type) is not partition_type:
            raise BuildError(
                f"Partition {partition.name} is {partition.partition_type}, "
                f"expected {partition_type.value}",
                field="partition_type",
            )

    clause = render_header(first)
    spec = first.subpartition_spec

    if partition_type in _WITHOUT_PARTITION_LIST:
        if spec is not None:
            raise BuildError(
                f"{partition_type.value} partitioning cannot be subpartitioned",
                field="subpartition_spec",
            )
        return clause

    if spec is not None:
        clause = f"{clause} {_render_subpartition_clause(spec)}"

    if partition_type is PartitionType.HASH and first.hash_partition_count is not None:
        if first.hash_partition_count < 1:
            raise BuildError(
                "Hash partition count must be positive", field="hash_partition_count"
            )
        if len(partitions) > 1:
            raise BuildError(
                "A hash partition count cannot be combined with explicit partitions",
                field="hash_partition_count",
            )
        return f"{clause} PARTITIONS {first.hash_partition_count}"

    _check_unique((p.name for p in partitions), "name", "partition list")
    body = ",\n".join(
        INDENT + _render_partition(partition, partition_type, spec)
        for partition in partitions
    )
    return f"{clause} (\n{body}\n)"


# -- subpartition level ------------------------------------------------------


def _render_subpartition_clause(spec: SubpartitionSpec) -> str:
    subpartition_type = _parse_subpartition_type(spec.subpartition_type)
    clause = (
        f"SUBPARTITION BY {subpartition_type.value} "
        f"({_column_list(spec.key_columns, 'subpartition key_columns')})"
    )

    if spec.template:
        entries = list(spec.template)
    elif subpartition_type is SubpartitionType.HASH:
        count = spec.effective_count
        if count is None:
            raise BuildError(
                "HASH subpartitioning requires a count or tablespaces", field="count"
            )
        if count < 1:
            raise BuildError("Subpartition count must be positive", field="count")
        if not spec.tablespaces:
            return f"{clause} SUBPARTITIONS {count}"
        entries = [
            SubpartitionDef(name=f"sp{index}", tablespace=tablespace)
            for index, tablespace in assign_tablespaces(count, spec.tablespaces)
        ]
    else:
        # Each partition supplies its own subpartition list.
        return clause

    _check_unique((entry.name for entry in entries), "template", "subpartition template")
    body = ",\n".join(
        INDENT + _render_subpartition(entry, subpartition_type) for entry in entries
    )
    return f"{clause} SUBPARTITION TEMPLATE (\n{body}\n)"


def build_subpartitioning_clause(table_name: str, spec: SubpartitionSpec) -> str:
    """Render the SUBPARTITION BY clause (with template) for ``table_name``."""
    _require_identifier(table_name, "table_name")
    clause = _render_subpartition_clause(spec)
    logger.debug(f"Built subpartitioning clause for {table_name}: {clause}")
    return clause


# -- table level -------------------------------------------------------------


def _data_type(column: ColumnDef) -> str:
    if column.length is not None:
        return f"{column.data_type}({column.length})"
    if column.precision is not None:
        if column.scale is not None:
            return f"{column.data_type}({column.precision},{column.scale})"
        return f"{column.data_type}({column.precision})"
    return column.data_type


def build_column_definition(column: ColumnDef) -> str:
    """Render one column definition."""
    _require_identifier(column.name, "columns")
    if not column.data_type:
        raise BuildError(f"Column {column.name} has no data type", field="data_type")

    parts = [column.name, _data_type(column)]
    if column.invisible:
        parts.append("INVISIBLE")
    if column.identity:
        parts.append("GENERATED ALWAYS AS IDENTITY")
    elif column.default is not None:
        parts.append(f"DEFAULT {column.default}")
    if not column.nullable:
        parts.append("NOT NULL")
    return " ".join(parts)


def build_constraint_definition(constraint: ConstraintDef) -> str:
    """Render one out-of-line constraint."""
    _require_identifier(constraint.name, "constraints")
    prefix = f"CONSTRAINT {constraint.name}"
    kind = constraint.kind

    if kind is ConstraintKind.CHECK:
        if not constraint.check_condition:
            raise BuildError(
                f"CHECK constraint {constraint.name} has no condition",
                field="check_condition",
            )
        text = f"{prefix} CHECK ({constraint.check_condition})"
    else:
        columns = _column_list(constraint.columns, "columns")
        if kind is ConstraintKind.PRIMARY:
            text = f"{prefix} PRIMARY KEY ({columns})"
        elif kind is ConstraintKind.UNIQUE:
            text = f"{prefix} UNIQUE ({columns})"
        elif kind is ConstraintKind.FOREIGN:
            _require_identifier(constraint.referenced_table, "referenced_table")
            text = f"{prefix} FOREIGN KEY ({columns}) REFERENCES {constraint.referenced_table}"
            if constraint.referenced_columns:
                text += f" ({_column_list(constraint.referenced_columns, 'referenced_columns')})"
        else:
            raise BuildError(f"Unsupported constraint kind: {kind!r}", field="kind")

    if constraint.deferrable:
        text += " DEFERRABLE"
        if constraint.initially_deferred:
            text += " INITIALLY DEFERRED"
    return text


def generate_create_table_ddl(definition: TableDefinition) -> str:
    """Render a complete CREATE TABLE statement."""
    _require_identifier(definition.table_name, "table_name")
    if not definition.columns:
        raise BuildError("A table needs at least one column", field="columns")
    _check_unique((c.name for c in definition.columns), "columns", definition.table_name)

    elements = [build_column_definition(column) for column in definition.columns]
    elements.extend(
        build_constraint_definition(constraint) for constraint in definition.constraints
    )
    body = ",\n".join(INDENT + element for element in elements)
    lines = [f"CREATE TABLE {definition.table_name} (\n{body}\n)"]

    props = definition.properties
    if props.tablespace:
        lines.append(_tablespace(props.tablespace).strip())
    if props.compression:
        if props.compression.upper() == "NONE":
            lines.append("NOCOMPRESS")
        else:
            lines.append(f"COMPRESS {props.compression}")
    if not props.logging:
        lines.append("NOLOGGING")
    if definition.partitions:
        lines.append(build_partition_clause(definition.partitions))
    if props.parallel_degree and props.parallel_degree > 1:
        lines.append(f"PARALLEL {props.parallel_degree}")
    if props.row_movement:
        lines.append("ENABLE ROW MOVEMENT")

    return "\n".join(lines)


# -- conversion --------------------------------------------------------------


def seed_partitions(
    partition_type: PartitionType,
    key_columns: Sequence[str],
    interval_expr: Optional[str] = None,
    reference_constraint: Optional[str] = None,
    hash_partition_count: int = 4,
    default_partition_name: str = "p_default",
    interval_seed_name: str = "p1",
    seed_boundary: Optional[str] = None,
) -> List[PartitionDef]:
    """Partitions for converting a heap table with a single catch-all partition."""
    partition_type = _parse_partition_type(partition_type)
    columns = list(key_columns)

    if partition_type is PartitionType.RANGE:
        return [
            PartitionDef(
                default_partition_name,
                partition_type,
                columns,
                values=seed_boundary or "MAXVALUE",
            )
        ]
    if partition_type is PartitionType.LIST:
        return [
            PartitionDef(default_partition_name, partition_type, columns, values="DEFAULT")
        ]
    if partition_type is PartitionType.HASH:
        return [
            PartitionDef(
                default_partition_name,
                partition_type,
                columns,
                hash_partition_count=hash_partition_count,
            )
        ]
    if partition_type is PartitionType.INTERVAL:
        return [
            PartitionDef(
                interval_seed_name,
                partition_type,
                columns,
                values=seed_boundary or "MAXVALUE",
                interval_expr=interval_expr,
            )
        ]
    if partition_type is PartitionType.REFERENCE:
        return [
            PartitionDef(
                default_partition_name,
                partition_type,
                reference_constraint=reference_constraint,
            )
        ]
    raise BuildError(
        f"{partition_type.value} is not supported for online conversion",
        field="partition_type",
    )


def build_index_conversion_clause(
    index_names: Iterable[str], local_index_names: Iterable[str] = ()
) -> str:
    """Render ``UPDATE INDEXES (...)``.

    Indexes in ``index_names`` become global; those in ``local_index_names``
    stay local. Entries are sorted by index name.
    """
    entries = {_require_identifier(name, "indexes"): "GLOBAL" for name in index_names}
    for name in local_index_names:
        entries[_require_identifier(name, "indexes")] = "LOCAL"
    if not entries:
        return ""
    return (
        "UPDATE INDEXES ("
        + ", ".join(f"{name} {entries[name]}" for name in sorted(entries))
        + ")"
    )


def build_convert_statement(
    table_name: str,
    partition_clause: str,
    index_clause: str = "",
    parallel_degree: Optional[int] = None,
    online: bool = True,
) -> str:
    """Render the ALTER TABLE ... MODIFY statement for an online conversion."""
    _require_identifier(table_name, "table_name")
    parts = [f"ALTER TABLE {table_name} MODIFY {partition_clause}"]
    if online:
        parts.append("ONLINE")
    if index_clause:
        parts.append(index_clause)
    if parallel_degree and parallel_degree > 1:
        parts.append(f"PARALLEL {parallel_degree}")
    return " ".join(parts)


# -- maintenance -------------------------------------------------------------


def _maintenance_suffix(
    update_indexes: bool, online: bool, parallel_degree: Optional[int] = None
) -> str:
    parts = []
    if update_indexes:
        parts.append("UPDATE INDEXES")
    if parallel_degree and parallel_degree > 1:
        parts.append(f"PARALLEL {parallel_degree}")
    if online:
        parts.append("ONLINE")
    return (" " + " ".join(parts)) if parts else ""


def build_split_partition_ddl(
    table_name: str,
    partition_name: str,
    split_value: str,
    new_partition_name: str,
    partition_type: PartitionType = PartitionType.RANGE,
    tablespace: Optional[str] = None,
    update_indexes: bool = True,
    online: bool = True,
) -> str:
    """Render SPLIT PARTITION.

    RANGE and INTERVAL split AT the boundary; rows below it stay in the
    original partition. LIST moves the given values into the new partition.
    """
    _require_identifier(table_name, "table_name")
    _require_identifier(partition_name, "partition_name")
    _require_identifier(new_partition_name, "new_partition_name")
    if not split_value:
        raise BuildError("A split value is required", field="split_value")

    partition_type = _parse_partition_type(partition_type)
    new_partition = f"PARTITION {new_partition_name}{_tablespace(tablespace)}"
    if partition_type in _RANGE_TYPES:
        body = (
            f"SPLIT PARTITION {partition_name} AT ({split_value}) "
            f"INTO (PARTITION {partition_name}, {new_partition})"
        )
    elif partition_type in _LIST_TYPES:
        body = (
            f"SPLIT PARTITION {partition_name} VALUES ({split_value}) "
            f"INTO ({new_partition}, PARTITION {partition_name})"
        )
    else:
        raise BuildError(
            f"Cannot split a {partition_type.value} partition", field="partition_type"
        )

    return f"ALTER TABLE {table_name} {body}{_maintenance_suffix(update_indexes, online)}"


def build_merge_partitions_ddl(
    table_name: str,
    first_partition: str,
    second_partition: str,
    new_partition_name: str,
    tablespace: Optional[str] = None,
    update_indexes: bool = True,
    online: bool = True,
) -> str:
    """Render MERGE PARTITIONS of two adjacent partitions."""
    _require_identifier(table_name, "table_name")
    _require_identifier(first_partition, "first_partition")
    _require_identifier(second_partition, "second_partition")
    _require_identifier(new_partition_name, "new_partition_name")
    if first_partition.upper() == second_partition.upper():
        raise BuildError("Cannot merge a partition with itself", field="second_partition")

    return (
        f"ALTER TABLE {table_name} MERGE PARTITIONS {first_partition}, {second_partition} "
        f"INTO PARTITION {new_partition_name}{_tablespace(tablespace)}"
        f"{_maintenance_suffix(update_indexes, online)}"
    )


def build_move_partition_ddl(
    table_name: str,
    partition_name: str,
    tablespace: str,
    parallel_degree: Optional[int] = None,
    update_indexes: bool = True,
    online: bool = True,
) -> str:
    """Render MOVE PARTITION into another tablespace."""
    _require_identifier(table_name, "table_name")
    _require_identifier(partition_name, "partition_name")
    if not tablespace:
        raise BuildError("A target tablespace is required", field="tablespace")

    return (
        f"ALTER TABLE {table_name} MOVE PARTITION {partition_name}{_tablespace(tablespace)}"
        f"{_maintenance_suffix(update_indexes, online, parallel_degree)}"
    )


def build_drop_partition_ddl(
    table_name: str, partition_name: str, update_indexes: bool = True
) -> str:
    """Render DROP PARTITION."""
    _require_identifier(table_name, "table_name")
    _require_identifier(partition_name, "partition_name")
    return (
        f"ALTER TABLE {table_name} DROP PARTITION {partition_name}"
        f"{_maintenance_suffix(update_indexes, online=False)}"
    )

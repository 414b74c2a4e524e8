# tsvshuttle/ddl.py
"""
Generate CREATE TABLE scripts from SQL Server catalog metadata.

The script carries the column list with types and nullability, followed by
the primary key constraint when the table has one::

    CREATE TABLE [dbo].[fire_nation_army] (
        [soldier_id] int NOT NULL,
        [name] nvarchar(100) NOT NULL,
        [rank] varchar(MAX) NULL
    );
    ALTER TABLE [dbo].[fire_nation_army] ADD CONSTRAINT [PK_fire_nation_army] PRIMARY KEY CLUSTERED (
        [soldier_id] ASC
    );
"""

import logging
from typing import Any, Dict, List

from .database import SqlClient, qualified_name, quote_identifier
from .results import ErrorKind, StepResult

logger = logging.getLogger(__name__)

LENGTH_TYPES = ('varchar', 'nvarchar', 'char', 'nchar', 'varbinary', 'binary')
PRECISION_TYPES = ('decimal', 'numeric')


def column_type(column: Dict[str, Any]) -> str:
    """Declared type with its length or precision/scale qualifier."""
    data_type = column['data_type']
    lowered = data_type.lower()
    if lowered in LENGTH_TYPES:
        length = column.get('max_length')
        if length is None:
            return data_type
        return f"{data_type}({'MAX' if int(length) == -1 else int(length)})"
    if lowered in PRECISION_TYPES:
        return f"{data_type}({int(column['precision'])}, {int(column['scale'])})"
    return data_type


def column_definition(column: Dict[str, Any]) -> str:
    nullable = str(column.get('is_nullable', 'YES')).upper() != 'NO'
    return f"{quote_identifier(column['name'])} {column_type(column)} {'NULL' if nullable else 'NOT NULL'}"


def build_table_ddl(schema: str, table: str, columns: List[Dict[str, Any]],
                    primary_key: List[str]) -> str:
    """
    Build the CREATE TABLE script for one table.

    Args:
        schema: Schema name
        table: Table name
        columns: Column dicts in ordinal order with keys name, data_type,
            max_length, precision, scale, is_nullable
        primary_key: Key column names in key ordinal order; empty for no key

    Returns:
        The script text, ending with a newline
    """
    if not columns:
        raise ValueError(f"No columns given for {schema}.{table}")

    target = qualified_name(schema, table)
    lines = [f"CREATE TABLE {target} ("]
    lines.append(",\n".join(f"    {column_definition(col)}" for col in columns))
    lines.append(");")

    if primary_key:
        constraint = quote_identifier(f"PK_{table}")
        lines.append(f"ALTER TABLE {target} ADD CONSTRAINT {constraint} PRIMARY KEY CLUSTERED (")
        lines.append(",\n".join(f"    {quote_identifier(col)} ASC" for col in primary_key))
        lines.append(");")

    return "\n".join(lines) + "\n"


def generate_table_ddl(client: SqlClient, schema: str, table: str) -> StepResult:
    """Read catalog metadata through ``client`` and return the script as the result value."""
    columns = client.columns(schema, table)
    if not columns:
        return columns
    if not columns.value:
        return StepResult.failure(ErrorKind.NOT_FOUND, f"No columns found for {schema}.{table}")

    primary_key = client.primary_key(schema, table)
    if not primary_key:
        return primary_key

    if not primary_key.value:
        logger.debug(f"{schema}.{table} has no primary key")
    return StepResult.success(build_table_ddl(schema, table, columns.value, primary_key.value))

"""
Staging Writer - Batch load into TEMP staging tables and merge set-based

Per target table:
1. Column set = live table columns that appear in any normalized row
2. ``CREATE TEMP TABLE _stg_<table> AS SELECT <cols> FROM <table> WHERE 0``
3. Multi-row INSERTs sized to stay under the bound-parameter ceiling
4. One ``INSERT ... SELECT`` merge built by the TargetMapper
5. Inserted/updated counts from the before/after row-count delta
"""

import logging
from typing import Any, Dict, List

from catalogsync.db.connection import quote_identifier
from catalogsync.exceptions import DatabaseError, ValidationError
from catalogsync.schema.models import TableWriteResult
from catalogsync.target.target_mapper import TargetMapper

logger = logging.getLogger(__name__)

DEFAULT_BIND_LIMIT = 999


def rows_per_batch(column_count: int, bind_limit: int = DEFAULT_BIND_LIMIT) -> int:
    """Largest row count whose bound values stay within ``bind_limit`` (min 1)."""
    if bind_limit < 1:
        raise ValidationError(f"bind_limit must be positive, got {bind_limit}")
    if column_count <= 0:
        return 1
    return max(1, bind_limit // column_count)


class StagingWriter:
    """Writes normalized rows through TEMP staging tables."""

    def __init__(self, connection, mapper: TargetMapper, bind_limit: int = DEFAULT_BIND_LIMIT):
        """
        Initialize writer.

        Args:
            connection: Target SQLiteConnection (caller owns the transaction)
            mapper: Statement builder
            bind_limit: Maximum bound parameters per statement

        Raises:
            ValidationError: If bind_limit is not positive
        """
        if bind_limit < 1:
            raise ValidationError(f"bind_limit must be positive, got {bind_limit}")
        self.connection = connection
        self.mapper = mapper
        self.bind_limit = bind_limit

    def staging_columns(self, table: str, rows: List[Dict[str, Any]]) -> List[str]:
        live = self.connection.table_columns(table)
        if not live:
            raise DatabaseError(f"Cannot read schema of target table '{table}'")

        present = set()
        for row in rows:
            present.update(row.keys())

        unknown = present.difference(live)
        if unknown:
            logger.warning(f"Table {table}: ignoring columns not in target schema: {sorted(unknown)}")

        columns = [c for c in live if c in present]
        if not columns:
            raise DatabaseError(f"No known columns to write for target table '{table}'")
        return columns

    def write_table(self, table: str, rows: List[Dict[str, Any]]) -> TableWriteResult:
        """
        Stage and merge all rows of one table.

        Args:
            table: Target table name
            rows: Normalized rows

        Returns:
            TableWriteResult with staged/inserted/updated counts
        """
        result = TableWriteResult(table=table)
        if not rows:
            return result

        columns = self.staging_columns(table, rows)
        staging = f"_stg_{table}"

        self._create_staging(table, staging, columns)
        try:
            result.batches = self._insert_batches(staging, columns, rows)
            result.staged = len(rows)

            sql, _ = self.mapper.merge_sql(table, staging, columns)
            before = self.connection.row_count(table)
            cursor = self.connection.query(sql)
            after = self.connection.row_count(table)

            affected = max(cursor.rowcount, 0)
            result.inserted = max(0, after - before)
            result.updated = max(0, affected - result.inserted)
        finally:
            self.connection.query(f"DROP TABLE IF EXISTS temp.{quote_identifier(staging)}")

        logger.info(
            f"Merged {result.staged} rows into {table}: "
            f"{result.inserted} inserted, {result.updated} updated "
            f"({len(result.batches)} batches)"
        )
        return result

    def _create_staging(self, table: str, staging: str, columns: List[str]) -> None:
        column_list = ", ".join(quote_identifier(c) for c in columns)
        self.connection.query(f"DROP TABLE IF EXISTS temp.{quote_identifier(staging)}")
        self.connection.query(
            f"CREATE TEMP TABLE {quote_identifier(staging)} AS "
            f"SELECT {column_list} FROM {quote_identifier(table)} WHERE 0"
        )

    def _insert_batches(self, staging: str, columns: List[str], rows: List[Dict[str, Any]]) -> List[int]:
        size = rows_per_batch(len(columns), self.bind_limit)
        column_list = ", ".join(quote_identifier(c) for c in columns)
        row_placeholder = "(" + ", ".join("?" for _ in columns) + ")"

        batches = []
        for start in range(0, len(rows), size):
            batch = rows[start:start + size]
            params = [row.get(c) for row in batch for c in columns]
            sql = (
                f"INSERT INTO {quote_identifier(staging)} ({column_list}) "
                f"VALUES {', '.join(row_placeholder for _ in batch)}"
            )
            self.connection.query(sql, params)
            batches.append(len(params))
        return batches

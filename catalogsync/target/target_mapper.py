"""
Target Mapper - Table metadata and SQL statement shapes for the target store

Builds, cached by (table, sorted column set):
- Single-row upserts: ``INSERT ... ON CONFLICT(keys) DO UPDATE SET c = excluded.c``
  (``DO NOTHING`` when only key columns are written)
- Deletes: ``DELETE FROM t WHERE "k1" = ? AND "k2" = ?``
- Set-based merges from a staging table into the target table
"""

import logging
from typing import Any, Dict, List, Sequence, Tuple

import sqlparse

from catalogsync.db.connection import quote_identifier
from catalogsync.exceptions import ConfigurationError, ValidationError
from catalogsync.schema.loader import load_target_schema
from catalogsync.schema.models import TargetSchema, TargetTableConfig

logger = logging.getLogger(__name__)


class TargetMapper:
    """Statement builder over a target schema registry"""

    def __init__(self, schema: TargetSchema):
        """
        Initialize TargetMapper

        Args:
            schema: Loaded target schema
        """
        self.schema = schema
        self._statement_cache: Dict[Tuple[str, str, Tuple[str, ...]], str] = {}

    @classmethod
    def from_file(cls, path: str) -> "TargetMapper":
        return cls(load_target_schema(path))

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def has_table(self, table: str) -> bool:
        return self.schema.get_table(table) is not None

    def get_table(self, table: str) -> TargetTableConfig:
        config = self.schema.get_table(table)
        if config is None:
            raise ConfigurationError(f"Table '{table}' is not defined in the target schema")
        return config

    def get_fields(self, table: str) -> List[str]:
        return list(self.get_table(table).columns)

    def unique_keys(self, table: str) -> List[str]:
        """
        Business key columns of a table

        Raises:
            ConfigurationError: If the table is unknown or has no key
        """
        keys = list(self.get_table(table).business_key)
        if not keys:
            raise ConfigurationError(f"No unique key defined for table '{table}'")
        return keys

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def upsert_sql(self, table: str, columns: Sequence[str]) -> str:
        """
        Single-row upsert with ``?`` placeholders in sorted column order

        Args:
            table: Target table
            columns: Columns written by the statement

        Returns:
            SQL text
        """
        normalized = tuple(sorted(set(str(c) for c in columns)))
        cache_key = ("upsert", table, normalized)
        cached = self._statement_cache.get(cache_key)
        if cached is not None:
            return cached

        keys = self.unique_keys(table)
        quoted_cols = ", ".join(quote_identifier(c) for c in normalized)
        placeholders = ", ".join("?" for _ in normalized)
        conflict = ", ".join(quote_identifier(k) for k in keys)

        sql = f"INSERT INTO {quote_identifier(table)} ({quoted_cols}) VALUES ({placeholders})"
        assignments = [
            f"{quote_identifier(c)} = excluded.{quote_identifier(c)}"
            for c in normalized
            if c not in keys
        ]
        if assignments:
            sql += f" ON CONFLICT({conflict}) DO UPDATE SET {', '.join(assignments)}"
        else:
            sql += f" ON CONFLICT({conflict}) DO NOTHING"

        self._statement_cache[cache_key] = sql
        return sql

    def delete_sql(self, table: str, where_columns: Sequence[str]) -> str:
        """``DELETE FROM t WHERE c1 = ? AND c2 = ?`` (columns in given order)."""
        if not where_columns:
            raise ValidationError("Delete statement needs at least one WHERE column")

        cache_key = ("delete", table, tuple(where_columns))
        cached = self._statement_cache.get(cache_key)
        if cached is not None:
            return cached

        conditions = " AND ".join(f"{quote_identifier(c)} = ?" for c in where_columns)
        sql = f"DELETE FROM {quote_identifier(table)} WHERE {conditions}"
        self._statement_cache[cache_key] = sql
        return sql

    def merge_sql(self, table: str, staging_table: str, columns: Sequence[str]) -> Tuple[str, bool]:
        """
        Set-based merge of a staging table into ``table``

        Rows whose non-key values are identical to the stored row are not
        rewritten, so an unchanged re-run reports zero changes.

        Returns:
            (sql, insert_only) where insert_only means no column is updatable
        """
        keys = list(self.get_table(table).business_key)
        quoted_table = quote_identifier(table)
        column_list = ", ".join(quote_identifier(c) for c in columns)
        select = f"SELECT {column_list} FROM {quote_identifier(staging_table)}"

        if not keys:
            return f"INSERT INTO {quoted_table} ({column_list}) {select}", True

        update_columns = [c for c in columns if c not in keys and c.lower() != "id"]
        if not update_columns:
            return f"INSERT OR IGNORE INTO {quoted_table} ({column_list}) {select}", True

        conflict = ", ".join(quote_identifier(k) for k in keys)
        assignments = ", ".join(
            f"{quote_identifier(c)} = excluded.{quote_identifier(c)}" for c in update_columns
        )
        changed = " OR ".join(
            f"{quoted_table}.{quote_identifier(c)} IS NOT excluded.{quote_identifier(c)}"
            for c in update_columns
        )
        # WHERE true keeps SQLite from reading ON as a join constraint
        sql = (
            f"INSERT INTO {quoted_table} ({column_list}) {select} WHERE true "
            f"ON CONFLICT({conflict}) DO UPDATE SET {assignments} WHERE {changed}"
        )
        return sql, False

    @staticmethod
    def row_params(columns: Sequence[str], row: Dict[str, Any]) -> List[Any]:
        return [row.get(c) for c in sorted(set(columns))]

    # ------------------------------------------------------------------
    # Execution helpers
    # ------------------------------------------------------------------

    def upsert(self, connection, table: str, row: Dict[str, Any]) -> int:
        """Upsert one row; returns the affected row count."""
        if not row:
            return 0
        sql = self.upsert_sql(table, list(row.keys()))
        cursor = connection.query(sql, self.row_params(list(row.keys()), row))
        return max(cursor.rowcount, 0)

    def delete(self, connection, table: str, where: Dict[str, Any]) -> int:
        """Delete rows matching all ``where`` columns."""
        columns = list(where.keys())
        sql = self.delete_sql(table, columns)
        cursor = connection.query(sql, [where[c] for c in columns])
        return max(cursor.rowcount, 0)

    @staticmethod
    def format_sql(sql: str) -> str:
        """Pretty-print SQL for display."""
        return sqlparse.format(sql, reindent=True, keyword_case="upper")

    def describe(self, table: str) -> Dict[str, str]:
        """Formatted upsert/delete/merge statements of one table."""
        config = self.get_table(table)
        columns = list(config.columns) or list(config.business_key)
        keys = self.unique_keys(table)
        merge, _ = self.merge_sql(table, f"_stg_{table}", columns)
        return {
            "upsert": self.format_sql(self.upsert_sql(table, columns)),
            "delete": self.format_sql(self.delete_sql(table, keys)),
            "merge": self.format_sql(merge),
        }

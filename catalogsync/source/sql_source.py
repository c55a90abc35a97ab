"""
SQL Source - SELECT builder and connector for relational sources

Builds ``SELECT <fields [AS alias]> FROM <table> [WHERE ...] [ORDER BY ...]``
from a source table definition. Filter values are always bound as
parameters (``?`` placeholders), never interpolated.
"""

import logging
import re
from typing import Any, Callable, List, Tuple

from catalogsync.db.connection import quote_bracket, quote_identifier
from catalogsync.exceptions import ConfigurationError
from catalogsync.schema.models import SourceTableConfig
from catalogsync.source.base import SourceConnector, SourceRow

logger = logging.getLogger(__name__)

COMPARISONS = {
    "eq": "=",
    "ne": "<>",
    "lt": "<",
    "lte": "<=",
    "le": "<=",
    "gt": ">",
    "gte": ">=",
    "ge": ">=",
    "like": "LIKE",
    "not_like": "NOT LIKE",
}


class SelectBuilder:
    """Builds parameterised SELECT statements for one quoting style."""

    def __init__(self, quote: Callable[[str], str] = quote_bracket):
        self.quote = quote

    def build(self, table_config: SourceTableConfig) -> Tuple[str, List[Any]]:
        """
        Build SELECT statement and parameters.

        Args:
            table_config: Source table definition

        Returns:
            (sql, params)

        Raises:
            ConfigurationError: On missing table/fields or invalid filters
        """
        if not table_config.table:
            raise ConfigurationError(f"Source table '{table_config.name}' has no table name")
        if not table_config.fields:
            raise ConfigurationError(f"Source table '{table_config.name}' has no fields")

        columns = self._select_list(table_config.fields)
        sql = f"SELECT {', '.join(columns)} FROM {self.quote(table_config.table)}"

        params: List[Any] = []
        where = self.build_where(table_config.default_filter, params)
        if where:
            sql += f" WHERE {where}"

        if isinstance(table_config.order, str) and table_config.order.strip():
            order = self.build_order_by(table_config.order)
            if order:
                sql += f" ORDER BY {order}"

        return sql, params

    def _select_list(self, fields) -> List[str]:
        columns = []
        for field_def in fields:
            if isinstance(field_def, str):
                columns.append(self.quote(field_def))
            elif isinstance(field_def, dict):
                for alias, column in field_def.items():
                    columns.append(f"{self.quote(str(column))} AS {self.quote(str(alias))}")
        if not columns:
            raise ConfigurationError("No valid field definitions")
        return columns

    def build_where(self, filters, params: List[Any]) -> str:
        """AND-combined predicates; a scalar rule means ``eq``."""
        if not filters:
            return ""

        parts = []
        for column, rule in filters.items():
            if isinstance(rule, dict):
                for operator, value in rule.items():
                    parts.append(self.build_predicate(str(column), str(operator), value, params))
            else:
                parts.append(self.build_predicate(str(column), "eq", rule, params))
        return " AND ".join(p for p in parts if p)

    def build_predicate(self, column: str, operator: str, value: Any, params: List[Any]) -> str:
        """One filter predicate; appends its bound values to ``params``."""
        quoted = self.quote(column)
        op = operator.lower()

        if op in COMPARISONS:
            params.append(value)
            return f"{quoted} {COMPARISONS[op]} ?"

        if op in ("in", "not_in"):
            values = list(value) if isinstance(value, (list, tuple)) else []
            if not values:
                return "1 = 0" if op == "in" else "1 = 1"
            params.extend(values)
            placeholders = ", ".join("?" for _ in values)
            keyword = "IN" if op == "in" else "NOT IN"
            return f"{quoted} {keyword} ({placeholders})"

        if op == "between":
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise ConfigurationError(f"between filter on '{column}' expects exactly two values")
            params.extend(value)
            return f"{quoted} BETWEEN ? AND ?"

        if op == "not_null":
            return f"{quoted} IS NOT NULL"
        if op == "is_null":
            return f"{quoted} IS NULL"

        raise ConfigurationError(f"Unknown filter operator '{operator}' for column '{column}'")

    def build_order_by(self, order: str) -> str:
        parts = []
        for segment in order.split(","):
            tokens = re.split(r"\s+", segment.strip())
            if not tokens or not tokens[0]:
                continue
            direction = tokens[1].upper() if len(tokens) > 1 else ""
            if direction not in ("ASC", "DESC"):
                direction = ""
            parts.append(f"{self.quote(tokens[0])} {direction}".strip())
        return ", ".join(parts)


class RelationalSource(SourceConnector):
    """Relational source (SQL Server or SQLite) read through ``fetch_all``."""

    def __init__(self, connection, driver: str = "mssql"):
        """
        Initialize connector.

        Args:
            connection: Object exposing ``fetch_all(sql, params)``
            driver: ``mssql`` (bracket quoting) or ``sqlite`` (double quotes)
        """
        super().__init__()
        self.connection = connection
        self.driver = driver
        quote = quote_bracket if driver == "mssql" else quote_identifier
        self.builder = SelectBuilder(quote)

    def fetch_rows(self, table_config: SourceTableConfig) -> List[SourceRow]:
        sql, params = self.builder.build(table_config)
        logger.debug(f"[{self.driver}] {sql} {params}")
        rows = self.connection.fetch_all(sql, params)
        logger.info(f"Fetched {len(rows)} rows from {self.driver} table {table_config.table}")
        return rows

    def close(self) -> None:
        self.connection.close()

"""Abstract base class for source connectors."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from catalogsync.schema.models import SourceTableConfig

SourceRow = Dict[str, Any]


class SourceConnector(ABC):
    """Abstract base class for source connectors.

    Each connector is bound to its connection (database handle or base
    directory) and returns flat, string-keyed rows for one configured table.
    """

    driver = "abstract"

    def __init__(self):
        self._cache: Dict[str, List[SourceRow]] = {}

    @abstractmethod
    def fetch_rows(self, table_config: SourceTableConfig) -> List[SourceRow]:
        """
        Read all rows of a configured table.

        Args:
            table_config: Source table definition

        Returns:
            List of rows (column/alias → value)

        Raises:
            DatabaseError/SourceError: If the backend cannot be read
        """
        pass

    def fetch(self, table_config: SourceTableConfig, use_cache: bool = True) -> List[SourceRow]:
        """Fetch rows, reusing rows already read during this run."""
        if use_cache and table_config.name in self._cache:
            return self._cache[table_config.name]

        rows = self.fetch_rows(table_config)
        if use_cache:
            self._cache[table_config.name] = rows
        return rows

    def clear_cache(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        """Release the underlying connection (no-op by default)."""

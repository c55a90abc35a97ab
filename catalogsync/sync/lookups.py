"""Pre-loaded key → id maps used for foreign-key resolution without per-row queries."""
import logging
from typing import Any, Dict, Iterable, Optional

from catalogsync.db.connection import quote_identifier
from catalogsync.schema.models import LookupConfig

logger = logging.getLogger(__name__)


def lookup_key(value) -> str:
    """Trimmed string form of a key ('' for None); integral floats lose the ``.0``."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


class LookupStore:
    """
    Named lookup maps read from target tables

    Usage:
    ```python
    store = LookupStore()
    store.load(connection, manifest.lookups.values())
    store.get("category_by_afs_id", "12")  # → 4
    ```
    """

    def __init__(self):
        self.maps: Dict[str, Dict[str, Any]] = {}

    def load(self, connection, configs: Iterable[LookupConfig]) -> None:
        """
        (Re)load every lookup whose table and columns exist

        Args:
            connection: Target SQLiteConnection
            configs: Lookup definitions
        """
        self.maps.clear()
        for config in configs:
            if not connection.table_exists(config.table):
                logger.debug(f"Lookup '{config.name}' skipped: table {config.table} missing")
                continue
            columns = connection.table_columns(config.table)
            if config.key not in columns or config.id not in columns:
                logger.debug(f"Lookup '{config.name}' skipped: columns missing in {config.table}")
                continue

            sql = (
                f"SELECT {quote_identifier(config.key)} AS k, {quote_identifier(config.id)} AS v "
                f"FROM {quote_identifier(config.table)}"
            )
            values = {}
            for row in connection.fetch_all(sql):
                key = lookup_key(row["k"])
                if key != "":
                    values[key] = row["v"]
            self.maps[config.name] = values
            logger.debug(f"Lookup '{config.name}' loaded with {len(values)} keys")

    def set(self, name: str, values: Dict[Any, Any]) -> None:
        self.maps[name] = {lookup_key(k): v for k, v in values.items()}

    def has(self, name: str) -> bool:
        return name in self.maps

    def get(self, name: str, key) -> Optional[Any]:
        """Value for ``key`` in lookup ``name`` (None when unknown)."""
        normalized = lookup_key(key)
        if normalized == "":
            return None
        return self.maps.get(name, {}).get(normalized)

    def resolve(self, name: str, key, missing: Any = None) -> Any:
        """Like ``get`` but returns ``missing`` for blank or unknown keys."""
        value = self.get(name, key)
        return missing if value is None else value

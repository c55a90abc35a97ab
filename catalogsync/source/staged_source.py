"""Pre-staged source: rows already loaded into a local table."""
import logging
from typing import List

from catalogsync.db.connection import quote_identifier
from catalogsync.exceptions import SourceError
from catalogsync.schema.models import SourceTableConfig
from catalogsync.source.base import SourceConnector, SourceRow

logger = logging.getLogger(__name__)


class StagedTableSource(SourceConnector):
    """Reads ``SELECT * FROM table`` from the local target store."""

    driver = "filecatcher"

    def __init__(self, connection):
        super().__init__()
        self.connection = connection

    def fetch_rows(self, table_config: SourceTableConfig) -> List[SourceRow]:
        table = table_config.table
        if not self.connection.table_exists(table):
            raise SourceError(f"Staged table not found: {table}")
        rows = self.connection.fetch_all(f"SELECT * FROM {quote_identifier(table)}")
        logger.info(f"Read {len(rows)} staged rows from {table}")
        return rows

    def fetch(self, table_config: SourceTableConfig, use_cache: bool = False) -> List[SourceRow]:
        # staged tables change between entities of one run
        return super().fetch(table_config, use_cache=use_cache)

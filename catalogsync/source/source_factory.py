"""Factory for creating the source connector a schema's driver asks for."""
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

from catalogsync.db.connection import MSSQLConnection, SQLiteConnection
from catalogsync.exceptions import ConfigurationError
from catalogsync.schema.loader import load_source_schema
from catalogsync.schema.models import MappingManifest, SourceSchema
from catalogsync.source.base import SourceConnector, SourceRow
from catalogsync.source.filedb_source import FileDBSource
from catalogsync.source.sql_source import RelationalSource
from catalogsync.source.staged_source import StagedTableSource

logger = logging.getLogger(__name__)


class SourceConnectorFactory:
    """Factory for creating source connectors."""

    DRIVERS = {
        "mssql": "relational",
        "sqlite": "relational",
        "filedb": "filedb",
        "filecatcher": "staged",
    }

    @staticmethod
    def create_connector(
        schema: SourceSchema,
        target_connection: Optional[SQLiteConnection] = None,
        mssql_dsn: str = "",
        timeout: int = 30,
        project_root: str = ".",
    ) -> SourceConnector:
        """
        Create connector based on the schema's driver.

        Args:
            schema: Loaded source schema
            target_connection: Local target store (used by ``filecatcher``)
            mssql_dsn: Fallback ODBC connection string for ``mssql``
            timeout: Connector timeout in seconds
            project_root: Base for relative paths

        Returns:
            SourceConnector: Connector instance

        Raises:
            ConfigurationError: If the driver is unknown or under-configured
        """
        kind = SourceConnectorFactory.DRIVERS.get(schema.driver)
        options = schema.options

        if kind == "relational" and schema.driver == "mssql":
            dsn = str(options.get("dsn") or mssql_dsn or "").strip()
            if not dsn:
                raise ConfigurationError("mssql source needs a DSN (schema 'source.dsn' or CATALOGSYNC_MSSQL_DSN)")
            return RelationalSource(MSSQLConnection(dsn, timeout=int(options.get("timeout", timeout))), "mssql")

        if kind == "relational":
            path = str(options.get("path", "")).strip()
            if not path:
                raise ConfigurationError("sqlite source needs 'source.path'")
            if not os.path.isabs(path):
                path = os.path.join(options.get("base_dir") or project_root, path)
            return RelationalSource(SQLiteConnection(path, query_timeout=timeout), "sqlite")

        if kind == "filedb":
            return FileDBSource.from_options(options, project_root)

        if kind == "staged":
            if target_connection is None:
                raise ConfigurationError("filecatcher source needs the target connection")
            return StagedTableSource(target_connection)

        raise ConfigurationError(f"Unsupported source driver: {schema.driver}")


@dataclass
class RegisteredSource:
    """Schema and connector of one manifest source."""

    id: str
    schema: SourceSchema
    connector: SourceConnector


class SourceSet:
    """All sources of one run, resolved once from the manifest."""

    def __init__(self, sources: Dict[str, RegisteredSource]):
        self.sources = sources

    @classmethod
    def from_manifest(
        cls,
        manifest: MappingManifest,
        target_connection: Optional[SQLiteConnection] = None,
        mssql_dsn: str = "",
        timeout: int = 30,
        project_root: str = ".",
    ) -> "SourceSet":
        sources = {}
        for source_id, ref in manifest.sources.items():
            schema = load_source_schema(ref.schema_path)
            connector = SourceConnectorFactory.create_connector(
                schema,
                target_connection=target_connection,
                mssql_dsn=mssql_dsn,
                timeout=timeout,
                project_root=project_root,
            )
            logger.info(f"Source '{source_id}' uses driver {schema.driver}")
            sources[source_id] = RegisteredSource(source_id, schema, connector)
        return cls(sources)

    def get(self, source_id: str) -> RegisteredSource:
        source = self.sources.get(source_id)
        if source is None:
            raise ConfigurationError(f"Source '{source_id}' is not registered")
        return source

    def has_table(self, source_id: str, table: str) -> bool:
        source = self.sources.get(source_id)
        return source is not None and source.schema.get_table(table) is not None

    def fetch(self, source_id: str, table: str) -> List[SourceRow]:
        """Rows of ``sourceId.table``."""
        source = self.get(source_id)
        table_config = source.schema.get_table(table)
        if table_config is None:
            raise ConfigurationError(f"Table '{table}' is not defined in source '{source_id}'")
        return source.connector.fetch(table_config)

    def close(self) -> None:
        for source in self.sources.values():
            if isinstance(source.connector, StagedTableSource):
                continue
            source.connector.close()

"""Run a full or partial catalog sync from the configuration."""
import logging
import os
from typing import Dict, List, Optional, Sequence

import click
from colorama import Fore, Style

from config import AppConfig
from catalogsync.db.connection import SQLiteConnection
from catalogsync.exceptions import CatalogSyncError, ConfigurationError
from catalogsync.schema.loader import load_manifest, load_target_schema
from catalogsync.schema.models import SyncStats
from catalogsync.source.source_factory import SourceSet
from catalogsync.status.tracker import LoggingStatusTracker, StatusTracker
from catalogsync.sync.batch_engine import BatchSyncEngine, entity_priority, order_entities
from catalogsync.target.target_mapper import TargetMapper

logger = logging.getLogger(__name__)


class SyncRunner:
    """Builds sources, mapper and engine from the configuration and syncs entities."""

    def __init__(self, config: AppConfig, status: Optional[StatusTracker] = None):
        """
        Initialize runner.

        Args:
            config: Application configuration
            status: Progress sink (logging only if omitted)
        """
        self.config = config
        self.status = status or LoggingStatusTracker()
        self.manifest = load_manifest(self._path(config.manifest_path))
        self.schema = load_target_schema(self.manifest.target.schema_path)
        self.mapper = TargetMapper(self.schema)

        directory = os.path.dirname(config.target_db)
        if directory and config.target_db != ":memory:":
            os.makedirs(directory, exist_ok=True)
        self.connection = SQLiteConnection(config.target_db, query_timeout=config.query_timeout)

        self._sources: Optional[SourceSet] = None
        self._engine: Optional[BatchSyncEngine] = None

    def _path(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.join(self.config.project_root, path)

    @property
    def sources(self) -> SourceSet:
        if self._sources is None:
            self._sources = SourceSet.from_manifest(
                self.manifest,
                target_connection=self.connection,
                mssql_dsn=self.config.source_db.dsn,
                timeout=self.config.source_db.timeout,
                project_root=self.config.project_root,
            )
        return self._sources

    @property
    def engine(self) -> BatchSyncEngine:
        if self._engine is None:
            self._engine = BatchSyncEngine(
                self.manifest,
                self.sources,
                self.mapper,
                self.connection,
                status=self.status,
                bind_limit=self.config.bind_limit,
                shop_name=self.config.shop_name,
            )
        return self._engine

    def entity_names(self) -> List[str]:
        return order_entities(self.manifest)

    def entity_priority(self, name: str) -> int:
        return entity_priority(self.manifest, name)

    def run(self, entities: Optional[Sequence[str]] = None) -> Dict[str, SyncStats]:
        """
        Sync entities in engine order.

        A failing entity marks the run as failed and re-raises; entities
        synced before it stay committed.

        Args:
            entities: Subset of entity names (all if empty)

        Returns:
            {entity_name: SyncStats}
        """
        ordered = self.entity_names()
        if entities:
            unknown = [name for name in entities if name not in self.manifest.entities]
            if unknown:
                raise ConfigurationError(f"Unknown entities: {', '.join(unknown)}")
            ordered = [name for name in ordered if name in entities]

        results: Dict[str, SyncStats] = {}
        total = len(ordered)
        for position, name in enumerate(ordered, start=1):
            self.status.begin(name, f"Entity {position}/{total}")
            click.echo(f"{Fore.YELLOW}🔄 Syncing entity: {name}")
            try:
                stats = self.engine.sync_entity(name)
            except CatalogSyncError as e:
                self.status.fail(str(e), name)
                click.echo(f"{Fore.RED}   ❌ {name} failed: {e}")
                raise
            results[name] = stats
            self.status.advance(name, {"processed": position, "total": total})
            click.echo(
                f"{Fore.GREEN}   ✓ {stats.processed} processed, {stats.inserted} inserted, "
                f"{stats.updated} updated, {stats.unchanged} unchanged, {stats.errors} errors"
            )

        self.status.complete({"processed": total, "total": total})
        self.print_summary(results)
        return results

    def print_summary(self, results: Dict[str, SyncStats]) -> None:
        click.echo(f"\n{Fore.CYAN}{'=' * 70}")
        click.echo(f"{Fore.CYAN}📈 SYNC SUMMARY")
        click.echo(f"{Fore.CYAN}{'=' * 70}{Style.RESET_ALL}\n")

        for name, stats in results.items():
            icon = "✅" if stats.errors == 0 else "⚠️"
            line = (
                f"{icon} {name:24s} → {stats.inserted:6d} inserted, {stats.updated:6d} updated, "
                f"{stats.unchanged:6d} unchanged, {stats.errors:4d} errors"
            )
            if stats.orphans is not None:
                line += f", {stats.orphans} offline"
            click.echo(line)
            for relation, counts in stats.relations.items():
                click.echo(f"     ↳ {relation}: +{counts['added']} / -{counts['removed']}")

        total_ms = sum(stats.timing.get("total_ms", 0) for stats in results.values())
        click.echo(f"\n{Fore.GREEN}TOTAL: {len(results)} entities in {total_ms} ms\n")

    def setup_database(self, script_path: Optional[str] = None) -> int:
        """Run a DDL script (default: the target schema's ``setup_script``)."""
        path = script_path or self.schema.setup_script
        if not path:
            raise ConfigurationError("No setup script given and none defined in the target schema")
        with open(path, "r", encoding="utf-8") as handle:
            script = handle.read()
        return self.connection.execute_script(script)

    def close(self) -> None:
        if self._sources is not None:
            self._sources.close()
        self.connection.close()

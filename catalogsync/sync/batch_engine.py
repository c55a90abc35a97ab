"""
Batch Sync Engine - Normalize in RAM, stage, merge set-based

Per entity:
1. Load lookups, category paths and the change-tracking snapshot (reads only)
2. Normalize every source row into target payloads (per-row errors are counted)
3. Gate tracked rows by content hash and apply the EAN guard
4. In one transaction: stage and merge each table, touch unchanged hashes,
   sync relations, flag changed parents and soft-deactivate orphans
"""

import logging
import time
from dataclasses import fields as dataclass_fields
from typing import Any, Dict, List, Optional, Tuple

from catalogsync.builder.expression import ExpressionEngine
from catalogsync.builder.field_builder import FieldBuilder
from catalogsync.builder.payload_builder import PayloadBuilder, build_context
from catalogsync.db.connection import SQLiteConnection, quote_identifier
from catalogsync.exceptions import ConfigurationError
from catalogsync.schema.models import (
    ChangeTrackingConfig,
    CompiledFieldAssignment,
    EntityConfig,
    HashRecord,
    MappingManifest,
    RowOutcome,
    SyncStats,
)
from catalogsync.source.source_factory import SourceSet
from catalogsync.status.tracker import LoggingStatusTracker, StatusTracker
from catalogsync.sync.category_paths import CategoryPathResolver
from catalogsync.sync.hash_manager import EXCLUDED_FIELDS, HashManager
from catalogsync.sync.lookups import LookupStore, lookup_key
from catalogsync.sync.relations import EanGuard, RelationSync
from catalogsync.target.staging import DEFAULT_BIND_LIMIT, StagingWriter
from catalogsync.target.target_mapper import TargetMapper
from catalogsync.transformer.registry import DEFAULT_SHOP_NAME, TransformerRegistry
from catalogsync.utils import is_blank

logger = logging.getLogger(__name__)

CATEGORY_PRIORITY = 10
ARTICLE_PRIORITY = 20
DEFAULT_PRIORITY = 100
ORPHAN_LOG_LIMIT = 15


def default_priority(entity_name: str) -> int:
    """Categories before articles before everything else."""
    name = entity_name.lower()
    if "warengruppe" in name or "categor" in name:
        return CATEGORY_PRIORITY
    if "artikel" in name or "article" in name:
        return ARTICLE_PRIORITY
    return DEFAULT_PRIORITY


def entity_priority(manifest: MappingManifest, name: str) -> int:
    if name in manifest.priority:
        return manifest.priority[name]
    return default_priority(name)


def order_entities(manifest: MappingManifest) -> List[str]:
    """Entity names in sync order (priority, then name)."""
    return sorted(manifest.entities, key=lambda name: (entity_priority(manifest, name), name))


def has_all_key_values(payload: Dict[str, Any], keys: List[str]) -> bool:
    for key in keys:
        if key not in payload or is_blank(payload[key]):
            return False
    return True


def sort_master_first(rows: List[Dict[str, Any]], master_field: str, key_field: str) -> List[Dict[str, Any]]:
    """Rows whose master field is empty or ``master`` first, then by key."""
    def priority(row):
        token = "" if row.get(master_field) is None else str(row.get(master_field)).strip()
        rank = 0 if token == "" or token.lower() == "master" else 1
        return rank, "" if row.get(key_field) is None else str(row.get(key_field))

    return sorted(rows, key=priority)


class TrackedTable:
    """
    Pre-run snapshot and hash gating for one change-tracked table

    Attributes:
        records: Business key → HashRecord loaded before the run
        touches: ``(hash, id)`` pairs of unchanged rows with a stale seen hash
    """

    SNAPSHOT_COLUMNS = {
        "id": "id_column",
        "last_update": "last_update_column",
        "online": "online_column",
        "ean": "ean_column",
        "meta_title": "meta_title_column",
        "meta_description": "meta_description_column",
        "last_imported_hash": "imported_hash_column",
        "last_seen_hash": "seen_hash_column",
    }

    # stored columns changed outside the sync (orphan deactivation, shop edits)
    DRIFT_COLUMNS = (
        ("online", "online_column"),
        ("meta_title", "meta_title_column"),
        ("meta_description", "meta_description_column"),
    )

    def __init__(self, config: ChangeTrackingConfig):
        self.config = config
        self.records: Dict[str, HashRecord] = {}
        self.columns: List[str] = []
        self.touches: List[Tuple[str, Any]] = []
        self.hash_manager = HashManager(EXCLUDED_FIELDS | {
            config.id_column,
            config.update_column,
            config.last_update_column,
            config.imported_hash_column,
            config.seen_hash_column,
        })

    def load(self, connection: SQLiteConnection) -> None:
        config = self.config
        if not connection.table_exists(config.table):
            raise ConfigurationError(f"Change-tracked table '{config.table}' does not exist in the target store")

        self.columns = connection.table_columns(config.table)
        if config.key_column not in self.columns or config.id_column not in self.columns:
            raise ConfigurationError(
                f"Change-tracked table '{config.table}' needs columns "
                f"'{config.key_column}' and '{config.id_column}'"
            )

        selected = [f"{quote_identifier(config.key_column)} AS __key"]
        for attr, option in self.SNAPSHOT_COLUMNS.items():
            column = getattr(config, option)
            if column in self.columns:
                selected.append(f"{quote_identifier(column)} AS {attr}")

        sql = f"SELECT {', '.join(selected)} FROM {quote_identifier(config.table)}"
        known = {f.name for f in dataclass_fields(HashRecord)}
        self.records = {}
        for row in connection.fetch_all(sql):
            key = lookup_key(row.pop("__key"))
            if key == "":
                continue
            self.records[key] = HashRecord(**{k: v for k, v in row.items() if k in known})
        self.touches = []
        logger.debug(f"Snapshot of {config.table}: {len(self.records)} records")

    def has_column(self, column: str) -> bool:
        return column in self.columns

    def ean_owners(self) -> Dict[str, str]:
        return {
            str(record.ean).strip(): key
            for key, record in self.records.items()
            if not is_blank(record.ean)
        }

    def gate(self, key: str, payload: Dict[str, Any]) -> bool:
        """
        Decide whether a tracked payload needs a full write

        Changed rows get ``update = 1`` and both hash columns set. Unchanged
        rows only queue a touch of the seen hash when it differs.

        Returns:
            True when the payload must be staged
        """
        config = self.config
        current = self.hash_manager.hash_payload(payload)
        record = self.records.get(key)
        if record is not None:
            record.seen = True

        changed = record is None or self.hash_manager.has_changed(record.last_imported_hash, current)
        if not changed:
            changed = self.stored_drift(record, payload)

        if changed:
            if self.has_column(config.update_column):
                payload[config.update_column] = 1
            if self.has_column(config.imported_hash_column):
                payload[config.imported_hash_column] = current
            if self.has_column(config.seen_hash_column):
                payload[config.seen_hash_column] = current
            return True

        if self.has_column(config.seen_hash_column) and record.last_seen_hash != current:
            self.touches.append((current, record.id))
        return False

    def stored_drift(self, record: HashRecord, payload: Dict[str, Any]) -> bool:
        """
        True when the stored row differs from the payload in a drift column

        A soft-deactivated record that returns unchanged still has
        ``online = 0`` stored while its imported hash matches.
        """
        for attr, option in self.DRIFT_COLUMNS:
            column = getattr(self.config, option)
            if column not in payload or not self.has_column(column):
                continue
            if lookup_key(getattr(record, attr)) != lookup_key(payload[column]):
                return True
        return False

    def orphan_ids(self) -> List[Any]:
        return [record.id for record in self.records.values() if not record.seen and record.id is not None]


class BatchSyncEngine:
    """
    Entity-level batch synchronisation into the target store

    Usage:
    ```python
    engine = BatchSyncEngine(manifest, sources, mapper, connection)
    for name in engine.list_entity_names():
        stats = engine.sync_entity(name)
    ```
    """

    def __init__(
        self,
        manifest: MappingManifest,
        sources: SourceSet,
        mapper: TargetMapper,
        connection: SQLiteConnection,
        registry: Optional[TransformerRegistry] = None,
        lookups: Optional[LookupStore] = None,
        status: Optional[StatusTracker] = None,
        bind_limit: int = DEFAULT_BIND_LIMIT,
        shop_name: str = DEFAULT_SHOP_NAME,
    ):
        """
        Initialize BatchSyncEngine

        Args:
            manifest: Loaded mapping manifest
            sources: Source set of the run
            mapper: Target statement builder
            connection: Target store connection (exclusive for the run)
            registry: Transformer registry (built around ``lookups`` if omitted)
            lookups: Lookup store shared with the registry
            status: Event sink for EAN conflicts, row errors and orphans
            bind_limit: Bound-parameter ceiling of the target store
            shop_name: Shop name for default meta descriptions
        """
        self.manifest = manifest
        self.sources = sources
        self.mapper = mapper
        self.connection = connection
        self.lookups = lookups or LookupStore()
        self.registry = registry or TransformerRegistry(lookups=self.lookups, shop_name=shop_name)
        self.status = status or LoggingStatusTracker()

        self.expressions = ExpressionEngine(self.registry)
        self.field_builder = FieldBuilder(self.expressions)
        self.payload_builder = PayloadBuilder(self.expressions)
        self.writer = StagingWriter(connection, mapper, bind_limit)
        self.category_paths: Optional[Dict[str, str]] = None

    # ------------------------------------------------------------------
    # Entity ordering
    # ------------------------------------------------------------------

    def entity_priority(self, name: str) -> int:
        return entity_priority(self.manifest, name)

    def list_entity_names(self) -> List[str]:
        return order_entities(self.manifest)

    def get_entity(self, name: str) -> EntityConfig:
        entity = self.manifest.get_entity(name)
        if entity is None:
            raise ConfigurationError(f"Entity '{name}' is not defined in the manifest")
        return entity

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync_entity(self, name: str) -> SyncStats:
        """
        Synchronise one entity

        Args:
            name: Manifest entity name

        Returns:
            SyncStats with counters and timing

        Raises:
            ConfigurationError: Before any row is processed, for invalid configuration
            DatabaseError: When the write phase fails (the entity is rolled back)
        """
        started = time.perf_counter()
        entity = self.get_entity(name)
        assignments = self.field_builder.compile_entity(entity)
        relations = self._validate(entity, assignments)
        stats = SyncStats(entity=name)

        # Phase 1: reads and normalization, no writes
        source_rows = self.sources.fetch(entity.source_id, entity.table)
        if entity.sort is not None:
            source_rows = sort_master_first(source_rows, entity.sort.field, entity.sort.key)

        self.lookups.load(self.connection, self.manifest.lookups.values())
        if self.category_paths is None:
            self.category_paths = self.build_category_paths()

        tracked = None
        if entity.change_tracking is not None:
            tracked = TrackedTable(entity.change_tracking)
            tracked.load(self.connection)

        group_rows = {
            relation.config.name: self.sources.fetch(relation.config.group.source_id, relation.config.group.table)
            for relation in relations
            if relation.config.group is not None
        }

        outcomes = [
            self.normalize_row(entity, assignments, idx, row)
            for idx, row in enumerate(source_rows)
        ]
        normalized, parents = self._collect(entity, outcomes, tracked, stats)
        load_finished = time.perf_counter()

        # Phase 2: one transaction for every write of the entity
        self.connection.begin()
        try:
            for table, rows in normalized.items():
                result = self.writer.write_table(table, rows)
                stats.inserted += result.inserted
                stats.updated += result.updated
                stats.unchanged += max(0, result.staged - result.inserted - result.updated)

            if tracked is not None:
                self._touch_seen_hashes(tracked)
                if relations:
                    changed = self._sync_relations(entity, tracked, relations, group_rows, parents)
                    self._flag_parents(tracked, changed)
                if entity.orphan_policy == "soft_deactivate":
                    stats.orphans = self._deactivate_orphans(entity, tracked)

            for relation in relations:
                stats.relations[relation.config.name] = relation.totals.to_dict()

            self.connection.commit()
        except BaseException as e:
            # KeyboardInterrupt included
            self.connection.rollback()
            stats.errors += 1
            logger.error(f"Entity '{name}': write phase failed, transaction rolled back: {e!r}")
            raise

        finished = time.perf_counter()
        stats.timing = {
            "load_normalize_ms": int(round((load_finished - started) * 1000)),
            "write_ms": int(round((finished - load_finished) * 1000)),
            "total_ms": int(round((finished - started) * 1000)),
        }
        logger.info(f"Entity '{name}' synced: {stats.to_dict()}")
        return stats

    def _validate(self, entity: EntityConfig, assignments: List[CompiledFieldAssignment]) -> List[RelationSync]:
        """Check every table the entity writes; returns the relation syncers."""
        for table in {a.table for a in assignments}:
            self.mapper.unique_keys(table)

        if entity.relations and entity.change_tracking is None:
            raise ConfigurationError(f"Entity '{entity.name}': relations need 'change_tracking' for parent ids")

        relations = []
        for config in entity.relations:
            relation = RelationSync(config, self.mapper)
            relation.validate()
            relations.append(relation)
        return relations

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize_row(
        self,
        entity: EntityConfig,
        assignments: List[CompiledFieldAssignment],
        idx: int,
        row: Dict[str, Any],
    ) -> RowOutcome:
        """
        Turn one source row into target payloads

        Returns:
            RowOutcome.ok with the usable payloads, skip when none is usable,
            fatal when evaluation raised
        """
        try:
            context = build_context(entity.source_id, entity.table, row, self.category_paths or None)
            payloads = self.payload_builder.build(assignments, context)

            usable = {}
            for table, payload in payloads.items():
                if not payload:
                    continue
                payload = self.resolve_foreign_keys(entity, table, payload)

                if table == "media" and is_blank(payload.get("file_name")):
                    if is_blank(payload.get("hash")):
                        logger.debug(f"Entity '{entity.name}' row {idx}: media without file name or hash")
                        continue
                    payload["file_name"] = payload["hash"]

                if not has_all_key_values(payload, self.mapper.unique_keys(table)):
                    logger.debug(f"Entity '{entity.name}' row {idx}: {table} lacks business key values")
                    continue

                usable[table] = payload
        except Exception as e:
            return RowOutcome.fatal(e)

        if not usable:
            return RowOutcome.skip("no payload with complete business key")
        return RowOutcome.ok(usable, row=row)

    def resolve_foreign_keys(self, entity: EntityConfig, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Apply the entity's ``resolve`` rules from the pre-loaded lookups."""
        for rule in entity.resolve:
            if rule.table == table and rule.column in payload:
                payload[rule.column] = self.lookups.resolve(rule.lookup, payload[rule.column], rule.missing)
        return payload

    def _collect(
        self,
        entity: EntityConfig,
        outcomes: List[RowOutcome],
        tracked: Optional[TrackedTable],
        stats: SyncStats,
    ) -> Tuple[Dict[str, List[Dict[str, Any]]], List[Tuple[str, Dict[str, Any]]]]:
        """Group payloads per table, gate tracked rows; returns (rows per table, parent refs)."""
        normalized: Dict[str, List[Dict[str, Any]]] = {}
        parents: List[Tuple[str, Dict[str, Any]]] = []
        guard = EanGuard(tracked.ean_owners()) if tracked is not None else None

        for idx, outcome in enumerate(outcomes):
            if outcome.kind == "fatal":
                stats.errors += 1
                self.status.log_error(
                    f"Error normalizing row {idx}: {outcome.reason}",
                    {"entity": entity.name, "row": idx},
                    entity.name,
                )
                continue
            if outcome.kind == "skip":
                stats.skipped += 1
                continue

            stats.processed += 1
            for table, payload in outcome.payloads.items():
                if tracked is not None and table == tracked.config.table:
                    key = lookup_key(payload.get(tracked.config.key_column))
                    self._guard_ean(entity, guard, tracked.config, key, payload)
                    parents.append((key, outcome.row))
                    if not tracked.gate(key, payload):
                        stats.unchanged += 1
                        continue
                normalized.setdefault(table, []).append(payload)

        return normalized, parents

    def _guard_ean(
        self,
        entity: EntityConfig,
        guard: EanGuard,
        config: ChangeTrackingConfig,
        key: str,
        payload: Dict[str, Any],
    ) -> None:
        if config.ean_column not in payload:
            return
        ean = payload[config.ean_column]
        payload[config.ean_column] = guard.claim(ean, key)
        if payload[config.ean_column] is None and not is_blank(ean):
            conflict = guard.conflicts[-1]
            self.status.log_warning(
                f"EAN {conflict.ean} dropped for {conflict.key}: already assigned to {conflict.owner}",
                {"ean": conflict.ean, "key": conflict.key, "conflict_with": conflict.owner},
                entity.name,
            )

    # ------------------------------------------------------------------
    # Write phase helpers (inside the entity transaction)
    # ------------------------------------------------------------------

    def _touch_seen_hashes(self, tracked: TrackedTable) -> None:
        if not tracked.touches:
            return
        config = tracked.config
        sql = (
            f"UPDATE {quote_identifier(config.table)} SET {quote_identifier(config.seen_hash_column)} = ? "
            f"WHERE {quote_identifier(config.id_column)} = ?"
        )
        self.connection.execute_many(sql, tracked.touches)
        logger.debug(f"Touched seen hash of {len(tracked.touches)} unchanged rows in {config.table}")

    def _parent_ids(self, config: ChangeTrackingConfig) -> Dict[str, Any]:
        sql = (
            f"SELECT {quote_identifier(config.key_column)} AS k, {quote_identifier(config.id_column)} AS v "
            f"FROM {quote_identifier(config.table)}"
        )
        return {lookup_key(row["k"]): row["v"] for row in self.connection.fetch_all(sql)}

    def _sync_relations(
        self,
        entity: EntityConfig,
        tracked: TrackedTable,
        relations: List[RelationSync],
        group_rows: Dict[str, List[Dict[str, Any]]],
        parents: List[Tuple[str, Dict[str, Any]]],
    ) -> List[Any]:
        """Sync every relation for every parent; returns ids whose relations changed."""
        for relation in relations:
            relation.prepare(self.connection, group_rows.get(relation.config.name))

        parent_ids = self._parent_ids(tracked.config)
        changed = []
        for key, source_row in parents:
            parent_id = parent_ids.get(key)
            if parent_id is None:
                logger.debug(f"Entity '{entity.name}': no id for {key}, relations skipped")
                continue
            results = [relation.sync(self.connection, parent_id, source_row) for relation in relations]
            if any(result.changed for result in results):
                changed.append(parent_id)
        return changed

    def _flag_parents(self, tracked: TrackedTable, parent_ids: List[Any]) -> None:
        config = tracked.config
        if not parent_ids or not tracked.has_column(config.update_column):
            return
        sql = (
            f"UPDATE {quote_identifier(config.table)} SET {quote_identifier(config.update_column)} = 1 "
            f"WHERE {quote_identifier(config.id_column)} = ?"
        )
        self.connection.execute_many(sql, [(parent_id,) for parent_id in parent_ids])

    def _deactivate_orphans(self, entity: EntityConfig, tracked: TrackedTable) -> int:
        """Set ``online = 0, update = 1`` on records not seen in this run."""
        config = tracked.config
        missing = tracked.orphan_ids()
        if not missing:
            return 0

        assignments = []
        if tracked.has_column(config.online_column):
            assignments.append(f"{quote_identifier(config.online_column)} = 0")
        if tracked.has_column(config.update_column):
            assignments.append(f"{quote_identifier(config.update_column)} = 1")
        if not assignments:
            logger.warning(f"Entity '{entity.name}': {config.table} has no online/update column, orphans kept")
            return len(missing)

        sql = (
            f"UPDATE {quote_identifier(config.table)} SET {', '.join(assignments)} "
            f"WHERE {quote_identifier(config.id_column)} = ?"
        )
        self.connection.execute_many(sql, [(record_id,) for record_id in missing])
        self.status.log_info(
            "Records no longer in source - set offline",
            {"count": len(missing), "ids": missing[:ORPHAN_LOG_LIMIT]},
            entity.name,
        )
        return len(missing)

    # ------------------------------------------------------------------
    # Category paths
    # ------------------------------------------------------------------

    def build_category_paths(self) -> Dict[str, str]:
        """Category id → slug path from the configured hierarchy source."""
        config = self.manifest.category_paths
        if config is None or not self.sources.has_table(config.source_id, config.table):
            return {}

        rows = self.sources.fetch(config.source_id, config.table)
        resolver = CategoryPathResolver.from_rows(rows, config.id, config.parent, config.name)
        paths = resolver.build()
        logger.info(f"Built {len(paths)} category paths")
        return paths

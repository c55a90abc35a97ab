"""Typed models for manifests, schemas, compiled maps and sync results."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


# ============================================================================
# SCHEMA REGISTRY
# ============================================================================


@dataclass(frozen=True)
class TargetTableConfig:
    """Target table metadata: name, business key and known columns."""

    name: str
    business_key: Tuple[str, ...] = ()
    columns: Tuple[str, ...] = ()
    relation: bool = False

    def has_column(self, column: str) -> bool:
        return column in self.columns


@dataclass(frozen=True)
class TargetSchema:
    """All target tables, keyed by table name."""

    tables: Dict[str, TargetTableConfig] = field(default_factory=dict)
    setup_script: Optional[str] = None

    def get_table(self, name: str) -> Optional[TargetTableConfig]:
        """Return a table by name (case-insensitive fallback)."""
        if name in self.tables:
            return self.tables[name]
        lowered = name.lower()
        for table_name, table in self.tables.items():
            if table_name.lower() == lowered:
                return table
        return None


@dataclass(frozen=True)
class SourceTableConfig:
    """One logical source table as described in a source schema."""

    name: str
    table: str
    fields: Tuple[Any, ...] = ()
    default_filter: Dict[str, Any] = field(default_factory=dict)
    order: Any = None
    key_fields: Tuple[str, ...] = ()
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SourceSchema:
    """Source schema document: driver plus tables and driver options."""

    driver: str
    tables: Dict[str, SourceTableConfig] = field(default_factory=dict)
    options: Dict[str, Any] = field(default_factory=dict)

    def get_table(self, name: str) -> Optional[SourceTableConfig]:
        if name in self.tables:
            return self.tables[name]
        lowered = name.lower()
        for table_name, table in self.tables.items():
            if table_name.lower() == lowered:
                return table
        return None


# ============================================================================
# MANIFEST
# ============================================================================


@dataclass(frozen=True)
class SchemaRef:
    """Reference from the manifest to a schema document."""

    id: str
    schema_path: str


@dataclass(frozen=True)
class LookupConfig:
    """Pre-loaded key → id map read from one target table."""

    name: str
    table: str
    key: str
    id: str = "id"


@dataclass(frozen=True)
class ResolveRule:
    """Foreign-key resolution of one payload column through a lookup."""

    table: str
    column: str
    lookup: str
    missing: Any = None


@dataclass(frozen=True)
class SortConfig:
    """Master-before-variant row ordering."""

    field: str
    key: str


@dataclass(frozen=True)
class ChangeTrackingConfig:
    """Column names used by hash gating, the EAN guard and orphan handling."""

    table: str
    key_column: str = "model"
    id_column: str = "id"
    update_column: str = "update"
    last_update_column: str = "last_update"
    online_column: str = "online"
    ean_column: str = "ean"
    meta_title_column: str = "meta_title"
    meta_description_column: str = "meta_description"
    imported_hash_column: str = "last_imported_hash"
    seen_hash_column: str = "last_seen_hash"


@dataclass(frozen=True)
class RelationLookup:
    """How desired child values are turned into child ids."""

    table: str
    key: str
    id: str = "id"
    match: str = "exact"  # exact | basename | lower


@dataclass(frozen=True)
class RelationGroup:
    """Secondary source whose rows are grouped by parent key."""

    source_id: str
    table: str
    by: str
    value: str
    parent_field: str = ""


@dataclass(frozen=True)
class RelationConfig:
    """Many-to-many relation synced for every parent row."""

    name: str
    kind: str  # set | value
    table: str
    parent_column: str
    child_column: str
    lookup: Optional[RelationLookup] = None
    value_column: Optional[str] = None
    fields: Tuple[str, ...] = ()
    pairs: Tuple[Tuple[str, str], ...] = ()
    group: Optional[RelationGroup] = None
    dedupe: str = "exact"  # exact | basename | lower


@dataclass(frozen=True)
class CategoryPathConfig:
    """Where the category hierarchy comes from."""

    source_id: str
    table: str
    id: str = "Warengruppe"
    parent: str = "Anhang"
    name: str = "Bezeichnung"


@dataclass(frozen=True)
class EntityConfig:
    """One manifest entity."""

    name: str
    source_id: str
    table: str
    map: Dict[str, Any] = field(default_factory=dict)
    resolve: Tuple[ResolveRule, ...] = ()
    sort: Optional[SortConfig] = None
    change_tracking: Optional[ChangeTrackingConfig] = None
    relations: Tuple[RelationConfig, ...] = ()
    orphan_policy: str = "none"


@dataclass(frozen=True)
class MappingManifest:
    """Loaded manifest, immutable for the duration of a run."""

    sources: Dict[str, SchemaRef]
    entities: Dict[str, EntityConfig]
    target: SchemaRef
    lookups: Dict[str, LookupConfig] = field(default_factory=dict)
    category_paths: Optional[CategoryPathConfig] = None
    priority: Dict[str, int] = field(default_factory=dict)
    path: Optional[str] = None

    def get_entity(self, name: str) -> Optional[EntityConfig]:
        return self.entities.get(name)


# ============================================================================
# COMPILED MAPS
# ============================================================================


@dataclass(frozen=True)
class TransformSegment:
    """One ``| name``, ``| name(args)`` or ``| name:arg`` step."""

    name: str
    args: Tuple[str, ...] = ()
    colon_arg: Optional[str] = None
    has_parens: bool = False


@dataclass(frozen=True)
class CompiledExpression:
    """Parsed pipe expression: base reference and ordered transforms."""

    source: str
    base: Optional[str]
    transforms: Tuple[TransformSegment, ...] = ()


@dataclass(frozen=True)
class CompiledFieldAssignment:
    """A single target column assignment of an entity map."""

    table: str
    column: str
    kind: str  # expression | literal
    expression: Optional[CompiledExpression] = None
    literal: Any = None


# ============================================================================
# SYNC STATE & RESULTS
# ============================================================================


@dataclass
class HashRecord:
    """Pre-run snapshot of one tracked row."""

    id: int
    last_update: Any = None
    online: Any = None
    ean: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    last_imported_hash: Optional[str] = None
    last_seen_hash: Optional[str] = None
    seen: bool = False


@dataclass
class RowOutcome:
    """Result of normalizing one source row: ok, skip or fatal."""

    kind: str
    payloads: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    reason: str = ""
    error: Optional[BaseException] = None
    row: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, payloads: Dict[str, Dict[str, Any]], row: Optional[Dict[str, Any]] = None) -> "RowOutcome":
        return cls("ok", payloads=payloads, row=row)

    @classmethod
    def skip(cls, reason: str) -> "RowOutcome":
        return cls("skip", reason=reason)

    @classmethod
    def fatal(cls, error: BaseException) -> "RowOutcome":
        return cls("fatal", reason=str(error), error=error)

    @property
    def is_ok(self) -> bool:
        return self.kind == "ok"


@dataclass
class SyncStats:
    """Counters returned by ``BatchSyncEngine.sync_entity``."""

    entity: str
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0
    skipped: int = 0
    orphans: Optional[int] = None
    relations: Dict[str, Dict[str, int]] = field(default_factory=dict)
    timing: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "processed": self.processed,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "errors": self.errors,
            "skipped": self.skipped,
            "timing": dict(self.timing),
        }
        if self.orphans is not None:
            result["orphans"] = self.orphans
        if self.relations:
            result["relations"] = {k: dict(v) for k, v in self.relations.items()}
        return result


@dataclass
class TableWriteResult:
    """Merge outcome for one target table."""

    table: str
    staged: int = 0
    inserted: int = 0
    updated: int = 0
    batches: List[int] = field(default_factory=list)

"""
Schema Loader - Reads manifests and schema documents into typed models

Supports:
- Mapping manifests (sources, entities, target, lookups, category paths)
- Source schema documents (driver, connection options, tables)
- Target schema documents ("tables" format and legacy "entities"/"relationships")
"""

import logging
import os
from dataclasses import fields
from typing import Any, Dict, List, Optional, Tuple

import yaml

from catalogsync.exceptions import ConfigurationError
from catalogsync.schema.models import (
    CategoryPathConfig,
    ChangeTrackingConfig,
    EntityConfig,
    LookupConfig,
    MappingManifest,
    RelationConfig,
    RelationGroup,
    RelationLookup,
    ResolveRule,
    SchemaRef,
    SortConfig,
    SourceSchema,
    SourceTableConfig,
    TargetSchema,
    TargetTableConfig,
)

logger = logging.getLogger(__name__)

SUPPORTED_DRIVERS = ("mssql", "sqlite", "filedb", "filecatcher")

DEFAULT_LOOKUPS = {
    "category_by_afs_id": {"table": "category", "key": "afs_id", "id": "id"},
    "artikel_by_model": {"table": "artikel", "key": "model", "id": "id"},
    "attribute_by_name": {"table": "attribute", "key": "name", "id": "id"},
    "category_by_slug": {"table": "category", "key": "seo_slug", "id": "id"},
    "category_slug_by_id": {"table": "category", "key": "id", "id": "seo_slug"},
    "artikel_slug_by_model": {"table": "artikel", "key": "model", "id": "seo_slug"},
    "artikel_category_by_model": {"table": "artikel", "key": "model", "id": "category"},
}


def load_yaml(path: str) -> Dict[str, Any]:
    """
    Load a YAML (or JSON) document.

    Args:
        path: File path

    Returns:
        Top-level mapping

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a mapping
    """
    if not os.path.isfile(path):
        raise ConfigurationError(f"YAML file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not read YAML file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"YAML file {path} must contain a mapping at top level")

    return data


def normalize_list(value) -> List[str]:
    """Normalize a string/list key definition into a unique, non-empty list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        result = []
        for item in value:
            item = str(item).strip()
            if item and item not in result:
                result.append(item)
        return result
    value = str(value).strip()
    return [value] if value else []


def split_reference(reference: str) -> Tuple[str, str]:
    """Split ``"sourceId.table"`` into its two parts."""
    if not isinstance(reference, str) or "." not in reference:
        raise ConfigurationError(f"Invalid source reference '{reference}', expected 'sourceId.table'")
    source_id, table = reference.split(".", 1)
    source_id, table = source_id.strip(), table.strip()
    if not source_id or not table:
        raise ConfigurationError(f"Invalid source reference '{reference}', expected 'sourceId.table'")
    return source_id, table


def _resolve_path(path: str, base_dir: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.normpath(os.path.join(base_dir, path))


# ============================================================================
# TARGET SCHEMA
# ============================================================================


def _field_names(definition) -> Tuple[str, ...]:
    if isinstance(definition, dict):
        return tuple(str(k) for k in definition.keys())
    if isinstance(definition, (list, tuple)):
        return tuple(str(v) for v in definition)
    return ()


def extract_unique_keys(definition: Dict[str, Any]) -> List[str]:
    """
    Pick the upsert key of a target table definition.

    Precedence: explicit_unique/unique_key, business_key, unique_constraint,
    keys, primary_key.
    """
    candidates = (
        definition.get("explicit_unique"),
        definition.get("unique_key"),
        definition.get("business_key"),
        definition.get("unique_constraint"),
        definition.get("keys"),
        definition.get("primary_key"),
    )
    for candidate in candidates:
        keys = normalize_list(candidate)
        if keys:
            return keys
    return []


def parse_target_schema(data: Dict[str, Any], base_dir: str = ".") -> TargetSchema:
    """Build a TargetSchema from a parsed document."""
    tables: Dict[str, TargetTableConfig] = {}

    def add(name: str, definition: Dict[str, Any], relation: bool) -> None:
        table_name = str(definition.get("table", name))
        tables[table_name] = TargetTableConfig(
            name=table_name,
            business_key=tuple(extract_unique_keys(definition)),
            columns=_field_names(definition.get("fields")),
            relation=relation,
        )

    raw_tables = data.get("tables")
    if isinstance(raw_tables, dict) and raw_tables:
        for name, definition in raw_tables.items():
            if isinstance(definition, dict):
                add(str(name), definition, bool(definition.get("relation", False)))
    else:
        for name, definition in (data.get("entities") or {}).items():
            if isinstance(definition, dict):
                add(str(name), definition, False)
        for name, definition in (data.get("relationships") or {}).items():
            if isinstance(definition, dict):
                add(str(name), definition, True)

    setup_script = data.get("setup_script")
    if setup_script:
        setup_script = _resolve_path(str(setup_script), base_dir)

    return TargetSchema(tables=tables, setup_script=setup_script)


def load_target_schema(path: str) -> TargetSchema:
    """Load a target schema document."""
    data = load_yaml(path)
    return parse_target_schema(data, os.path.dirname(os.path.abspath(path)))


# ============================================================================
# SOURCE SCHEMA
# ============================================================================


def parse_source_schema(data: Dict[str, Any], base_dir: str = ".") -> SourceSchema:
    """Build a SourceSchema from a parsed document."""
    driver = str(data.get("driver", "")).strip().lower()
    if driver not in SUPPORTED_DRIVERS:
        raise ConfigurationError(
            f"Unknown source driver '{driver}'",
            {"supported": list(SUPPORTED_DRIVERS)},
        )

    options = dict(data.get("source") or data.get("connection") or {})
    options.setdefault("base_dir", base_dir)

    tables: Dict[str, SourceTableConfig] = {}
    for name, definition in (data.get("tables") or data.get("entities") or {}).items():
        if not isinstance(definition, dict):
            continue
        source = definition.get("source") or {}
        if not isinstance(source, dict):
            raise ConfigurationError(f"Source table '{name}': 'source' must be a mapping")

        table = source.get("table") or definition.get("folder") or definition.get("table") or name
        default_filter = source.get("default_filter") or definition.get("default_filter") or {}
        if not isinstance(default_filter, dict):
            raise ConfigurationError(f"Source table '{name}': default_filter must be a mapping")

        table_options = {
            k: v for k, v in definition.items()
            if k in ("key_separator", "folder")
        }
        tables[str(name)] = SourceTableConfig(
            name=str(name),
            table=str(table),
            fields=tuple(definition.get("fields") or ()),
            default_filter=dict(default_filter),
            order=source.get("order", definition.get("order")),
            key_fields=tuple(normalize_list(definition.get("keys"))),
            options=table_options,
        )

    return SourceSchema(driver=driver, tables=tables, options=options)


def load_source_schema(path: str) -> SourceSchema:
    """Load a source schema document."""
    data = load_yaml(path)
    return parse_source_schema(data, os.path.dirname(os.path.abspath(path)))


# ============================================================================
# MANIFEST
# ============================================================================


def _schema_refs(section, label: str, base_dir: str) -> Dict[str, SchemaRef]:
    if not isinstance(section, dict) or not section:
        raise ConfigurationError(f"Manifest section '{label}' is missing or empty")

    refs = {}
    for ref_id, definition in section.items():
        schema = definition.get("schema") if isinstance(definition, dict) else definition
        if not schema:
            raise ConfigurationError(f"Manifest {label} '{ref_id}' lacks a schema path")
        refs[str(ref_id)] = SchemaRef(id=str(ref_id), schema_path=_resolve_path(str(schema), base_dir))
    return refs


def _parse_resolve(entity: str, section) -> Tuple[ResolveRule, ...]:
    rules = []
    for target, rule in (section or {}).items():
        parts = str(target).split(".")
        if len(parts) != 2:
            raise ConfigurationError(f"Entity '{entity}': resolve target '{target}' must be 'table.column'")
        if isinstance(rule, str):
            rule = {"lookup": rule}
        if not isinstance(rule, dict) or not rule.get("lookup"):
            raise ConfigurationError(f"Entity '{entity}': resolve rule for '{target}' needs a lookup")
        rules.append(ResolveRule(
            table=parts[0],
            column=parts[1],
            lookup=str(rule["lookup"]),
            missing=rule.get("missing"),
        ))
    return tuple(rules)


def _parse_relation(entity: str, name: str, definition: Dict[str, Any]) -> RelationConfig:
    kind = str(definition.get("kind", "set")).lower()
    if kind not in ("set", "value"):
        raise ConfigurationError(f"Entity '{entity}': relation '{name}' has unknown kind '{kind}'")

    for required in ("table", "parent_column", "child_column"):
        if not definition.get(required):
            raise ConfigurationError(f"Entity '{entity}': relation '{name}' lacks '{required}'")

    lookup = None
    if isinstance(definition.get("lookup"), dict):
        raw = definition["lookup"]
        lookup = RelationLookup(
            table=str(raw["table"]),
            key=str(raw["key"]),
            id=str(raw.get("id", "id")),
            match=str(raw.get("match", "exact")).lower(),
        )

    group = None
    if isinstance(definition.get("group"), dict):
        raw = definition["group"]
        source_id, table = split_reference(raw.get("from", ""))
        group = RelationGroup(
            source_id=source_id,
            table=table,
            by=str(raw["by"]),
            value=str(raw["value"]),
            parent_field=str(raw.get("parent_field") or raw["by"]),
        )

    pairs = tuple(
        (str(pair[0]), str(pair[1])) for pair in (definition.get("pairs") or ())
        if isinstance(pair, (list, tuple)) and len(pair) == 2
    )

    if kind == "value" and not definition.get("value_column"):
        raise ConfigurationError(f"Entity '{entity}': value relation '{name}' needs 'value_column'")

    return RelationConfig(
        name=name,
        kind=kind,
        table=str(definition["table"]),
        parent_column=str(definition["parent_column"]),
        child_column=str(definition["child_column"]),
        lookup=lookup,
        value_column=definition.get("value_column"),
        fields=tuple(str(f) for f in (definition.get("fields") or ())),
        pairs=pairs,
        group=group,
        dedupe=str(definition.get("dedupe", "exact")).lower(),
    )


def _parse_entity(name: str, definition: Dict[str, Any]) -> EntityConfig:
    if not isinstance(definition, dict):
        raise ConfigurationError(f"Entity '{name}' must be a mapping")

    source_id, table = split_reference(definition.get("from", ""))

    field_map = definition.get("map") or {}
    if not isinstance(field_map, dict) or not field_map:
        raise ConfigurationError(f"Entity '{name}' has no 'map' section")

    sort = None
    if isinstance(definition.get("sort"), dict):
        sort = SortConfig(field=str(definition["sort"]["field"]), key=str(definition["sort"]["key"]))

    tracking = None
    if isinstance(definition.get("change_tracking"), dict):
        raw = dict(definition["change_tracking"])
        if not raw.get("table"):
            raise ConfigurationError(f"Entity '{name}': change_tracking needs 'table'")
        unknown = set(raw) - {f.name for f in fields(ChangeTrackingConfig)}
        if unknown:
            raise ConfigurationError(f"Entity '{name}': unknown change_tracking keys {sorted(unknown)}")
        tracking = ChangeTrackingConfig(**{k: str(v) for k, v in raw.items()})

    relations = tuple(
        _parse_relation(name, str(rel_name), rel_def)
        for rel_name, rel_def in (definition.get("relations") or {}).items()
        if isinstance(rel_def, dict)
    )

    orphan_policy = definition.get("orphan_policy")
    if orphan_policy is None:
        orphan_policy = "soft_deactivate" if tracking else "none"

    return EntityConfig(
        name=name,
        source_id=source_id,
        table=table,
        map=dict(field_map),
        resolve=_parse_resolve(name, definition.get("resolve")),
        sort=sort,
        change_tracking=tracking,
        relations=relations,
        orphan_policy=str(orphan_policy),
    )


def parse_manifest(data: Dict[str, Any], base_dir: str = ".", path: Optional[str] = None) -> MappingManifest:
    """Build a MappingManifest from a parsed document."""
    sources = _schema_refs(data.get("sources"), "sources", base_dir)
    targets = _schema_refs(data.get("target"), "target", base_dir)
    target = next(iter(targets.values()))

    entities = {}
    for name, definition in (data.get("entities") or {}).items():
        entity = _parse_entity(str(name), definition)
        if entity.source_id not in sources:
            raise ConfigurationError(
                f"Entity '{name}' references unknown source '{entity.source_id}'"
            )
        entities[str(name)] = entity

    raw_lookups = dict(DEFAULT_LOOKUPS)
    raw_lookups.update(data.get("lookups") or {})
    lookups = {
        str(name): LookupConfig(
            name=str(name),
            table=str(cfg["table"]),
            key=str(cfg["key"]),
            id=str(cfg.get("id", "id")),
        )
        for name, cfg in raw_lookups.items()
        if isinstance(cfg, dict)
    }

    category_paths = None
    if isinstance(data.get("category_paths"), dict):
        raw = data["category_paths"]
        source_id, table = split_reference(raw.get("from", ""))
        category_paths = CategoryPathConfig(
            source_id=source_id,
            table=table,
            id=str(raw.get("id", "Warengruppe")),
            parent=str(raw.get("parent", "Anhang")),
            name=str(raw.get("name", "Bezeichnung")),
        )

    priority = {str(k): int(v) for k, v in (data.get("priority") or {}).items()}

    logger.debug(f"Manifest loaded: {len(entities)} entities, {len(sources)} sources")

    return MappingManifest(
        sources=sources,
        entities=entities,
        target=target,
        lookups=lookups,
        category_paths=category_paths,
        priority=priority,
        path=path,
    )


def load_manifest(path: str) -> MappingManifest:
    """
    Load a mapping manifest from disk.

    Schema paths inside the manifest are resolved relative to the
    manifest's own directory.
    """
    data = load_yaml(path)
    return parse_manifest(data, os.path.dirname(os.path.abspath(path)), path)

"""
Relationship Sync - Many-to-many relation diffing against pre-loaded snapshots

Per relation and parent row:
1. Desired child values are read from the source row (``fields``/``pairs``)
   or from a grouped secondary source (``group``)
2. Values are de-duplicated, then resolved to child ids through a lookup index
3. The desired set is diffed against the snapshot loaded once per run
4. Additions are upserted and removals deleted through the TargetMapper
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from catalogsync.db.connection import quote_identifier
from catalogsync.exceptions import ConfigurationError
from catalogsync.schema.models import RelationConfig, RelationLookup
from catalogsync.sync.lookups import lookup_key
from catalogsync.target.target_mapper import TargetMapper
from catalogsync.transformer.text import basename

logger = logging.getLogger(__name__)


# ============================================================================
# DIFFING
# ============================================================================


class RelationshipDiffer:
    """Set and value diffs between desired and existing relations."""

    @staticmethod
    def diff_set(existing: Iterable[Any], desired: Iterable[Any]) -> Tuple[Set[Any], Set[Any]]:
        """
        Returns:
            (added, removed) where added = desired - existing and removed = existing - desired
        """
        existing_set = set(existing)
        desired_set = set(desired)
        return desired_set - existing_set, existing_set - desired_set

    @staticmethod
    def diff_values(
        existing: Mapping[Any, str],
        desired: Mapping[Any, str],
    ) -> Tuple[Dict[Any, str], Set[Any]]:
        """
        Diff on ``(child id, value)`` pairs

        Returns:
            (upserts, removed): upserts holds new ids and ids whose value changed
        """
        upserts = {
            child: value
            for child, value in desired.items()
            if child not in existing or existing[child] != value
        }
        removed = {child for child in existing if child not in desired}
        return upserts, removed


# ============================================================================
# EAN GUARD
# ============================================================================


@dataclass
class EanConflict:
    """An EAN dropped because another business key already holds it."""

    ean: str
    key: str
    owner: str


class EanGuard:
    """
    Process-wide ``EAN → business key`` map

    Seeded from the pre-run snapshot. A row whose EAN already belongs to a
    different key loses its EAN; otherwise the row claims it.
    """

    def __init__(self, owners: Optional[Mapping[str, str]] = None):
        self.owners: Dict[str, str] = {}
        self.by_key: Dict[str, str] = {}
        self.conflicts: List[EanConflict] = []
        for ean, key in (owners or {}).items():
            self._assign(lookup_key(ean), lookup_key(key))

    def _assign(self, ean: str, key: str) -> None:
        if ean == "" or key == "":
            return
        previous = self.by_key.get(key)
        if previous is not None and previous != ean and self.owners.get(previous) == key:
            del self.owners[previous]
        self.owners[ean] = key
        self.by_key[key] = ean

    def owner(self, ean) -> Optional[str]:
        return self.owners.get(lookup_key(ean))

    def claim(self, ean, key) -> Optional[str]:
        """
        Claim ``ean`` for ``key``

        Returns:
            The trimmed EAN, or None when it is blank or held by another key
        """
        ean_value = lookup_key(ean)
        key_value = lookup_key(key)
        if ean_value == "":
            return None

        owner = self.owners.get(ean_value)
        if owner is not None and owner != key_value:
            self.conflicts.append(EanConflict(ean=ean_value, key=key_value, owner=owner))
            return None

        self._assign(ean_value, key_value)
        return ean_value


# ============================================================================
# RELATION SYNC
# ============================================================================


def dedupe_key(value: str, mode: str) -> str:
    if mode == "basename":
        return (basename(value) or "").lower()
    if mode == "lower":
        return value.lower()
    return value


class RelationIndex:
    """Child key → child id map honouring the lookup's match mode."""

    def __init__(self, lookup: RelationLookup):
        self.lookup = lookup
        self.ids: Dict[str, Any] = {}

    def load(self, connection) -> "RelationIndex":
        lookup = self.lookup
        if not connection.table_exists(lookup.table):
            logger.warning(f"Relation lookup table {lookup.table} does not exist")
            return self

        sql = (
            f"SELECT {quote_identifier(lookup.key)} AS k, {quote_identifier(lookup.id)} AS v "
            f"FROM {quote_identifier(lookup.table)}"
        )
        for row in connection.fetch_all(sql):
            self.add(row["k"], row["v"])
        return self

    def add(self, key, child_id) -> None:
        name = lookup_key(key)
        if name == "":
            return
        self.ids.setdefault(name, child_id)
        if self.lookup.match == "basename":
            base = basename(name) or ""
            self.ids.setdefault(base, child_id)
            self.ids.setdefault(base.lower(), child_id)
        elif self.lookup.match == "lower":
            self.ids.setdefault(name.lower(), child_id)

    def resolve(self, value) -> Optional[Any]:
        name = lookup_key(value)
        if name == "":
            return None

        candidates = [name]
        if self.lookup.match == "basename":
            base = basename(name) or ""
            candidates.extend([base, base.lower()])
        elif self.lookup.match == "lower":
            candidates.append(name.lower())

        for candidate in candidates:
            if candidate in self.ids:
                return self.ids[candidate]
        return None


@dataclass
class RelationResult:
    """Outcome of one relation sync for one parent."""

    added: int = 0
    removed: int = 0

    @property
    def changed(self) -> bool:
        return (self.added + self.removed) > 0


@dataclass
class RelationTotals:
    """Per-relation counters over a whole entity run."""

    added: int = 0
    removed: int = 0
    unresolved: int = 0
    parents: Set[Any] = field(default_factory=set)

    def to_dict(self) -> Dict[str, int]:
        return {
            "added": self.added,
            "removed": self.removed,
            "unresolved": self.unresolved,
            "parents_changed": len(self.parents),
        }


class RelationSync:
    """
    Syncs one configured relation for every parent row of an entity

    Usage:
    ```python
    sync = RelationSync(config, mapper)
    sync.prepare(connection, group_rows)
    result = sync.sync(connection, parent_id, source_row)
    ```
    """

    def __init__(self, config: RelationConfig, mapper: TargetMapper):
        """
        Initialize RelationSync

        Args:
            config: Relation definition from the manifest
            mapper: Target statement builder (relation table must have a key)
        """
        self.config = config
        self.mapper = mapper
        self.differ = RelationshipDiffer()
        self.index: Optional[RelationIndex] = None
        self.snapshot: Dict[Any, Any] = {}
        self.groups: Dict[str, List[str]] = {}
        self.write_update_flag = False
        self.totals = RelationTotals()

    def validate(self) -> None:
        """Raise ConfigurationError when the relation cannot be written."""
        self.mapper.unique_keys(self.config.table)
        if not (self.config.fields or self.config.pairs or self.config.group):
            raise ConfigurationError(
                f"Relation '{self.config.name}' needs 'fields', 'pairs' or 'group'"
            )
        if self.config.kind == "value" and not self.config.pairs:
            raise ConfigurationError(f"Value relation '{self.config.name}' needs 'pairs'")

    # ------------------------------------------------------------------
    # Preload
    # ------------------------------------------------------------------

    def prepare(self, connection, group_rows: Optional[Iterable[Dict[str, Any]]] = None) -> None:
        """
        Load snapshot, lookup index and grouped source values once per run

        Args:
            connection: Target SQLiteConnection
            group_rows: Rows of the ``group`` source (when configured)
        """
        config = self.config
        self.totals = RelationTotals()
        self.snapshot = self.load_snapshot(connection)
        self.index = RelationIndex(config.lookup).load(connection) if config.lookup else None
        self.write_update_flag = "update" in connection.table_columns(config.table)

        self.groups = {}
        if config.group is not None:
            self.groups = self.group_values(group_rows or [])

        logger.debug(
            f"Relation '{config.name}': {len(self.snapshot)} parents in snapshot, "
            f"{len(self.groups)} source groups"
        )

    def load_snapshot(self, connection) -> Dict[Any, Any]:
        """``parent → set(child)`` or ``parent → {child: value}`` for value relations."""
        config = self.config
        if not connection.table_exists(config.table):
            raise ConfigurationError(f"Relation table '{config.table}' does not exist in the target store")

        columns = [config.parent_column, config.child_column]
        if config.kind == "value":
            columns.append(config.value_column)
        sql = "SELECT {} FROM {}".format(
            ", ".join(quote_identifier(c) for c in columns),
            quote_identifier(config.table),
        )

        if config.kind == "value":
            values: Dict[Any, Dict[Any, str]] = defaultdict(dict)
            for row in connection.fetch_all(sql):
                stored = row[config.value_column]
                values[row[config.parent_column]][self._identity(row[config.child_column])] = (
                    "" if stored is None else str(stored)
                )
            return dict(values)

        children: Dict[Any, Set[Any]] = defaultdict(set)
        for row in connection.fetch_all(sql):
            children[row[config.parent_column]].add(self._identity(row[config.child_column]))
        return dict(children)

    def _identity(self, child) -> Any:
        """Child as compared by the differ; without a lookup, desired children are key strings."""
        if self.config.lookup is None:
            return lookup_key(child)
        return child

    def group_values(self, rows: Iterable[Dict[str, Any]]) -> Dict[str, List[str]]:
        group = self.config.group
        grouped: Dict[str, List[str]] = defaultdict(list)
        for row in rows:
            key = lookup_key(row.get(group.by))
            value = lookup_key(row.get(group.value))
            if key == "" or value == "":
                continue
            grouped[key].append(value)
        return dict(grouped)

    # ------------------------------------------------------------------
    # Desired state
    # ------------------------------------------------------------------

    def desired_values(self, source_row: Dict[str, Any]) -> List[str]:
        """Trimmed, de-duplicated raw values for a set relation."""
        config = self.config
        raw: List[str] = []
        for name in config.fields:
            raw.append(lookup_key(source_row.get(name)))
        if config.group is not None:
            parent_key = lookup_key(source_row.get(config.group.parent_field))
            raw.extend(self.groups.get(parent_key, []))

        unique: Dict[str, str] = {}
        for value in raw:
            if value == "":
                continue
            unique.setdefault(dedupe_key(value, config.dedupe), value)
        return list(unique.values())

    def desired_children(self, source_row: Dict[str, Any]) -> Set[Any]:
        children = set()
        for value in self.desired_values(source_row):
            child = self._resolve(value)
            if child is not None:
                children.add(child)
        return children

    def desired_pairs(self, source_row: Dict[str, Any]) -> Dict[Any, str]:
        """``child id → value`` for a value relation; blank values are skipped."""
        pairs: Dict[Any, str] = {}
        for name_field, value_field in self.config.pairs:
            name = lookup_key(source_row.get(name_field))
            value = lookup_key(source_row.get(value_field))
            if name == "" or value == "":
                continue
            child = self._resolve(name)
            if child is not None:
                pairs[child] = value
        return pairs

    def _resolve(self, value: str) -> Optional[Any]:
        if self.index is None:
            return value
        child = self.index.resolve(value)
        if child is None:
            self.totals.unresolved += 1
        return child

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def sync(self, connection, parent_id, source_row: Dict[str, Any]) -> RelationResult:
        """
        Bring one parent's relation rows in line with the source row

        Args:
            connection: Target connection (inside the entity transaction)
            parent_id: Internal id of the parent row
            source_row: Raw source row of the parent

        Returns:
            RelationResult with added/removed counts
        """
        config = self.config
        result = RelationResult()

        if config.kind == "value":
            existing = self.snapshot.get(parent_id, {})
            upserts, removed = self.differ.diff_values(existing, self.desired_pairs(source_row))
            for child, value in upserts.items():
                self.mapper.upsert(connection, config.table, self._row(parent_id, child, value))
            for child in removed:
                self.mapper.delete(connection, config.table, {
                    config.parent_column: parent_id,
                    config.child_column: child,
                })
            current = {k: v for k, v in existing.items() if k not in removed}
            current.update(upserts)
            self.snapshot[parent_id] = current
            result.added, result.removed = len(upserts), len(removed)
        else:
            existing = self.snapshot.get(parent_id, set())
            added, removed = self.differ.diff_set(existing, self.desired_children(source_row))
            for child in sorted(added, key=str):
                self.mapper.upsert(connection, config.table, self._row(parent_id, child))
            for child in sorted(removed, key=str):
                self.mapper.delete(connection, config.table, {
                    config.parent_column: parent_id,
                    config.child_column: child,
                })
            self.snapshot[parent_id] = (set(existing) - removed) | added
            result.added, result.removed = len(added), len(removed)

        self.totals.added += result.added
        self.totals.removed += result.removed
        if result.changed:
            self.totals.parents.add(parent_id)
        return result

    def _row(self, parent_id, child, value: Optional[str] = None) -> Dict[str, Any]:
        config = self.config
        row = {config.parent_column: parent_id, config.child_column: child}
        if config.kind == "value":
            row[config.value_column] = value
        if self.write_update_flag:
            row["update"] = 1
        return row

"""Category hierarchy → slug paths such as ``buero/stuehle``."""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from catalogsync.sync.lookups import lookup_key
from catalogsync.transformer.text import slugify

logger = logging.getLogger(__name__)

ROOT_PARENTS = ("", "0")


class CategoryPathResolver:
    """
    Resolves slug paths over a flat ``id → (parent, name)`` table

    Each id is computed once, without recursion. Every node on a cycle in
    the parent chain is treated as a root, so it resolves to its own slug
    whichever node is resolved first.
    """

    def __init__(self):
        self.nodes: Dict[str, Tuple[str, str]] = {}
        self._cache: Dict[str, str] = {}

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Dict[str, Any]],
        id_field: str = "Warengruppe",
        parent_field: str = "Anhang",
        name_field: str = "Bezeichnung",
    ) -> "CategoryPathResolver":
        resolver = cls()
        for row in rows:
            node_id = lookup_key(row.get(id_field))
            if node_id == "":
                continue
            parent = lookup_key(row.get(parent_field))
            name = "" if row.get(name_field) is None else str(row.get(name_field))
            resolver.add(node_id, parent, name)
        return resolver

    def add(self, node_id, parent, name: str) -> None:
        self.nodes[lookup_key(node_id)] = (lookup_key(parent), name)
        self._cache.clear()

    def resolve(self, node_id) -> Optional[str]:
        """
        Slug path of one category

        Args:
            node_id: Category id

        Returns:
            ``parent-path/slug``, the slug alone for roots, or None for unknown ids
        """
        key = lookup_key(node_id)
        if key not in self.nodes:
            return None
        return self._resolve(key)

    def _resolve(self, key: str) -> str:
        # walk up until a root, an unknown parent, a cached node or a repeat
        chain: List[str] = []
        position: Dict[str, int] = {}
        prefix = ""
        current = key
        while True:
            cached = self._cache.get(current)
            if cached is not None:
                prefix = cached
                break
            if current in position:
                start = position[current]
                cycle = chain[start:]
                logger.warning(f"Category cycle detected: {' → '.join(cycle + [current])}; parents ignored")
                for node in cycle:
                    self._cache[node] = slugify(self.nodes[node][1])
                chain = chain[:start]
                prefix = self._cache[current]
                break
            position[current] = len(chain)
            chain.append(current)
            parent = self.nodes[current][0]
            if parent in ROOT_PARENTS or parent not in self.nodes:
                break
            current = parent

        for node in reversed(chain):
            slug = slugify(self.nodes[node][1])
            path = f"{prefix}/{slug}" if prefix else slug
            self._cache[node] = path
            prefix = path
        return self._cache[key]

    def build(self) -> Dict[str, str]:
        """Paths of all known ids."""
        return {key: self._resolve(key) for key in self.nodes}

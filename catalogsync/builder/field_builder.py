"""
Field Builder - Compiles manifest ``map`` sections into column assignments

Supports:
- Target paths ``<schemaHint>.<table>.<column>`` (schema hint ignored)
- String values compiled as expressions
- Non-string values (numbers, booleans, null, lists, maps) kept as literals
- Per-entity caching for the lifetime of the builder
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from catalogsync.builder.expression import ExpressionEngine
from catalogsync.exceptions import ConfigurationError
from catalogsync.schema.models import CompiledFieldAssignment, EntityConfig

logger = logging.getLogger(__name__)


def parse_target_path(path: str) -> Tuple[str, str]:
    """
    Split a target path into (table, column)

    Raises:
        ConfigurationError: If the path has fewer than three segments
    """
    parts = [p.strip() for p in str(path).split(".")]
    if len(parts) < 3 or not parts[1] or not parts[2]:
        raise ConfigurationError(
            f"Invalid target path '{path}', expected '<schema>.<table>.<column>'"
        )
    if len(parts) > 3:
        logger.warning(f"Target path '{path}' has extra segments, using '{parts[1]}.{parts[2]}'")
    return parts[1], parts[2]


class FieldBuilder:
    """Builds and caches compiled field assignments per entity"""

    def __init__(self, engine: Optional[ExpressionEngine] = None):
        """
        Initialize FieldBuilder

        Args:
            engine: Expression engine used to compile string expressions
        """
        self.engine = engine or ExpressionEngine()
        self._cache: Dict[str, List[CompiledFieldAssignment]] = {}

    def compile_entity(self, entity: EntityConfig) -> List[CompiledFieldAssignment]:
        """Compiled map of an entity, built once and cached by entity name."""
        cached = self._cache.get(entity.name)
        if cached is not None:
            return cached

        assignments = self.compile_map(entity.map)
        self._cache[entity.name] = assignments
        logger.debug(f"Compiled {len(assignments)} assignments for entity '{entity.name}'")
        return assignments

    def compile_map(self, field_map: Dict[str, Any]) -> List[CompiledFieldAssignment]:
        """
        Compile a ``map`` section

        Args:
            field_map: ``{"schema.table.column": expression | literal}``

        Returns:
            Ordered list of CompiledFieldAssignment
        """
        assignments = []
        for path, value in field_map.items():
            table, column = parse_target_path(path)
            if isinstance(value, str):
                assignments.append(CompiledFieldAssignment(
                    table=table,
                    column=column,
                    kind="expression",
                    expression=self.engine.compile(value),
                ))
            else:
                assignments.append(CompiledFieldAssignment(
                    table=table,
                    column=column,
                    kind="literal",
                    literal=value,
                ))
        return assignments

    def clear_cache(self) -> None:
        self._cache.clear()

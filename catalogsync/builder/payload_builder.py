"""
Payload Builder - Turns one source row into target table payloads

Integrates:
- Evaluation context construction (source id / table keys, upper-case aliases)
- FieldBuilder compiled assignments
- ExpressionEngine evaluation
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from catalogsync.builder.expression import ExpressionEngine
from catalogsync.schema.models import CompiledFieldAssignment
from catalogsync.transformer.registry import CATEGORY_PATHS_KEY

logger = logging.getLogger(__name__)


def build_context(
    source_id: str,
    table: str,
    row: Dict[str, Any],
    category_paths: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Build the evaluation context for one source row

    Args:
        source_id: Manifest source id (e.g. "afs")
        table: Source table name (e.g. "Artikel")
        row: Source row
        category_paths: Optional category id → slug path map

    Returns:
        ``{sourceId: {table: row}, SOURCEID: {table: row}, table: row, TABLE: row}``
    """
    context: Dict[str, Any] = {
        source_id: {table: row},
        source_id.upper(): {table: row},
        table: row,
        table.upper(): row,
    }
    if category_paths is not None:
        context[CATEGORY_PATHS_KEY] = category_paths
    return context


class PayloadBuilder:
    """
    Builds target payloads from compiled assignments

    Usage:
    ```python
    builder = PayloadBuilder(engine)
    payloads = builder.build(assignments, context)
    # Returns: {"artikel": {"model": "A-1", "name": "Schraube"}, ...}
    ```
    """

    def __init__(self, engine: Optional[ExpressionEngine] = None):
        self.engine = engine or ExpressionEngine()

    def build(
        self,
        assignments: List[CompiledFieldAssignment],
        context: Dict[str, Any],
    ) -> Dict[str, Dict[str, Any]]:
        """
        Evaluate every assignment against the context

        Args:
            assignments: Compiled assignments of one entity
            context: Evaluation context of the row

        Returns:
            ``{table: {column: value}}``
        """
        payloads: Dict[str, Dict[str, Any]] = {}
        for assignment in assignments:
            if assignment.kind == "literal":
                value = copy.deepcopy(assignment.literal)
            else:
                value = self.engine.evaluate(assignment.expression, context)
            payloads.setdefault(assignment.table, {})[assignment.column] = value
        return payloads

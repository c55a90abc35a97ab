"""
Sync Module - Hash-gated batch synchronisation

Provides:
- BatchSyncEngine: normalize in RAM, stage, set-based merge per entity
- HashManager: canonical content hashes for update-skip decisions
- RelationSync / RelationshipDiffer / EanGuard: many-to-many diffs and EAN uniqueness
- CategoryPathResolver: hierarchical category slug paths
- LookupStore: pre-loaded foreign-key maps
"""

from .batch_engine import BatchSyncEngine
from .category_paths import CategoryPathResolver
from .hash_manager import HashManager
from .lookups import LookupStore
from .relations import EanGuard, RelationshipDiffer, RelationSync

__all__ = [
    "BatchSyncEngine",
    "CategoryPathResolver",
    "EanGuard",
    "HashManager",
    "LookupStore",
    "RelationSync",
    "RelationshipDiffer",
]

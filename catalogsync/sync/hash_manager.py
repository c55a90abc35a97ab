"""
Hash Manager - Canonical content hashes for change detection

A row is rewritten only when the hash of its hashable fields differs from
the hash stored at the last import.
"""

import hashlib
import json
import logging
from typing import Any, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

EXCLUDED_FIELDS = frozenset({
    "ID",
    "id",
    "xt_id",
    "afs_id",
    "XT_ID",
    "AFS_ID",
    "update",
    "last_update",
    "last_update_ts",
    "last_imported_hash",
    "last_seen_hash",
    "price_hash",
    "media_hash",
    "content_hash",
    "XT_Category_ID",
    "xt_category_id",
    "XT_ARTIKEL_ID",
    "XT_Bild_ID",
    "XT_Attrib_ID",
})


class HashManager:
    """SHA-256 hashing over normalized, key-sorted field maps."""

    def __init__(self, excluded_fields: Optional[Iterable[str]] = None):
        """
        Initialize HashManager

        Args:
            excluded_fields: Identity/bookkeeping fields left out of the hash
                             (defaults to EXCLUDED_FIELDS)
        """
        self.excluded_fields = frozenset(excluded_fields) if excluded_fields is not None else EXCLUDED_FIELDS

    def extract_hashable_fields(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Drop ids, update flags, timestamps and the hash columns themselves."""
        return {k: v for k, v in payload.items() if k not in self.excluded_fields}

    def generate_hash(self, fields: Mapping[str, Any]) -> str:
        """
        Generate a deterministic hash

        Args:
            fields: Field name → value

        Returns:
            64 character hex SHA-256 digest
        """
        normalized = self.normalize(dict(fields))
        data = json.dumps(normalized, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    def hash_payload(self, payload: Mapping[str, Any]) -> str:
        return self.generate_hash(self.extract_hashable_fields(payload))

    @staticmethod
    def has_changed(old_hash: Optional[str], new_hash: str) -> bool:
        """True for a missing/empty old hash or a differing one."""
        if old_hash is None or old_hash == "":
            return True
        return old_hash != new_hash

    def normalize(self, value: Any) -> Any:
        """None → '', strings trimmed, floats rounded to 2, bools → 0/1."""
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        if isinstance(value, bool):
            return 1 if value else 0
        if isinstance(value, float):
            return round(value, 2)
        if isinstance(value, int):
            return value
        if isinstance(value, Mapping):
            return {str(k): self.normalize(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.normalize(v) for v in value]
        return str(value)

"""
FileDB Source - Record-as-directory flat-file store

Layout::

    <base_path>/<folder>/<key>/<field><extension>

Composite keys are joined with ``key_separator`` (default ``__``) inside the
record folder name. Each field lives in its own small text file; a missing
file yields None.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional

from catalogsync.exceptions import ConfigurationError, SourceError
from catalogsync.schema.models import SourceTableConfig
from catalogsync.source.base import SourceConnector, SourceRow

logger = logging.getLogger(__name__)

FILENAME_CASES = ("preserve", "lower", "upper")


class FileDBSource(SourceConnector):
    """Reads records from a directory tree."""

    driver = "filedb"

    def __init__(
        self,
        base_path: str,
        extension: str = ".txt",
        encoding: str = "utf-8",
        filename_case: str = "preserve",
        sanitize_filenames: bool = False,
    ):
        """
        Initialize connector.

        Args:
            base_path: Root directory of the store
            extension: Field file extension (leading dot optional)
            encoding: Charset of the field files, decoded to str
            filename_case: preserve | lower | upper
            sanitize_filenames: Replace characters outside ``[A-Za-z0-9_-]``
                                with ``_`` in field file names

        Raises:
            SourceError: If the base path does not exist
        """
        super().__init__()
        if not os.path.isdir(base_path):
            raise SourceError(f"FileDB base path not found: {base_path}")

        if extension and not extension.startswith("."):
            extension = "." + extension
        if filename_case not in FILENAME_CASES:
            raise ConfigurationError(f"filename_case must be one of {FILENAME_CASES}")

        self.base_path = base_path.rstrip(os.sep) or base_path
        self.extension = extension
        self.encoding = encoding or "utf-8"
        self.filename_case = filename_case
        self.sanitize_filenames = sanitize_filenames

    @classmethod
    def from_options(cls, options: Dict[str, Any], project_root: str = ".") -> "FileDBSource":
        """Build from a source schema's ``source`` options."""
        base_path = str(options.get("base_path", "")).strip()
        if not base_path:
            raise ConfigurationError("FileDB source definition requires 'base_path'")
        if not os.path.isabs(base_path):
            base_path = os.path.join(options.get("base_dir") or project_root, base_path)

        return cls(
            base_path,
            extension=str(options.get("extension", ".txt")),
            encoding=str(options.get("encoding", "utf-8")).lower(),
            filename_case=str(options.get("filename_case", "preserve")).lower(),
            sanitize_filenames=bool(options.get("sanitize_filenames", False)),
        )

    def fetch_rows(self, table_config: SourceTableConfig) -> List[SourceRow]:
        folder = table_config.options.get("folder") or table_config.table
        table_path = os.path.join(self.base_path, folder)
        if not os.path.isdir(table_path):
            raise SourceError(f"FileDB table folder not found: {table_path}")

        keys = list(table_config.key_fields)
        if not keys:
            raise ConfigurationError(f"FileDB table '{table_config.name}' requires at least one key")

        separator = str(table_config.options.get("key_separator", "__"))
        fields = [f for f in table_config.fields if isinstance(f, str) and f]

        records = []
        for entry in sorted(os.listdir(table_path)):
            if entry.startswith("."):
                continue
            record_path = os.path.join(table_path, entry)
            if not os.path.isdir(record_path):
                continue

            row = self._key_values(entry, keys, separator, table_config.name)
            if row is None:
                continue

            for field_name in fields:
                if field_name in row:
                    continue
                row[field_name] = self._read_field(record_path, field_name)
            records.append(row)

        logger.info(f"Read {len(records)} records from FileDB folder {folder}")
        return records

    def _key_values(self, folder_name: str, keys: List[str], separator: str, table: str) -> Optional[SourceRow]:
        if len(keys) == 1:
            return {keys[0]: self._restore_case(folder_name)}

        parts = folder_name.split(separator)
        if len(parts) != len(keys):
            logger.warning(
                f"FileDB table '{table}': expected {len(keys)} key parts, "
                f"folder '{folder_name}' has {len(parts)}"
            )
            return None
        return {key: self._restore_case(part) for key, part in zip(keys, parts)}

    def _restore_case(self, value: str) -> str:
        if self.filename_case == "lower":
            return value.lower()
        if self.filename_case == "upper":
            return value.upper()
        return value

    def field_filename(self, field_name: str) -> str:
        name = field_name
        if self.sanitize_filenames:
            name = re.sub(r"[^A-Za-z0-9_\-]", "_", name)
        if self.filename_case == "lower":
            name = name.lower()
        elif self.filename_case == "upper":
            name = name.upper()
        return name + self.extension

    def _read_field(self, record_path: str, field_name: str) -> Optional[str]:
        path = os.path.join(record_path, self.field_filename(field_name))
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding=self.encoding, errors="replace", newline="") as f:
                content = f.read()
        except (OSError, LookupError) as e:
            raise SourceError(f"FileDB: could not read {path}: {e}") from e
        return content.rstrip("\r\n")

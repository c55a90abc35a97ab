"""Exception hierarchy for catalog synchronisation."""
from typing import Any, Dict, Optional


class CatalogSyncError(RuntimeError):
    """Base error for everything raised by catalogsync."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class ConfigurationError(CatalogSyncError):
    """Manifest, schema or driver configuration is invalid."""


class DatabaseError(CatalogSyncError):
    """A statement against a source or target database failed."""

    def __init__(self, message: str, sql: str = "", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.sql = sql

    def __str__(self) -> str:
        base = super().__str__()
        if self.sql:
            return f"{base} [SQL: {self.sql}]"
        return base


class SourceError(CatalogSyncError):
    """Flat-file store could not be read."""


class ValidationError(CatalogSyncError, ValueError):
    """Invalid argument or data value."""


class SyncBusyError(CatalogSyncError):
    """Another sync run already holds the target store."""

    def __init__(self, job: str = "catalog", context: Optional[Dict[str, Any]] = None):
        super().__init__(f"Sync job '{job}' is already running", context)
        self.job = job

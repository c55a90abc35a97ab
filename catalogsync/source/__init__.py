"""
Source Module - Connectors for heterogeneous source backends

Provides:
- RelationalSource: SQL Server / SQLite tables with declarative filters
- FileDBSource: record-as-directory flat-file store
- StagedTableSource: rows already staged in the local target store
- SourceSet: the run's sources, resolved once from the manifest
"""

from .base import SourceConnector
from .filedb_source import FileDBSource
from .source_factory import SourceConnectorFactory, SourceSet
from .sql_source import RelationalSource, SelectBuilder
from .staged_source import StagedTableSource

__all__ = [
    "SourceConnector",
    "FileDBSource",
    "RelationalSource",
    "SelectBuilder",
    "SourceConnectorFactory",
    "SourceSet",
    "StagedTableSource",
]

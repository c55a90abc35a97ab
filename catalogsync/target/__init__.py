"""Target store: statement builder and staging writer."""

from .staging import StagingWriter, rows_per_batch
from .target_mapper import TargetMapper

__all__ = ["StagingWriter", "TargetMapper", "rows_per_batch"]

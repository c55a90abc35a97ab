"""Run status tracking and the busy guard."""
from .tracker import LoggingStatusTracker, SQLiteStatusTracker, StatusTracker

__all__ = ["StatusTracker", "LoggingStatusTracker", "SQLiteStatusTracker"]

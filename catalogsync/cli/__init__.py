"""Command line support: the sync runner used by main.py."""
from .runner import SyncRunner

__all__ = ["SyncRunner"]

"""Database connection wrappers and identifier quoting."""

from .connection import MSSQLConnection, SQLiteConnection, quote_bracket, quote_identifier

__all__ = [
    "MSSQLConnection",
    "SQLiteConnection",
    "quote_bracket",
    "quote_identifier",
]

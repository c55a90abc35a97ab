"""catalogsync - declarative ERP to catalog batch synchronisation."""

__version__ = "0.1.0"

"""Application configuration."""
import os
from dataclasses import dataclass


@dataclass
class SourceDatabaseConfig:
    """ERP source database (SQL Server via ODBC)."""

    dsn: str = ""  # read from the environment or the source schema
    timeout: int = 30

    @classmethod
    def from_env(cls) -> "SourceDatabaseConfig":
        """Load config from environment variables."""
        return cls(
            dsn=os.getenv("CATALOGSYNC_MSSQL_DSN", ""),
            timeout=int(os.getenv("CATALOGSYNC_MSSQL_TIMEOUT", "30")),
        )


@dataclass
class AppConfig:
    """Application configuration."""

    manifest_path: str = "mappings/afs_evo.yml"
    target_db: str = "db/evo.db"
    status_db: str = "db/status.db"
    bind_limit: int = 999
    query_timeout: int = 30
    log_level: str = "INFO"
    project_root: str = "."
    shop_name: str = "unserem Shop"
    source_db: SourceDatabaseConfig = None

    def __post_init__(self):
        """Fill in defaults."""
        if self.source_db is None:
            self.source_db = SourceDatabaseConfig.from_env()

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load config from environment variables."""
        return cls(
            manifest_path=os.getenv("CATALOGSYNC_MANIFEST", "mappings/afs_evo.yml"),
            target_db=os.getenv("CATALOGSYNC_TARGET_DB", "db/evo.db"),
            status_db=os.getenv("CATALOGSYNC_STATUS_DB", "db/status.db"),
            bind_limit=int(os.getenv("CATALOGSYNC_BIND_LIMIT", "999")),
            query_timeout=int(os.getenv("CATALOGSYNC_QUERY_TIMEOUT", "30")),
            log_level=os.getenv("CATALOGSYNC_LOG_LEVEL", "INFO"),
            project_root=os.getenv("CATALOGSYNC_PROJECT_ROOT", "."),
            shop_name=os.getenv("CATALOGSYNC_SHOP_NAME", "unserem Shop"),
            source_db=SourceDatabaseConfig.from_env(),
        )


# Global instance
app_config = AppConfig.from_env()

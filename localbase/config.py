"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Bucket inventory created on every start: name -> public flag
DEFAULT_BUCKETS: dict[str, bool] = {
    "documents": False,
    "videos": False,
    "images": True,
    "uploads": False,
    "avatars": True,
    "simulations": False,
}


class Settings(BaseSettings):
    """
    Settings loaded from environment variables.

    All settings can be configured via:
    1. Environment variables prefixed with LOCALBASE_ (e.g. LOCALBASE_DATA_DIR=/my/path)
    2. .env file in the working directory

    Storage paths are derived from data_dir by default but can be overridden.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCALBASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = True

    # Storage paths - derived from data_dir unless set explicitly
    data_dir: Path = Path(".")
    database_path: Path | None = None
    storage_dir: Path | None = None

    # URL prefix returned by get_public_url (served by localbase.server)
    public_url_prefix: str = "/storage"

    # Auth policy
    session_ttl_days: int = 7
    default_account_status: str = "active"
    # Sign-in issues sessions without checking the password unless enabled
    verify_passwords: bool = False

    # Reject update/delete builders without a filter
    require_mutation_filters: bool = False

    buckets: dict[str, bool] = DEFAULT_BUCKETS

    # HTTP server settings
    host: str = "127.0.0.1"
    port: int = 8000

    @model_validator(mode="after")
    def set_default_paths(self) -> "Settings":
        """Set default paths based on data_dir if not explicitly provided."""
        if self.database_path is None:
            self.database_path = self.data_dir / "localbase.duckdb"
        if self.storage_dir is None:
            self.storage_dir = self.data_dir / "storage"
        return self


# Global settings instance
settings = Settings()

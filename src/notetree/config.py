"""Configuration module for the notetree store."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notetree import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default data directory
_USER_ENV = Path.home() / ".notetree" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NoteTreeConfig(BaseModel):
    """Configuration for the note store."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTETREE_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTETREE_DATABASE_PATH", "data/db/notetree.db")
        )
    )
    # When True, the store runs on a private in-memory SQLite database.
    # Useful for tests and throwaway sessions; nothing survives the process.
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("NOTETREE_IN_MEMORY_DB", "false")
    )
    sqlite_busy_timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("NOTETREE_SQLITE_BUSY_TIMEOUT_MS", "5000"))
    )
    # Upper bound on ancestor hops walked by the property resolver.
    # The visited set already stops cycles; this caps absurdly deep chains.
    resolver_max_hops: int = Field(
        default_factory=lambda: int(os.getenv("NOTETREE_RESOLVER_MAX_HOPS", "10000"))
    )
    # Batch engine limits
    batch_max_operations: int = Field(
        default_factory=lambda: int(os.getenv("NOTETREE_BATCH_MAX_OPERATIONS", "1000"))
    )
    batch_max_retries: int = Field(
        default_factory=lambda: int(os.getenv("NOTETREE_BATCH_MAX_RETRIES", "5"))
    )
    batch_retry_base_ms: int = Field(
        default_factory=lambda: int(os.getenv("NOTETREE_BATCH_RETRY_BASE_MS", "100"))
    )
    # Logging configuration
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTETREE_LOG_DIR"))
            if os.getenv("NOTETREE_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTETREE_LOG_LEVEL", "INFO")
    )
    version: str = Field(default=__version__)

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _validate_limits(self) -> "NoteTreeConfig":
        """Reject limits that would make the engine or resolver unusable."""
        if self.resolver_max_hops < 1:
            raise ValueError("resolver_max_hops must be >= 1")
        if self.batch_max_operations < 1:
            raise ValueError("batch_max_operations must be >= 1")
        if self.batch_max_retries < 0:
            raise ValueError("batch_max_retries must be >= 0")
        if self.batch_retry_base_ms < 0:
            raise ValueError("batch_retry_base_ms must be >= 0")
        if self.log_level.upper() not in (
            "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"
        ):
            raise ValueError(f"Unknown log level: {self.log_level}")
        if self.batch_max_retries > 10:
            logger.warning(
                "batch_max_retries=%d: with exponential backoff a busy database "
                "may stall a batch for a long time.",
                self.batch_max_retries,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite://"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NoteTreeConfig()

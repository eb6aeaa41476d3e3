"""Configuration module for the Notegraph MCP server."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notegraph_mcp import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default database
_USER_ENV = Path.home() / ".notegraph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NotegraphConfig(BaseModel):
    """Configuration for the Notegraph server."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEGRAPH_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEGRAPH_DATABASE_PATH", "data/db/notegraph.db")
        )
    )
    # When True, the server runs against a private in-memory SQLite database.
    # Nothing survives a restart; useful for demos and throwaway sessions.
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("NOTEGRAPH_IN_MEMORY_DB", "false")
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("NOTEGRAPH_SERVER_NAME", "notegraph-mcp"))
    server_version: str = Field(default=__version__)
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_LOG_LEVEL", "INFO").upper()
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTEGRAPH_LOG_DIR"))
            if os.getenv("NOTEGRAPH_LOG_DIR")
            else None
        )
    )
    # Keep a normalized-title -> note id map in memory instead of scanning
    # every title on each wikilink lookup. Only safe when a single process
    # writes to the database.
    title_index_enabled: bool = Field(
        default_factory=lambda: _env_flag("NOTEGRAPH_TITLE_INDEX", "false")
    )
    # Search configuration
    search_default_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_SEARCH_LIMIT", "50"))
    )
    quick_search_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_QUICK_SEARCH_LIMIT", "10"))
    )
    related_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_RELATED_LIMIT", "5"))
    )
    snippet_context_chars: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_SNIPPET_CONTEXT", "40"))
    )
    # Upper bound on neighbor traversal depth accepted at the tool boundary
    max_neighbor_depth: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_MAX_NEIGHBOR_DEPTH", "10"))
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "NotegraphConfig":
        """Reject limits that would make search or traversal meaningless."""
        for name in (
            "search_default_limit",
            "quick_search_limit",
            "related_limit",
            "snippet_context_chars",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.max_neighbor_depth < 0:
            raise ValueError("max_neighbor_depth must be >= 0")
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
config = NotegraphConfig()

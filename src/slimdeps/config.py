"""Configuration settings for slimdeps."""

from pathlib import Path

from pydantic_settings import BaseSettings


def _default_data_dir() -> Path:
    """Get default data directory (~/.slimdeps/)."""
    return Path.home() / ".slimdeps"


class Settings(BaseSettings):
    """slimdeps configuration.

    Environment variables:
    - BUNDLEPHOBIA_URL: Size-lookup service base URL
    - NPM_REGISTRY_URL: npm registry used to list recent versions
    - REQUEST_TIMEOUT: Per-request HTTP timeout in seconds (default: 15)
    - PACKAGE_TIMEOUT: Hard timeout for one package scrape, all versions
        included (seconds, 0 = no timeout, default: 120)
    - MAX_RETRIES: Attempts per request on 5xx / transport errors (default: 3)
    - FRESHNESS_DAYS: Skip packages scraped within this window (default: 7)
    - HISTORY_LIMIT: Recent versions fetched for oversized packages (default: 10)
    - SCRAPE_CONCURRENCY: Packages scraped in parallel (default: 1, sequential)
    - DATA_DIR: Data directory (default: ~/.slimdeps)
    - CATALOG_DB_PATH: Catalog database path (default: DATA_DIR/catalog.db)
    - SUGGESTIONS_PATH: Suggestion map JSON (default: packaged map)
    - TOOL_TIMEOUT: MCP tool execution timeout (seconds, 0 = no timeout)
    - LOG_LEVEL: Loguru level (default: INFO)
    """

    # Size-lookup service
    bundlephobia_url: str = "https://bundlephobia.com"
    npm_registry_url: str = "https://registry.npmjs.org"
    request_timeout: float = 15.0
    package_timeout: float = 120.0
    max_retries: int = 3

    # Catalog builder
    freshness_days: float = 7.0
    history_limit: int = 10
    scrape_concurrency: int = 1

    # Storage
    data_dir: str = ""  # Default: ~/.slimdeps
    catalog_db_path: str = ""  # Default: DATA_DIR/catalog.db
    suggestions_path: str = ""  # Default: packaged slimdeps/suggestions.json

    # Tool execution timeout (seconds, 0 = no timeout)
    tool_timeout: int = 600

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": False}

    # --- Path helpers ---

    def get_data_dir(self) -> Path:
        """Get data directory.

        Uses DATA_DIR if set, otherwise ~/.slimdeps/.
        """
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return _default_data_dir()

    def get_catalog_db_path(self) -> Path:
        """Get resolved catalog database path."""
        if self.catalog_db_path:
            return Path(self.catalog_db_path).expanduser()
        return self.get_data_dir() / "catalog.db"

    def get_suggestions_path(self) -> Path | None:
        """Return explicit SUGGESTIONS_PATH or None for the packaged map."""
        if self.suggestions_path:
            return Path(self.suggestions_path).expanduser()
        return None

    def freshness_seconds(self) -> float:
        """Freshness window in seconds."""
        return self.freshness_days * 86400


settings = Settings()

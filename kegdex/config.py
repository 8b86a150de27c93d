"""
Configuration module for kegdex.

Uses pydantic-settings for configuration management with environment variable support.
Environment variables use KEG_ prefix (e.g., KEG_KEG_PATH).
"""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_keg_path() -> Path:
    """Get default keg path based on platform."""
    if os.name == "nt":  # Windows
        return Path.home() / "Documents" / "keg"
    else:  # Linux/macOS
        return Path.home() / ".local" / "share" / "keg"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Environment variables:
    - KEG_KEG_PATH: Path to the keg directory served by the MCP server
    - KEG_CACHE_TTL: Cache TTL in seconds
    - KEG_EDITOR: Editor command used for interactive edits
    - KEG_EDITOR_SETTLE_MS: Quiet period before an editor save is applied
    - KEG_EDITOR_TICK_MS: Poll interval of the editor watch loop
    - KEG_MAX_SEARCH_RESULTS: Maximum search results
    - KEG_MAX_CONTENT_SIZE: Maximum node body size in bytes
    - KEG_LOG_LEVEL: Log level name (debug, info, warning, error)
    """

    keg_path: Path = Field(default_factory=_get_default_keg_path)
    cache_ttl: int = 60
    editor: str = ""
    editor_settle_ms: int = 120
    editor_tick_ms: int = 100
    max_search_results: int = 50
    max_content_size: int = 1 * 1024 * 1024  # 1MB in bytes
    log_level: str = "info"

    model_config = SettingsConfigDict(env_prefix="KEG_")


# Global settings instance
settings = Settings()

# Keg layout
KEG_CONFIG_FILE = "keg"
CONTENT_FILE = "README.md"
META_FILE = "meta.yaml"
STATS_FILE = "stats.json"
ASSETS_DIR = "assets"
IMAGES_DIR = "images"
DEX_DIR = "dex"

# Core dex artifacts
NODES_INDEX = "nodes.tsv"
TAGS_INDEX = "tags"
LINKS_INDEX = "links"
BACKLINKS_INDEX = "backlinks"
CHANGES_INDEX = "changes.md"
CORE_INDEXES = (NODES_INDEX, TAGS_INDEX, LINKS_INDEX, BACKLINKS_INDEX, CHANGES_INDEX)

# Keg config versions, oldest first
CONFIG_VERSIONS = ("2023-01", "2025-07")
CURRENT_CONFIG_VERSION = CONFIG_VERSIONS[-1]

DEFAULT_EDITOR = "vi"

ZERO_NODE_CONTENT = """# Sorry, planned but not yet available

This is a placeholder until content is created for the link that brought you
here. If you need this content sooner, please open an issue describing why
you would like this content created.
"""

from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Installer settings managed by Pydantic.
    Reads configuration from environment variables and .env files.

    A Settings instance is built once at process start and handed to
    ``InstallerContext``; nothing in the package reads a module-level copy.
    """
    # General project metadata
    PROJECT_NAME: str = "MCP Registry Installer"
    API_V1_STR: str = "/api"
    LOG_LEVEL: str = "INFO"

    # MCP Registry
    # Empty means "not configured": listing and installing are refused until a URL is set.
    # Example: https://registry.modelcontextprotocol.io/v0/servers
    MCP_REGISTRY_URL: str = ""
    MCP_REGISTRY_URL_MAX_LENGTH: int = 2048
    MCP_REGISTRY_URL_HISTORY_SIZE: int = 10
    REGISTRY_PAGE_SIZE: int = 30
    REGISTRY_TIMEOUT_SECONDS: float = 10.0

    # Shared MCP configuration document ({"servers": {...}})
    MCP_CONFIG_PATH: Path = Path.home() / ".config" / "mcp-installer" / "mcp.json"

    # Mirrored cache and refresh broadcast
    # Without REDIS_URL the mirror is kept in memory only and broadcasts are dropped.
    REDIS_URL: Optional[str] = None
    MCP_SERVERS_CACHE_KEY: str = "mcp:servers"
    MCP_REFRESH_CHANNEL: str = "mcp:refresh"
    REFRESH_DEBOUNCE_SECONDS: float = 1.0

    @field_validator("MCP_REGISTRY_URL")
    @classmethod
    def strip_registry_url(cls, v: str) -> str:
        """Whitespace around a pasted URL is never significant."""
        return v.strip()

    @field_validator("MCP_CONFIG_PATH")
    @classmethod
    def expand_config_path(cls, v: Path) -> Path:
        return v.expanduser()

    @model_validator(mode='after')
    def validate_registry_url(self) -> 'Settings':
        """
        Validate that MCP_REGISTRY_URL, when set, is an http(s) URL within the length limit.
        """
        url = self.MCP_REGISTRY_URL
        if not url:
            return self

        if len(url) > self.MCP_REGISTRY_URL_MAX_LENGTH:
            raise ValueError(
                f"MCP_REGISTRY_URL must be at most {self.MCP_REGISTRY_URL_MAX_LENGTH} characters"
            )

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(
                f"MCP_REGISTRY_URL must be an http(s) URL (e.g., 'https://registry.example.com/v0/servers'), got: {url}"
            )
        return self

    # Pydantic Configuration
    model_config = SettingsConfigDict(
        env_file=".env",              # Load variables from .env file
        env_file_encoding="utf-8",    # Ensure correct encoding
        case_sensitive=True,          # Environment variables are case-sensitive
        extra="ignore"                # Ignore extra fields in .env not defined here
    )

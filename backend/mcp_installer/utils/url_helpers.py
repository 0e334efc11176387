"""
URL normalization utilities for consistent registry keys.

This module provides functions to normalize MCP registry URLs so that the same
registry is recognised regardless of how its URL was entered (API version
suffix, trailing slashes, surrounding whitespace).
"""
import re
from urllib.parse import urlparse, urlunparse

# Trailing "/v0/servers", "/v0.1/servers", "/v1.2/servers", ...
VERSIONED_SERVERS_SUFFIX = re.compile(r"/v\d+(\.\d+)?/servers$")

DEFAULT_SERVERS_PATH = "/v0/servers"


def normalize_registry_url(url: str) -> str:
    """
    Normalize an MCP registry URL to its base form.

    This ensures that the following URLs are treated as identical:
    - https://registry.example.com
    - https://registry.example.com/
    - https://registry.example.com/v0/servers
    - https://registry.example.com/v0.1/servers/

    Args:
        url: The registry URL to normalize.

    Returns:
        The URL without a versioned "/servers" suffix and without trailing slashes.

    Examples:
        >>> normalize_registry_url("https://api.example.com/v0/servers/")
        'https://api.example.com'

        >>> normalize_registry_url("  https://api.example.com/2025-09-15/v0/servers ")
        'https://api.example.com/2025-09-15'
    """
    normalized = url.strip().rstrip("/")
    normalized = VERSIONED_SERVERS_SUFFIX.sub("", normalized)
    return normalized.rstrip("/")


def servers_endpoint(base_url: str) -> str:
    """
    Resolve the listing endpoint for a configured registry URL.

    URLs already pointing at a ".../servers" collection are used as-is;
    bare registry hosts get the default "/v0/servers" path appended.

    Examples:
        >>> servers_endpoint("https://registry.example.com/v0.1/servers/")
        'https://registry.example.com/v0.1/servers'

        >>> servers_endpoint("https://registry.example.com")
        'https://registry.example.com/v0/servers'
    """
    parsed = urlparse(base_url.strip())
    path = parsed.path.rstrip("/")
    if not path.endswith("/servers"):
        path = f"{path}{DEFAULT_SERVERS_PATH}"

    return urlunparse((
        parsed.scheme,
        parsed.netloc,
        path,
        "",  # params
        parsed.query,
        ""   # fragment
    ))


def is_valid_registry_url(url: str) -> bool:
    """An http(s) URL with a host. The empty string counts as valid ("not configured")."""
    if not url:
        return True
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)

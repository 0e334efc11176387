"""
Identity & Reconciliation

Decides whether a registry server, or one specific variant of it, is present in
the MCP configuration document.

Identity comes only from the ``x-metadata.registry`` tag stamped at install time,
never from the visible command or URL. Entries without the tag were added by
other means and are invisible here.

Variant matching is deliberately coarse: a package counts as installed when the
command and the *first* argument token agree, so two packages that share both
(same launcher, different trailing flags) are indistinguishable. This is an
accepted approximation, not a correctness guarantee.
"""
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Set

from mcp_installer.schemas.registry import Package, Remote, ServerDetail
from mcp_installer.services.config_synthesizer import (
    METADATA_KEY,
    Variant,
    build_package_arguments,
    require_registry_url,
    resolve_command,
)
from mcp_installer.utils.url_helpers import normalize_registry_url

logger = logging.getLogger(__name__)


def registry_key(registry_url: str, server_id: str) -> str:
    return f"{normalize_registry_url(registry_url)}|{server_id}"


def registry_key_from_config(server_config: Any) -> Optional[str]:
    """Key recorded in a persisted entry, or None when the entry is untracked or the tag is malformed."""
    if not isinstance(server_config, dict):
        return None
    metadata = server_config.get(METADATA_KEY)
    if not isinstance(metadata, dict):
        return None
    registry = metadata.get("registry")
    if not isinstance(registry, dict):
        return None

    url = registry.get("url")
    server_id = registry.get("serverId")
    if not isinstance(url, str) or not isinstance(server_id, str):
        return None
    return registry_key(url, server_id)


def expected_registry_key(server: ServerDetail, registry_url: str) -> str:
    return registry_key(require_registry_url(registry_url), server.stable_id)


def installed_registry_keys(servers: Mapping[str, Any]) -> Set[str]:
    keys = set()
    for server_config in servers.values():
        key = registry_key_from_config(server_config)
        if key is not None:
            keys.add(key)
    return keys


def _matching_entries(servers: Mapping[str, Any], expected_key: str):
    for server_config in servers.values():
        if registry_key_from_config(server_config) == expected_key:
            yield server_config


def _config_type(server_config: Dict[str, Any]) -> str:
    value = server_config.get("type")
    return value.lower() if isinstance(value, str) else ""


def is_server_installed(servers: Mapping[str, Any], server: ServerDetail, registry_url: str) -> bool:
    expected_key = expected_registry_key(server, registry_url)
    return next(_matching_entries(servers, expected_key), None) is not None


def is_package_installed(
    servers: Mapping[str, Any], server: ServerDetail, package: Package, registry_url: str
) -> bool:
    expected_key = expected_registry_key(server, registry_url)
    command = resolve_command(package)
    expected_args = build_package_arguments(package)
    expected_first = expected_args[0] if expected_args else None

    for server_config in _matching_entries(servers, expected_key):
        args = server_config.get("args")
        if _config_type(server_config) != "stdio" or not isinstance(args, list):
            continue
        first = args[0] if args else None
        if server_config.get("command") == command and first == expected_first:
            return True
    return False


def is_remote_installed(
    servers: Mapping[str, Any], server: ServerDetail, remote: Remote, registry_url: str
) -> bool:
    expected_key = expected_registry_key(server, registry_url)
    for server_config in _matching_entries(servers, expected_key):
        if _config_type(server_config) == "http" and server_config.get("url") == remote.url:
            return True
    return False


def is_variant_installed(
    servers: Mapping[str, Any], server: ServerDetail, variant: Variant, registry_url: str
) -> bool:
    if isinstance(variant, Remote):
        return is_remote_installed(servers, server, variant, registry_url)
    if isinstance(variant, Package):
        return is_package_installed(servers, server, variant, registry_url)
    raise TypeError(f"Unsupported installation variant: {type(variant).__name__}")


def would_overwrite(
    servers: Mapping[str, Any], server: ServerDetail, variant: Variant, registry_url: str
) -> bool:
    """True when the server is installed under a different variant than ``variant``."""
    return (
        is_server_installed(servers, server, registry_url)
        and not is_variant_installed(servers, server, variant, registry_url)
    )


class ReconciliationService:
    """
    Reconciliation against the live configuration document.

    Each call reads the document once through the store, so answers reflect
    external edits made since the last install or uninstall.
    """

    def __init__(self, store, registry_url: Callable[[], str]):
        self._store = store
        self._registry_url = registry_url

    async def _servers(self) -> Mapping[str, Any]:
        return await self._store.read_servers()

    async def is_server_installed(self, server: ServerDetail) -> bool:
        return is_server_installed(await self._servers(), server, self._registry_url())

    async def is_variant_installed(self, server: ServerDetail, variant: Variant) -> bool:
        return is_variant_installed(await self._servers(), server, variant, self._registry_url())

    async def would_overwrite(self, server: ServerDetail, variant: Variant) -> bool:
        return would_overwrite(await self._servers(), server, variant, self._registry_url())

    async def installed_keys(self) -> Set[str]:
        return installed_registry_keys(await self._servers())

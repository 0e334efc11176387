"""
Installer context

Everything an operation needs (settings, registry URL state, config store,
mirror, notifier, registry client) is built once at start-up and handed to the
caller explicitly. There are no module-level singletons.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from mcp_installer.core.config import Settings
from mcp_installer.core.errors import (
    InvalidRegistryURL,
    OverwriteConfirmationRequired,
    RegistryURLLocked,
)
from mcp_installer.schemas.registry import (
    InstallationOption,
    RegistryAccess,
    RegistryAllowlistEntry,
    ServerDetail,
    GetServerParams,
    ListServersParams,
    ServerList,
)
from mcp_installer.services.cache import RedisConnection, ServersMirror
from mcp_installer.services.config_store import ConfigStore
from mcp_installer.services.config_synthesizer import (
    get_default_option,
    get_installation_options,
    require_registry_url,
)
from mcp_installer.services.notifications import RedisRefreshBroadcaster, RefreshNotifier
from mcp_installer.services.reconciliation import ReconciliationService, would_overwrite
from mcp_installer.services.registry_service import RegistryClient, ServerGallery, filter_servers, iter_pages
from mcp_installer.utils.url_helpers import is_valid_registry_url, normalize_registry_url

logger = logging.getLogger(__name__)


class RegistrySettings:
    """Active registry URL, recently used URLs and the optional allowlist policy."""

    def __init__(self, url: str = "", history_size: int = 10, max_length: int = 2048):
        self._url = url.strip()
        self.history_size = history_size
        self.max_length = max_length
        self.history: List[str] = []
        self.allowlist: Optional[RegistryAllowlistEntry] = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_locked(self) -> bool:
        return self.allowlist is not None and self.allowlist.registry_access == RegistryAccess.REGISTRY_ONLY

    def require_url(self) -> str:
        return require_registry_url(self._url)

    def validate_url(self, url: str) -> str:
        """
        Return the trimmed URL, or raise InvalidRegistryURL.

        Over-long URLs are rejected, never truncated. The empty string is
        accepted and means "not configured".
        """
        candidate = url.strip()
        if len(candidate) > self.max_length:
            raise InvalidRegistryURL(candidate[:64] + "...", f"longer than {self.max_length} characters")
        if not is_valid_registry_url(candidate):
            raise InvalidRegistryURL(candidate, "must be an http:// or https:// URL with a host")
        return candidate

    def set_url(self, url: str) -> str:
        candidate = self.validate_url(url)
        if self.is_locked and normalize_registry_url(candidate) != normalize_registry_url(self.allowlist.url):
            raise RegistryURLLocked(self.allowlist.url)

        if candidate != self._url:
            logger.info(f"MCP Registry URL set to '{candidate or '<not configured>'}'")
        self._url = candidate
        return candidate

    def apply_allowlist(self, entry: Optional[RegistryAllowlistEntry]) -> None:
        """Install (or clear) the allowlist policy; ``registry_only`` switches to the pinned URL."""
        self.allowlist = entry
        if entry is None:
            return
        if entry.registry_access == RegistryAccess.REGISTRY_ONLY:
            logger.info(f"Registry allowlist from '{entry.owner.login}' pins the URL to {entry.url}")
            self._url = self.validate_url(entry.url)

    def record_success(self, url: str) -> None:
        """Remember ``url`` as most recently used (called after a successful first page)."""
        url = url.strip()
        if not url:
            return
        self.history = [url] + [u for u in self.history if u != url]
        del self.history[self.history_size:]


class InstallerContext:
    def __init__(
        self,
        settings: Settings,
        registry: RegistrySettings,
        connection: RedisConnection,
        mirror: ServersMirror,
        notifier: RefreshNotifier,
        store: ConfigStore,
        client: RegistryClient,
    ):
        self.settings = settings
        self.registry = registry
        self.connection = connection
        self.mirror = mirror
        self.notifier = notifier
        self.store = store
        self.client = client
        self.reconciliation = ReconciliationService(store, lambda: self.registry.url)
        self.gallery = ServerGallery(client.list_servers, page_size=settings.REGISTRY_PAGE_SIZE)
        self._gallery_url: Optional[str] = None

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "InstallerContext":
        registry = RegistrySettings(
            url=settings.MCP_REGISTRY_URL,
            history_size=settings.MCP_REGISTRY_URL_HISTORY_SIZE,
            max_length=settings.MCP_REGISTRY_URL_MAX_LENGTH,
        )
        connection = RedisConnection(settings.REDIS_URL)
        mirror = ServersMirror(connection, settings.MCP_SERVERS_CACHE_KEY)
        broadcaster = RedisRefreshBroadcaster(connection, settings.MCP_REFRESH_CHANNEL)
        notifier = RefreshNotifier(broadcaster.post_notification, window=settings.REFRESH_DEBOUNCE_SECONDS)
        store = ConfigStore(settings.MCP_CONFIG_PATH, mirror, notifier)
        client = RegistryClient(timeout=settings.REGISTRY_TIMEOUT_SECONDS, transport=transport)
        return cls(settings, registry, connection, mirror, notifier, store, client)

    async def start(self) -> None:
        self.notifier.start()
        await self.store.ensure_exists()
        await self.store.refresh_from_disk()

    async def aclose(self) -> None:
        await self.notifier.stop()
        await self.connection.close()

    # Registry

    async def list_servers(self, cursor: Optional[str] = None, limit: Optional[int] = None) -> Optional[ServerList]:
        url = self.registry.require_url()
        page = await self.client.list_servers(
            ListServersParams(base_url=url, cursor=cursor, limit=limit or self.settings.REGISTRY_PAGE_SIZE)
        )
        if page is not None and cursor is None:
            self.registry.record_success(url)
        return page

    async def get_server(self, server_id: str, version: Optional[str] = None) -> Optional[ServerDetail]:
        url = self.registry.require_url()
        return await self.client.get_server(GetServerParams(base_url=url, id=server_id, version=version))

    async def all_servers(self, search: str = "") -> List[ServerDetail]:
        """Every page of the listing, latest versions only. A failed page ends the walk early."""
        url = self.registry.require_url()
        servers: List[ServerDetail] = []
        async for page in iter_pages(self.client.list_servers, url, self.settings.REGISTRY_PAGE_SIZE):
            servers.extend(page.servers)
        return filter_servers(servers, search)

    async def refresh_gallery(self) -> bool:
        url = self.registry.require_url()
        if not await self.gallery.refresh(url):
            return False
        self._gallery_url = url
        self.registry.record_success(url)
        return True

    async def load_more_gallery(self) -> bool:
        """Next gallery page; reloads from the start when the registry URL changed since the last refresh."""
        url = self.registry.require_url()
        if url != self._gallery_url:
            return await self.refresh_gallery()
        return await self.gallery.load_more(url)

    def installation_options(self, server: ServerDetail) -> List[InstallationOption]:
        return get_installation_options(server, self.registry.require_url())

    # Install / uninstall

    async def install(
        self,
        server: ServerDetail,
        option: Optional[InstallationOption] = None,
        confirm_overwrite: bool = False,
    ) -> InstallationOption:
        """
        Install ``option`` (the default option when omitted).

        Raises:
            OverwriteConfirmationRequired: If the server is installed under a
                different variant and ``confirm_overwrite`` is False.
        """
        url = self.registry.require_url()
        if option is None:
            option = get_default_option(server, url)

        def check_overwrite(servers: Dict[str, Any]) -> None:
            if would_overwrite(servers, server, option.variant, url):
                raise OverwriteConfirmationRequired(server.name)

        await self.store.install(server, option, guard=None if confirm_overwrite else check_overwrite)
        return option

    async def uninstall(self, server: ServerDetail) -> None:
        await self.store.uninstall(server)

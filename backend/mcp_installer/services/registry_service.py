import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional
from urllib.parse import quote

import httpx

from mcp_installer.schemas.registry import (
    GetServerParams,
    ListServersParams,
    ServerDetail,
    ServerList,
    ServerListMetadata,
)
from mcp_installer.utils.url_helpers import servers_endpoint

logger = logging.getLogger(__name__)

ListServersCall = Callable[[ListServersParams], Awaitable[Optional[ServerList]]]


class RegistryClient:
    """Thin async client for the MCP registry listing API."""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def list_servers(self, params: ListServersParams) -> Optional[ServerList]:
        """
        Fetch one listing page.

        Returns None when the request fails or the body is not a listing;
        the failure is logged.
        """
        url = servers_endpoint(params.base_url)
        query = {}
        if params.limit is not None:
            query["limit"] = params.limit
        if params.cursor:
            query["cursor"] = params.cursor

        try:
            async with self._client() as client:
                response = await client.get(url, params=query)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Registry returned {e.response.status_code} for {url}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching registry page from {url}: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"Unexpected registry response from {url}: expected an object")
            return None

        page = ServerList.parse_page(data)
        logger.info(f"Fetched {len(page.servers)} server(s) from {url}")
        return page

    async def get_server(self, params: GetServerParams) -> Optional[ServerDetail]:
        """Fetch a single server (optionally a specific version). None when missing or on failure."""
        url = f"{servers_endpoint(params.base_url)}/{quote(params.id, safe='')}"
        if params.version:
            url = f"{url}/versions/{quote(params.version, safe='')}"

        try:
            async with self._client() as client:
                response = await client.get(url)
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return ServerDetail.model_validate(response.json())
        except httpx.HTTPError as e:
            logger.error(f"Error fetching server '{params.id}' from {url}: {e}")
        except ValueError as e:
            logger.warning(f"Invalid server detail for '{params.id}': {e}")
        return None


def filter_servers(servers: List[ServerDetail], search: str = "") -> List[ServerDetail]:
    """
    Latest versions only, matched case-insensitively on name or description.

    Only entries whose official metadata says `isLatest: false` are hidden.
    Entries without official metadata are kept.
    """
    query = search.strip().lower()
    results = [s for s in servers if s.is_latest]
    if not query:
        return results
    return [
        s for s in results
        if query in s.name.lower() or query in s.description.lower()
    ]


async def iter_pages(
    list_call: ListServersCall, base_url: str, page_size: Optional[int] = None
) -> AsyncIterator[ServerList]:
    """
    Walk the listing by threading ``next_cursor`` into each following call.

    Stops after the last page, or as soon as a call returns None or raises.
    """
    cursor: Optional[str] = None
    while True:
        try:
            page = await list_call(ListServersParams(base_url=base_url, cursor=cursor, limit=page_size))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error fetching registry page (cursor={cursor}): {e}", exc_info=True)
            return
        if page is None:
            return
        yield page

        cursor = page.next_cursor
        if cursor is None:
            return


class ServerGallery:
    """
    Accumulated listing pages for browsing.

    A failed or cancelled fetch leaves the already loaded servers and cursor
    untouched.
    """

    def __init__(self, list_call: ListServersCall, page_size: Optional[int] = None):
        self._list_call = list_call
        self._page_size = page_size
        self.servers: List[ServerDetail] = []
        self.metadata: Optional[ServerListMetadata] = None
        self.is_loading = False

    @property
    def next_cursor(self) -> Optional[str]:
        cursor = self.metadata.next_cursor if self.metadata else None
        return cursor or None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None

    async def _fetch(self, base_url: str, cursor: Optional[str]) -> Optional[ServerList]:
        self.is_loading = True
        try:
            return await self._list_call(
                ListServersParams(base_url=base_url, cursor=cursor, limit=self._page_size)
            )
        except asyncio.CancelledError:
            logger.debug("Registry page fetch cancelled")
            raise
        except Exception as e:
            logger.error(f"Error fetching registry page (cursor={cursor}): {e}", exc_info=True)
            return None
        finally:
            self.is_loading = False

    async def refresh(self, base_url: str) -> bool:
        """Reload from the first page. Returns False (state kept) when the fetch fails."""
        page = await self._fetch(base_url, None)
        if page is None:
            return False
        self.servers = list(page.servers)
        self.metadata = page.metadata
        return True

    async def load_more(self, base_url: str) -> bool:
        """Append the next page; a no-op while loading or when there is no next page."""
        if self.is_loading or not self.has_more:
            return False
        page = await self._fetch(base_url, self.next_cursor)
        if page is None:
            return False
        self.servers.extend(page.servers)
        self.metadata = page.metadata
        return True

    def filtered(self, search: str = "") -> List[ServerDetail]:
        return filter_servers(self.servers, search)

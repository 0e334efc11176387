import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from mcp_installer.core.context import InstallerContext
from mcp_installer.schemas.api import (
    GalleryState,
    InstalledKeys,
    InstallRequest,
    InstallResponse,
    OptionEntry,
    RefreshResponse,
    RegistryURLState,
    RegistryURLUpdate,
    ServerEntry,
    ServerPage,
    ServerRequest,
)
from mcp_installer.schemas.registry import RegistryAllowlistEntry, ServerDetail
from mcp_installer.services import reconciliation
from mcp_installer.services.config_synthesizer import select_installation_option
from mcp_installer.services.registry_service import filter_servers

logger = logging.getLogger(__name__)

router = APIRouter()


def get_context(request: Request) -> InstallerContext:
    return request.app.state.context


async def _server_entries(ctx: InstallerContext, servers: List[ServerDetail]) -> List[ServerEntry]:
    installed = await ctx.reconciliation.installed_keys()
    url = ctx.registry.url
    return [
        ServerEntry(
            server=server.to_wire(),
            installed=reconciliation.registry_key(url, server.stable_id) in installed,
        )
        for server in servers
    ]


def _url_state(ctx: InstallerContext) -> RegistryURLState:
    return RegistryURLState(
        url=ctx.registry.url,
        history=list(ctx.registry.history),
        locked=ctx.registry.is_locked,
        allowlist=ctx.registry.allowlist,
    )


@router.get("/url", response_model=RegistryURLState)
async def get_registry_url(ctx: InstallerContext = Depends(get_context)):
    """Active registry URL and recently used URLs."""
    return _url_state(ctx)


@router.put("/url", response_model=RegistryURLState)
async def set_registry_url(body: RegistryURLUpdate, ctx: InstallerContext = Depends(get_context)):
    ctx.registry.set_url(body.url)
    return _url_state(ctx)


@router.put("/allowlist", response_model=RegistryURLState)
async def set_registry_allowlist(
    entry: Optional[RegistryAllowlistEntry] = None,
    ctx: InstallerContext = Depends(get_context),
):
    """Apply (or clear, with an empty body) the organization's registry policy."""
    ctx.registry.apply_allowlist(entry)
    return _url_state(ctx)


@router.get("/servers", response_model=ServerPage)
async def list_registry_servers(
    cursor: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=100),
    q: str = "",
    ctx: InstallerContext = Depends(get_context),
):
    """One listing page, latest versions only, each annotated with its install state."""
    page = await ctx.list_servers(cursor=cursor, limit=limit)
    if page is None:
        raise HTTPException(status_code=502, detail="Failed to fetch servers from the MCP registry")

    entries = await _server_entries(ctx, filter_servers(page.servers, q))
    return ServerPage(servers=entries, next_cursor=page.next_cursor)


@router.get("/servers/all", response_model=ServerPage)
async def list_all_registry_servers(q: str = "", ctx: InstallerContext = Depends(get_context)):
    """Every listing page at once. A page that fails to load ends the listing early."""
    return ServerPage(servers=await _server_entries(ctx, await ctx.all_servers(q)))


@router.get("/servers/{server_id:path}", response_model=ServerEntry)
async def get_registry_server(
    server_id: str,
    version: Optional[str] = None,
    ctx: InstallerContext = Depends(get_context),
):
    server = await ctx.get_server(server_id, version)
    if server is None:
        raise HTTPException(status_code=404, detail=f"Server '{server_id}' not found in the MCP registry")
    entries = await _server_entries(ctx, [server])
    return entries[0]


async def _gallery_state(ctx: InstallerContext, q: str = "") -> GalleryState:
    return GalleryState(
        servers=await _server_entries(ctx, ctx.gallery.filtered(q)),
        has_more=ctx.gallery.has_more,
        is_loading=ctx.gallery.is_loading,
    )


@router.get("/gallery", response_model=GalleryState)
async def get_gallery(q: str = "", ctx: InstallerContext = Depends(get_context)):
    """Servers loaded so far for browsing, latest versions only."""
    return await _gallery_state(ctx, q)


@router.post("/gallery/refresh", response_model=GalleryState)
async def refresh_gallery(q: str = "", ctx: InstallerContext = Depends(get_context)):
    if not await ctx.refresh_gallery():
        raise HTTPException(status_code=502, detail="Failed to fetch servers from the MCP registry")
    return await _gallery_state(ctx, q)


@router.post("/gallery/more", response_model=GalleryState)
async def load_more_gallery(q: str = "", ctx: InstallerContext = Depends(get_context)):
    """Append the next page. Loaded servers are kept when it fails or there is nothing more."""
    await ctx.load_more_gallery()
    return await _gallery_state(ctx, q)


@router.post("/servers/options", response_model=List[OptionEntry])
async def list_installation_options(body: ServerRequest, ctx: InstallerContext = Depends(get_context)):
    """Every installation option for a server, with its reconciliation state."""
    url = ctx.registry.require_url()
    options = ctx.installation_options(body.server)
    servers = await ctx.store.read_servers()

    return [
        OptionEntry(
            display_name=option.display_name,
            description=option.description,
            config=option.config,
            is_default=option.is_default,
            installed=reconciliation.is_variant_installed(servers, body.server, option.variant, url),
            would_overwrite=reconciliation.would_overwrite(servers, body.server, option.variant, url),
        )
        for option in options
    ]


@router.post("/servers/install", response_model=InstallResponse)
async def install_server(body: InstallRequest, ctx: InstallerContext = Depends(get_context)):
    option = None
    if body.option is not None:
        option = select_installation_option(ctx.installation_options(body.server), body.option)
        if option is None:
            raise HTTPException(
                status_code=404,
                detail=f"No installation option of '{body.server.name}' matches '{body.option}'",
            )

    option = await ctx.install(body.server, option, confirm_overwrite=body.confirm_overwrite)
    return InstallResponse(name=body.server.name, option=option.display_name, config=option.config)


@router.post("/servers/uninstall", status_code=204)
async def uninstall_server(body: ServerRequest, ctx: InstallerContext = Depends(get_context)):
    await ctx.uninstall(body.server)


@router.get("/installed", response_model=InstalledKeys)
async def list_installed(ctx: InstallerContext = Depends(get_context)):
    """Registry keys (``<normalized url>|<server id>``) of every tracked installed server."""
    keys = await ctx.reconciliation.installed_keys()
    return InstalledKeys(keys=sorted(keys))


@router.get("/installed/raw")
async def get_installed_servers_json(ctx: InstallerContext = Depends(get_context)):
    """The mirrored ``servers`` object as last written or refreshed."""
    snapshot = await ctx.mirror.read()
    return Response(content=snapshot or "{}", media_type="application/json")


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_configuration(ctx: InstallerContext = Depends(get_context)):
    """Re-read the configuration document after an external edit."""
    return RefreshResponse(refreshed=await ctx.store.refresh_from_disk())

from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from mcp_installer.core.config import Settings
from mcp_installer.core.context import InstallerContext
from mcp_installer.main import create_app
from mcp_installer.schemas.registry import OFFICIAL_META_KEY

REGISTRY_URL = "https://registry.example.com/v0/servers"


def registry_entry(name: str, server_id: str, is_latest: bool = True) -> dict:
    return {
        "server": {
            "name": name,
            "description": f"{name} for MCP clients",
            "version": "1.2.0",
            "remotes": [{"type": "streamable-http", "url": f"https://{server_id}.example.com/mcp"}],
            "packages": [{"registryType": "npm", "identifier": f"@example/{server_id}", "version": "1.2.0"}],
        },
        "_meta": {OFFICIAL_META_KEY: {"id": server_id, "isLatest": is_latest}},
    }


FIRST_PAGE = {
    "servers": [
        registry_entry("io.example/weather", "weather"),
        registry_entry("io.example/weather-old", "weather-old", is_latest=False),
    ],
    "metadata": {"nextCursor": "page-2", "count": 2},
}

SECOND_PAGE = {
    "servers": [registry_entry("io.example/stocks", "stocks")],
    "metadata": {"count": 1},
}


ENTRIES_BY_ID = {
    entry["_meta"][OFFICIAL_META_KEY]["id"]: entry
    for entry in FIRST_PAGE["servers"] + SECOND_PAGE["servers"]
}


def fake_server_detail(path: str) -> httpx.Response:
    server_id, _, version = path.partition("/versions/")
    entry = ENTRIES_BY_ID.get(server_id)
    if entry is None or (version and version != entry["server"]["version"]):
        return httpx.Response(404)
    return httpx.Response(200, json=entry)


def fake_registry(request: httpx.Request) -> httpx.Response:
    """Stand-in for the MCP registry listing and server detail API."""
    if request.url.path.startswith("/v0/servers/"):
        return fake_server_detail(request.url.path[len("/v0/servers/"):])
    if request.url.path != "/v0/servers":
        return httpx.Response(404)

    cursor = request.url.params.get("cursor")
    if cursor is None:
        return httpx.Response(200, json=FIRST_PAGE)
    if cursor == "page-2":
        return httpx.Response(200, json=SECOND_PAGE)
    return httpx.Response(500, json={"error": "unknown cursor"})


@pytest.fixture
def weather_server() -> dict:
    entry = registry_entry("io.example/weather", "weather")
    return {**entry["server"], "_meta": entry["_meta"]}


@pytest_asyncio.fixture
async def context(tmp_path) -> AsyncGenerator[InstallerContext, None]:
    settings = Settings(
        MCP_REGISTRY_URL=REGISTRY_URL,
        MCP_CONFIG_PATH=tmp_path / "mcp.json",
        REDIS_URL=None,
        REFRESH_DEBOUNCE_SECONDS=0.01,
    )
    context = InstallerContext.from_settings(settings, transport=httpx.MockTransport(fake_registry))
    await context.start()
    yield context
    await context.aclose()


@pytest.fixture
def app(context: InstallerContext) -> FastAPI:
    return create_app(context.settings, context=context)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Provide an AsyncClient for the FastAPI app (lifespan is driven by the context fixture)."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

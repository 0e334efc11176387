import asyncio
import json

import pytest
import pytest_asyncio
from pydantic import ValidationError

from mcp_installer.core.config import Settings
from mcp_installer.core.context import InstallerContext, RegistrySettings
from mcp_installer.core.errors import (
    InvalidRegistryURL,
    OverwriteConfirmationRequired,
    RegistryURLLocked,
    RegistryURLNotConfigured,
)
from mcp_installer.schemas.registry import RegistryAllowlistEntry

ALLOWLIST = {
    "url": "https://registry.corp.example/v0/servers",
    "registry_access": "registry_only",
    "owner": {"login": "corp", "id": 7, "type": "Business"},
}


class TestRegistrySettings:
    def test_set_url_trims_and_validates(self):
        registry = RegistrySettings()
        assert registry.set_url("  https://r.example/v0/servers ") == "https://r.example/v0/servers"
        assert registry.url == "https://r.example/v0/servers"

    @pytest.mark.parametrize("url", ["ftp://r.example", "r.example/v0/servers", "https://"])
    def test_rejects_non_http_urls(self, url):
        registry = RegistrySettings(url="https://r.example")
        with pytest.raises(InvalidRegistryURL):
            registry.set_url(url)
        assert registry.url == "https://r.example"

    def test_rejects_overlong_url_instead_of_truncating(self):
        registry = RegistrySettings(max_length=40)
        with pytest.raises(InvalidRegistryURL):
            registry.set_url("https://r.example/" + "a" * 40)
        assert registry.url == ""

    def test_empty_url_means_not_configured(self):
        registry = RegistrySettings(url="https://r.example")
        registry.set_url("")
        with pytest.raises(RegistryURLNotConfigured):
            registry.require_url()

    def test_history_is_most_recent_first_deduplicated_and_capped(self):
        registry = RegistrySettings(history_size=3)
        for url in ["https://a", "https://b", "https://a", "https://c", "https://d"]:
            registry.record_success(url)
        assert registry.history == ["https://d", "https://c", "https://a"]

    def test_registry_only_allowlist_pins_url(self):
        registry = RegistrySettings(url="https://public.example")
        registry.apply_allowlist(RegistryAllowlistEntry.model_validate(ALLOWLIST))

        assert registry.is_locked
        assert registry.url == ALLOWLIST["url"]
        with pytest.raises(RegistryURLLocked):
            registry.set_url("https://public.example")
        registry.set_url("https://registry.corp.example/")

    def test_allow_all_allowlist_does_not_pin(self):
        registry = RegistrySettings(url="https://public.example")
        registry.apply_allowlist(RegistryAllowlistEntry.model_validate({**ALLOWLIST, "registry_access": "allow_all"}))

        assert not registry.is_locked
        assert registry.url == "https://public.example"
        registry.set_url("https://other.example")


class TestSettings:
    def test_registry_url_is_trimmed(self, tmp_path):
        settings = Settings(MCP_REGISTRY_URL="  https://r.example/v0/servers  ", MCP_CONFIG_PATH=tmp_path / "mcp.json")
        assert settings.MCP_REGISTRY_URL == "https://r.example/v0/servers"

    def test_invalid_registry_url_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(MCP_REGISTRY_URL="file:///etc/passwd")


@pytest_asyncio.fixture
async def context(tmp_path, registry_url):
    settings = Settings(
        MCP_REGISTRY_URL=registry_url,
        MCP_CONFIG_PATH=tmp_path / "mcp.json",
        REDIS_URL=None,
        REFRESH_DEBOUNCE_SECONDS=0.01,
    )
    context = InstallerContext.from_settings(settings)
    await context.start()
    yield context
    await context.aclose()


class TestInstallerContext:
    @pytest.mark.asyncio
    async def test_start_creates_document(self, context, tmp_path):
        assert json.loads((tmp_path / "mcp.json").read_text()) == {"servers": {}}
        assert context.mirror.snapshot == "{}"

    @pytest.mark.asyncio
    async def test_install_default_then_confirm_overwrite(self, context, server):
        installed = await context.install(server)
        assert installed.display_name.startswith("Streamable HTTP")
        assert await context.reconciliation.is_server_installed(server)

        pypi = context.installation_options(server)[2]
        with pytest.raises(OverwriteConfirmationRequired):
            await context.install(server, pypi)

        await context.install(server, pypi, confirm_overwrite=True)
        assert await context.reconciliation.is_variant_installed(server, pypi.variant)

        # Reinstalling the same variant needs no confirmation
        await context.install(server, pypi)

    @pytest.mark.asyncio
    async def test_uninstall(self, context, server):
        await context.install(server)
        await context.uninstall(server)
        assert not await context.reconciliation.is_server_installed(server)

    @pytest.mark.asyncio
    async def test_operations_require_registry_url(self, context, server):
        context.registry.set_url("")
        with pytest.raises(RegistryURLNotConfigured):
            await context.install(server)
        with pytest.raises(RegistryURLNotConfigured):
            await context.list_servers()

    @pytest.mark.asyncio
    async def test_concurrent_installs_of_different_variants(self, context, server):
        """Only one of two racing installs wins; the other must ask for confirmation."""
        remote, npm = context.installation_options(server)[:2]

        results = await asyncio.gather(
            context.install(server, remote),
            context.install(server, npm),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], OverwriteConfirmationRequired)
        assert await context.reconciliation.is_variant_installed(server, winners[0].variant)

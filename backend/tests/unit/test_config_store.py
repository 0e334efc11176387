import asyncio
import json
import os

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from mcp_installer.core.errors import InvalidConfigurationStructure, OverwriteConfirmationRequired, ServerNotFound
from mcp_installer.schemas.registry import ServerDetail
from mcp_installer.services.cache import RedisConnection, ServersMirror
from mcp_installer.services.config_store import ConfigStore
from mcp_installer.services.config_synthesizer import get_installation_options
from mcp_installer.services.notifications import RefreshNotifier


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "mcp" / "mcp.json"


@pytest.fixture
def post():
    return AsyncMock()


@pytest_asyncio.fixture
async def notifier(post):
    notifier = RefreshNotifier(post, window=0.01)
    yield notifier
    await notifier.stop()


@pytest.fixture
def mirror():
    return ServersMirror(RedisConnection(None), "mcp:servers")


@pytest.fixture
def store(config_path, mirror, notifier):
    return ConfigStore(config_path, mirror, notifier)


@pytest.fixture
def options(server, registry_url):
    return get_installation_options(server, registry_url)


def read_json(path):
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.mark.asyncio
async def test_install_creates_document(store, config_path, server, options, mirror, notifier, post):
    await store.install(server, options[0])
    await notifier.wait_idle()

    document = read_json(config_path)
    assert document == {"servers": {server.name: options[0].config}}
    assert config_path.read_text(encoding="utf-8").startswith('{\n  "servers"')
    assert json.loads(mirror.snapshot) == document["servers"]
    post.assert_awaited_once_with("mcp.registry.shouldRefreshToolConfiguration")


@pytest.mark.asyncio
async def test_install_is_idempotent(store, config_path, server, options):
    await store.install(server, options[1])
    first = config_path.read_bytes()
    await store.install(server, options[1])

    assert config_path.read_bytes() == first


@pytest.mark.asyncio
async def test_install_preserves_other_entries_and_keys(store, config_path, server, options):
    config_path.parent.mkdir(parents=True)
    config_path.write_text(json.dumps({
        "inputs": [{"id": "token"}],
        "servers": {"hand-written": {"type": "stdio", "command": "node"}},
    }))

    await store.install(server, options[0])
    document = read_json(config_path)

    assert document["inputs"] == [{"id": "token"}]
    assert set(document["servers"]) == {"hand-written", server.name}


@pytest.mark.asyncio
async def test_install_replaces_previous_variant(store, config_path, server, options):
    await store.install(server, options[0])
    await store.install(server, options[2])

    assert read_json(config_path)["servers"][server.name]["command"] == "uvx"


@pytest.mark.asyncio
async def test_install_rejects_non_map_servers(store, config_path, server, options):
    config_path.parent.mkdir(parents=True)
    config_path.write_text('{"servers": ["not", "a", "map"]}')
    before = config_path.read_bytes()

    with pytest.raises(InvalidConfigurationStructure):
        await store.install(server, options[0])
    assert config_path.read_bytes() == before


@pytest.mark.asyncio
async def test_install_over_unparseable_document(store, config_path, server, options, caplog):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("{ not json")

    await store.install(server, options[0])

    assert list(read_json(config_path)["servers"]) == [server.name]
    assert "Treating MCP configuration as empty" in caplog.text


@pytest.mark.asyncio
async def test_uninstall_missing_server_leaves_file_untouched(store, config_path, server, options):
    """Uninstalling an absent server leaves the document byte-for-byte unchanged."""
    config_path.parent.mkdir(parents=True)
    config_path.write_text('{"servers":{"other":{"type":"http","url":"https://x"}}}')
    before = config_path.read_bytes()

    with pytest.raises(ServerNotFound) as exc_info:
        await store.uninstall(server)

    assert exc_info.value.server_name == server.name
    assert config_path.read_bytes() == before


@pytest.mark.asyncio
async def test_uninstall_without_document(store, config_path, server):
    with pytest.raises(ServerNotFound):
        await store.uninstall(server)
    assert not config_path.exists()


@pytest.mark.asyncio
async def test_uninstall_removes_entry(store, config_path, server, options, mirror):
    await store.install(server, options[0])
    await store.uninstall(server)

    assert read_json(config_path) == {"servers": {}}
    assert mirror.snapshot == "{}"


@pytest.mark.asyncio
async def test_concurrent_installs_are_serialized(store, config_path, server_data, registry_url):
    servers = [ServerDetail.model_validate({**server_data, "name": f"io.example/s{i}"}) for i in range(10)]
    await asyncio.gather(*(
        store.install(s, get_installation_options(s, registry_url)[0]) for s in servers
    ))

    assert set(read_json(config_path)["servers"]) == {s.name for s in servers}


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_install(config_path, mirror, server, options, caplog):
    failing = RefreshNotifier(AsyncMock(side_effect=RuntimeError("bus down")), window=0.01)
    store = ConfigStore(config_path, mirror, failing)

    await store.install(server, options[0])
    await failing.wait_idle()

    assert server.name in read_json(config_path)["servers"]
    assert "Failed to post refresh notification" in caplog.text
    assert failing.sent_count == 0


@pytest.mark.asyncio
async def test_read_servers_tolerates_bad_shapes(store, config_path):
    assert await store.read_servers() == {}

    config_path.parent.mkdir(parents=True)
    config_path.write_text('{"servers": 3}')
    assert await store.read_servers() == {}


@pytest.mark.asyncio
async def test_ensure_exists(store, config_path):
    await store.ensure_exists()
    assert read_json(config_path) == {"servers": {}}

    config_path.write_text('{"servers": {"keep": {}}}')
    await store.ensure_exists()
    assert read_json(config_path) == {"servers": {"keep": {}}}


@pytest.mark.asyncio
async def test_refresh_from_disk_detects_external_edit(store, config_path, server, options, mirror, post):
    await store.install(server, options[0])
    assert not await store.refresh_from_disk()

    config_path.write_text('{"servers": {"edited": {"type": "stdio", "command": "node"}}}')
    stat = config_path.stat()
    os.utime(config_path, (stat.st_atime, stat.st_mtime + 5))

    assert await store.refresh_from_disk()
    assert json.loads(mirror.snapshot) == {"edited": {"type": "stdio", "command": "node"}}
    assert not await store.refresh_from_disk()


@pytest.mark.asyncio
async def test_refresh_from_disk_keeps_mirror_on_invalid_json(store, config_path, server, options, mirror):
    await store.install(server, options[0])
    snapshot = mirror.snapshot

    config_path.write_text("{ broken")
    stat = config_path.stat()
    os.utime(config_path, (stat.st_atime, stat.st_mtime + 5))

    assert not await store.refresh_from_disk()
    assert mirror.snapshot == snapshot


@pytest.mark.asyncio
async def test_install_guard_sees_current_servers_and_can_abort(store, config_path, server, options):
    await store.install(server, options[0])
    before = config_path.read_bytes()
    seen = []

    def refuse(servers):
        seen.append(dict(servers))
        raise OverwriteConfirmationRequired(server.name)

    with pytest.raises(OverwriteConfirmationRequired):
        await store.install(server, options[1], guard=refuse)

    assert list(seen[0]) == [server.name]
    assert config_path.read_bytes() == before

    await store.install(server, options[1], guard=lambda servers: None)
    assert read_json(config_path)["servers"][server.name]["command"] == "npx"

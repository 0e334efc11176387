"""
Config Store Gateway

Serialized read-modify-write access to the shared MCP configuration document:

    {
      "servers": {
        "<server name>": { ...config object... }
      }
    }

Every mutation holds the store's lock, so concurrent installs and uninstalls
never lose each other's updates. Files are replaced atomically, so an editor or
another process reading the document never sees a partial write. After each
successful write the ``servers`` object is re-mirrored and a refresh
notification is sent.
"""
import asyncio
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from mcp_installer.core.errors import (
    ConfigurationFileError,
    InvalidConfigurationStructure,
    ServerNotFound,
)
from mcp_installer.schemas.registry import InstallationOption, ServerDetail
from mcp_installer.services.cache import ServersMirror
from mcp_installer.services.notifications import RefreshNotifier

logger = logging.getLogger(__name__)

InstallGuard = Callable[[Dict[str, Any]], None]


def empty_document() -> Dict[str, Any]:
    return {"servers": {}}


class ConfigStore:
    """Owner of one configuration document. Build exactly one per path."""

    def __init__(self, path: Path, mirror: ServersMirror, notifier: RefreshNotifier):
        self.path = Path(path)
        self._mirror = mirror
        self._notifier = notifier
        self._lock = asyncio.Lock()
        self._last_synced_mtime: Optional[float] = None

    # File access (blocking; always called through asyncio.to_thread)

    def _read_document_sync(self) -> Optional[Dict[str, Any]]:
        """
        Parse the document.

        Returns None when the file does not exist.

        Raises:
            ConfigurationFileError: If the file cannot be read.
            ValueError: If the content is not a JSON object.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ConfigurationFileError(f"cannot read {self.path}: {e}") from e

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {self.path}: {e}") from e

        if not isinstance(document, dict):
            raise ValueError(f"Expected a JSON object in {self.path}, got {type(document).__name__}")
        return document

    def _load_document_sync(self) -> Dict[str, Any]:
        """Document for a mutation: absent or unparseable files read as an empty document."""
        try:
            document = self._read_document_sync()
        except ValueError as e:
            logger.warning(f"Treating MCP configuration as empty: {e}")
            return empty_document()
        return document if document is not None else empty_document()

    def _write_document_sync(self, document: Dict[str, Any]) -> None:
        """Atomically replace the document (temp file in the same directory + os.replace)."""
        tmp_path: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = f.name
                json.dump(document, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise ConfigurationFileError(f"cannot write {self.path}: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.debug(f"Could not remove temporary file {tmp_path}")

    def _mtime_sync(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ConfigurationFileError(f"cannot stat {self.path}: {e}") from e

    # Reads

    async def read_document(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._load_document_sync)

    async def read_servers(self) -> Dict[str, Any]:
        """The ``servers`` map, or {} when it is missing or not a map."""
        servers = (await self.read_document()).get("servers")
        return servers if isinstance(servers, dict) else {}

    # Writes

    async def ensure_exists(self) -> None:
        """Create the document with an empty ``servers`` map if it does not exist yet."""
        async with self._lock:
            if await asyncio.to_thread(self.path.exists):
                return
            logger.info(f"Creating MCP configuration at {self.path}")
            await asyncio.to_thread(self._write_document_sync, empty_document())

    async def install(
        self,
        server: ServerDetail,
        option: InstallationOption,
        guard: Optional[InstallGuard] = None,
    ) -> Dict[str, Any]:
        """
        Write ``option.config`` under ``servers[server.name]``, replacing any previous entry.

        ``guard`` is called with the current ``servers`` map under the lock,
        before anything is written. Whatever it raises aborts the install and
        leaves the file untouched.

        Returns:
            The ``servers`` map as written.

        Raises:
            InvalidConfigurationStructure: If ``servers`` exists but is not a map.
            ConfigurationFileError: If the document cannot be read or written.
        """
        logger.info(f"Installing MCP Server '{server.name}' ({option.display_name})...")

        async with self._lock:
            document = await asyncio.to_thread(self._load_document_sync)
            if document.get("servers") is None:
                document["servers"] = {}

            servers = document["servers"]
            if not isinstance(servers, dict):
                raise InvalidConfigurationStructure()

            if guard is not None:
                guard(servers)

            servers[server.name] = copy.deepcopy(option.config)
            await self._commit(document, servers)

        logger.info(f"Successfully installed MCP Server '{server.name}'")
        return servers

    async def uninstall(self, server: ServerDetail) -> Dict[str, Any]:
        """
        Remove ``servers[server.name]``.

        The file is left untouched when the server is not present.

        Returns:
            The ``servers`` map as written.

        Raises:
            ServerNotFound: If no entry named ``server.name`` exists.
            InvalidConfigurationStructure: If ``servers`` exists but is not a map.
            ConfigurationFileError: If the document cannot be read or written.
        """
        logger.info(f"Uninstalling MCP Server '{server.name}'...")

        async with self._lock:
            document = await asyncio.to_thread(self._load_document_sync)
            servers = document.get("servers")
            if servers is None:
                raise ServerNotFound(server.name)
            if not isinstance(servers, dict):
                raise InvalidConfigurationStructure()
            if server.name not in servers:
                raise ServerNotFound(server.name)

            del servers[server.name]
            await self._commit(document, servers)

        logger.info(f"Successfully uninstalled MCP Server '{server.name}'")
        return servers

    async def _commit(self, document: Dict[str, Any], servers: Dict[str, Any]) -> None:
        """Write, then refresh the mirror and notify. Caller holds the lock."""
        await asyncio.to_thread(self._write_document_sync, document)
        self._last_synced_mtime = await asyncio.to_thread(self._mtime_sync)

        await self._mirror.publish(servers)
        self._notifier.notify_now()

    # External edits

    async def refresh_from_disk(self) -> bool:
        """
        Re-mirror the document after an external edit and request a coalesced refresh.

        Skipped when the file's modification time matches the last sync. An
        unparseable document leaves the mirror as it was.

        Returns:
            True if the mirror was refreshed.
        """
        async with self._lock:
            mtime = await asyncio.to_thread(self._mtime_sync)
            if mtime is not None and mtime == self._last_synced_mtime:
                return False

            try:
                document = await asyncio.to_thread(self._read_document_sync)
            except ValueError as e:
                logger.warning(f"Not refreshing from invalid MCP configuration: {e}")
                return False

            self._last_synced_mtime = mtime
            servers = (document or {}).get("servers")
            if not isinstance(servers, dict):
                logger.info("No 'servers' key found in MCP configuration")
                servers = {}

            logger.info("MCP config file change detected")
            await self._mirror.publish(servers)

        self._notifier.request_refresh()
        return True

"""
Config Synthesizer

Builds the runnable server configuration written to the MCP configuration
document from a registry server and one of its installable variants.

Two shapes are produced:

    {"type": "stdio", "command": "npx", "args": [...], "env": {...}}
    {"type": "http", "url": "https://...", "requestInit": {"headers": {...}}}

Both always carry ``x-metadata.registry = {"url", "serverId"}``, the anchor
used by reconciliation to recognise entries installed from the registry.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from mcp_installer.core.errors import NoInstallationOptionsAvailable, RegistryURLNotConfigured
from mcp_installer.schemas.registry import (
    InstallationOption,
    KeyValueInput,
    Package,
    Remote,
    ServerDetail,
)
from mcp_installer.services.arguments import resolve_arguments

logger = logging.getLogger(__name__)

Variant = Union[Package, Remote]

METADATA_KEY = "x-metadata"


@dataclass(frozen=True)
class RegistryType:
    display_name: str
    command_name: str


# Well-known package registries and the launcher that runs their packages
REGISTRY_TYPES: Dict[str, RegistryType] = {
    "npm": RegistryType(display_name="NPM", command_name="npx"),
    "pypi": RegistryType(display_name="PyPI", command_name="uvx"),
    "oci": RegistryType(display_name="OCI", command_name="docker"),
    "nuget": RegistryType(display_name="NuGet", command_name="dnx"),
}


def registry_display_text(registry_type: Optional[str]) -> str:
    if registry_type is None:
        return "Unknown"
    known = REGISTRY_TYPES.get(registry_type)
    return known.display_name if known else registry_type.title()


def require_registry_url(registry_url: Optional[str]) -> str:
    """Return the trimmed registry URL or raise RegistryURLNotConfigured."""
    url = (registry_url or "").strip()
    if not url:
        raise RegistryURLNotConfigured()
    return url


# Package commands and arguments

def resolve_command(package: Package) -> str:
    """runtime_hint, else the registry's launcher, else the registry type itself, else "unknown"."""
    if package.runtime_hint is not None:
        return package.runtime_hint
    known = REGISTRY_TYPES.get(package.registry_type or "")
    if known:
        return known.command_name
    return package.registry_type if package.registry_type is not None else "unknown"


def _versioned(identifier: str, version: str, separator: str) -> str:
    return f"{identifier}{separator}{version}" if version else identifier


def default_arguments(package: Package) -> List[str]:
    """Launcher arguments used when the package declares no runtime arguments."""
    identifier = package.identifier or ""
    version = package.version or ""
    registry_type = package.registry_type

    if registry_type == "npm":
        return ["-y", _versioned(identifier, version, "@")]
    if registry_type == "pypi":
        return [_versioned(identifier, version, "==")]
    if registry_type == "oci":
        return ["run", "-i", "--rm", _versioned(identifier, version, ":")]
    if registry_type == "nuget":
        args = [_versioned(identifier, version, "@"), "--yes"]
        # dnx needs "--" to separate its own flags from the package's
        if package.package_arguments:
            args.append("--")
        return args
    return [_versioned(identifier, version, "@")]


def build_package_arguments(package: Package) -> List[str]:
    """Runtime arguments (or the registry default), then package arguments."""
    args = resolve_arguments(package.runtime_arguments)
    if not package.runtime_arguments:
        args.extend(default_arguments(package))
    args.extend(resolve_arguments(package.package_arguments))
    return args


def _key_value_map(inputs: Iterable[KeyValueInput]) -> Dict[str, str]:
    """name -> value ("" when unset); the first occurrence of a name wins."""
    result: Dict[str, str] = {}
    for item in inputs:
        if item.name not in result:
            result[item.name] = item.value if item.value is not None else ""
    return result


# Config objects

def attach_registry_metadata(config: Dict[str, Any], server: ServerDetail, registry_url: str) -> Dict[str, Any]:
    """
    Stamp the reconciliation anchor onto a synthesized config.

    Always reflects the active registry URL, never one carried in the server's own metadata,
    and replaces anything already present under the metadata key.
    """
    config[METADATA_KEY] = {
        "registry": {
            "url": registry_url.strip(),
            "serverId": server.stable_id,
        }
    }
    return config


def create_remote_config(server: ServerDetail, remote: Remote, registry_url: str) -> Dict[str, Any]:
    config: Dict[str, Any] = {
        "type": "http",
        "url": remote.url,
    }

    if remote.headers:
        config["requestInit"] = {"headers": _key_value_map(remote.headers)}

    return attach_registry_metadata(config, server, require_registry_url(registry_url))


def create_package_config(server: ServerDetail, package: Package, registry_url: str) -> Dict[str, Any]:
    config: Dict[str, Any] = {
        "type": "stdio",
        "command": resolve_command(package),
        "args": build_package_arguments(package),
    }

    if package.environment_variables:
        config["env"] = _key_value_map(package.environment_variables)

    return attach_registry_metadata(config, server, require_registry_url(registry_url))


def synthesize(server: ServerDetail, variant: Variant, registry_url: str) -> Dict[str, Any]:
    """Build the configuration object for one remote or one package of ``server``."""
    if isinstance(variant, Remote):
        return create_remote_config(server, variant, registry_url)
    if isinstance(variant, Package):
        return create_package_config(server, variant, registry_url)
    raise TypeError(f"Unsupported installation variant: {type(variant).__name__}")


# Installation options

def get_installation_options(server: ServerDetail, registry_url: str) -> List[InstallationOption]:
    """
    Every way ``server`` can be installed: remotes first, then packages.

    The first remote is the default; without remotes the first package is.
    """
    options: List[InstallationOption] = []

    for index, remote in enumerate(server.remotes):
        options.append(InstallationOption(
            display_name=f"{remote.transport_type.display_text}: {remote.url}",
            description=f"Connect to remote server at {remote.url}",
            config=create_remote_config(server, remote, registry_url),
            is_default=index == 0,
            variant=remote,
        ))

    has_remote_default = bool(options)
    for index, package in enumerate(server.packages):
        registry_display = registry_display_text(package.registry_type)
        identifier = f" : {package.identifier}" if package.identifier is not None else ""
        options.append(InstallationOption(
            display_name=f"{registry_display}{identifier}",
            description=f"Install {package.identifier or ''} from {registry_display}",
            config=create_package_config(server, package, registry_url),
            is_default=index == 0 and not has_remote_default,
            variant=package,
        ))

    return options


def get_default_option(server: ServerDetail, registry_url: str) -> InstallationOption:
    options = get_installation_options(server, registry_url)
    default = next((option for option in options if option.is_default), None)
    if default is None:
        raise NoInstallationOptionsAvailable(server.name)
    return default


def create_server_configuration(server: ServerDetail, registry_url: str) -> Dict[str, Any]:
    """Config of the default installation option."""
    return get_default_option(server, registry_url).config


def select_installation_option(options: List[InstallationOption], query: str) -> Optional[InstallationOption]:
    """First option whose display name or description mentions ``query``."""
    for option in options:
        if query in option.display_name or query in option.description:
            return option
    logger.debug(f"No installation option matches '{query}'")
    return None

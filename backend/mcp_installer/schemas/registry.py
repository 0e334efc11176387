"""
Pydantic models for the MCP Registry API schema.

Based on: https://github.com/modelcontextprotocol/registry/blob/main/docs/reference/api/openapi.yaml

Registry deployments disagree on key casing: older ones emit snake_case keys
(``registry_type``, ``is_required``, ``next_cursor``) while newer ones emit
camelCase (``registryType``, ``isRequired``, ``nextCursor``). Every model accepts
both spellings and ``to_wire()`` always emits the snake_case form.
"""
import logging
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    AliasGenerator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

OFFICIAL_META_KEY = "io.modelcontextprotocol.registry/official"
PUBLISHER_META_KEY = "io.modelcontextprotocol.registry/publisher-provided"


def _wire_aliases(field_name: str) -> AliasChoices:
    return AliasChoices(field_name, to_camel(field_name))


def _none_as_empty(v: Any) -> Any:
    return [] if v is None else v


# Registries emit null for absent lists as often as they omit the key.
EmptyIfNone = BeforeValidator(_none_as_empty)


class RegistryModel(BaseModel):
    """
    Immutable base for everything decoded from a registry response.

    Equality and hashing cover every field, including list and dict valued ones,
    so registry values can be used for de-duplication and selection matching.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=AliasGenerator(validation_alias=_wire_aliases),
    )

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.model_dump_json()))

    def to_wire(self) -> Dict[str, Any]:
        """Encode back to registry JSON (snake_case keys, absent fields omitted)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Repository

class Repository(RegistryModel):
    url: str
    source: str
    id: Optional[str] = None
    subfolder: Optional[str] = None


# Inputs and arguments

class ArgumentFormat(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    FILEPATH = "filepath"


class Input(RegistryModel):
    """Fields shared by every user-supplied input (arguments, env vars, headers)."""
    description: Optional[str] = None
    is_required: Optional[bool] = None
    format: Optional[ArgumentFormat] = None
    value: Optional[str] = None
    is_secret: Optional[bool] = None
    default_value: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("default", "default_value", "defaultValue"),
        serialization_alias="default",
    )
    choices: Optional[List[str]] = None


class InputWithVariables(Input):
    # Template variables are modeled but never substituted; values pass through literally.
    variables: Optional[Dict[str, Input]] = None


class PositionalArgument(InputWithVariables):
    type: Literal["positional"] = Field("positional", alias="type")
    value_hint: Optional[str] = None
    is_repeated: Optional[bool] = None


class NamedArgument(InputWithVariables):
    type: Literal["named"] = Field("named", alias="type")
    name: Optional[str] = None
    is_repeated: Optional[bool] = None


# Closed tagged union: decoding branches on the explicit "type" tag only.
Argument = Annotated[Union[PositionalArgument, NamedArgument], Field(discriminator="type")]


def input_field(item: Input, field_name: str) -> Any:
    """
    Read a field shared by positional arguments, named arguments and key/value inputs.

    Returns None when the concrete variant does not declare the field
    (e.g. ``value_hint`` on a named argument).
    """
    return getattr(item, field_name, None)


class KeyValueInput(InputWithVariables):
    """An environment variable (packages) or HTTP header (remotes)."""
    name: str


# Packages and remotes

class Package(RegistryModel):
    """A process-launch variant: run the server through a package manager."""
    registry_type: Optional[str] = None
    registry_base_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("registry_base_url", "registryBaseUrl", "registryBaseURL"),
    )
    identifier: Optional[str] = None
    version: Optional[str] = None
    file_sha256: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("file_sha256", "fileSha256", "fileSHA256"),
    )
    runtime_hint: Optional[str] = None
    runtime_arguments: Annotated[List[Argument], EmptyIfNone] = Field(default_factory=list)
    package_arguments: Annotated[List[Argument], EmptyIfNone] = Field(default_factory=list)
    environment_variables: Annotated[List[KeyValueInput], EmptyIfNone] = Field(default_factory=list)


class TransportType(str, Enum):
    STREAMABLE_HTTP = "streamable-http"
    HTTP = "http"
    SSE = "sse"

    @property
    def display_text(self) -> str:
        return {
            TransportType.STREAMABLE_HTTP: "Streamable HTTP",
            TransportType.HTTP: "HTTP",
            TransportType.SSE: "SSE",
        }[self]


class Remote(RegistryModel):
    """A network-launch variant: connect to an already running endpoint."""
    # "transport_type" wins over the legacy "type" key when both are present.
    transport_type: TransportType = Field(
        validation_alias=AliasChoices("transport_type", "transportType", "type"),
        serialization_alias="transport_type",
    )
    url: str
    headers: Annotated[List[KeyValueInput], EmptyIfNone] = Field(default_factory=list)


# Server metadata

class BuildInfo(RegistryModel):
    commit: Optional[str] = None
    timestamp: Optional[str] = None
    pipeline_id: Optional[str] = None


class PublisherProvidedMeta(RegistryModel):
    model_config = ConfigDict(extra="allow")

    tool: Optional[str] = None
    version: Optional[str] = None
    build_info: Optional[BuildInfo] = None


class OfficialMeta(RegistryModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    status: Optional[str] = None
    published_at: Optional[str] = None
    updated_at: Optional[str] = None
    is_latest: Optional[bool] = None


class ServerMeta(RegistryModel):
    model_config = ConfigDict(extra="allow")

    publisher_provided: Optional[PublisherProvidedMeta] = Field(None, alias=PUBLISHER_META_KEY)
    official: Optional[OfficialMeta] = Field(None, alias=OFFICIAL_META_KEY)


# Server detail

class ServerDetail(RegistryModel):
    name: str
    description: str
    version: str
    status: Optional[Literal["active", "deprecated"]] = None
    repository: Optional[Repository] = None
    website_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    schema_url: Optional[str] = Field(None, alias="$schema")
    packages: Annotated[List[Package], EmptyIfNone] = Field(default_factory=list)
    remotes: Annotated[List[Remote], EmptyIfNone] = Field(default_factory=list)
    meta: Optional[ServerMeta] = Field(None, alias="_meta")

    @model_validator(mode="before")
    @classmethod
    def unwrap_list_entry(cls, data: Any) -> Any:
        """
        Accept the v0 listing shape ``{"server": {...}, "_meta": {...}}``.

        Registry-managed metadata lives beside the server object in that shape;
        it is merged over any publisher metadata found inside.
        """
        if not isinstance(data, dict) or "name" in data or not isinstance(data.get("server"), dict):
            return data

        merged = dict(data["server"])
        outer_meta = data.get("_meta")
        if isinstance(outer_meta, dict):
            inner_meta = merged.get("_meta") if isinstance(merged.get("_meta"), dict) else {}
            merged["_meta"] = {**inner_meta, **outer_meta}
        return merged

    @property
    def stable_id(self) -> str:
        """Identity used for reconciliation: official id, then repository id, then name."""
        if self.meta and self.meta.official and self.meta.official.id:
            return self.meta.official.id
        if self.repository and self.repository.id:
            return self.repository.id
        return self.name

    @property
    def is_latest(self) -> bool:
        """False only when official metadata explicitly marks an older version."""
        official = self.meta.official if self.meta else None
        return not (official and official.is_latest is False)

    @property
    def has_installation_options(self) -> bool:
        return bool(self.remotes or self.packages)


# Listing

class ServerListMetadata(RegistryModel):
    next_cursor: Optional[str] = None
    count: Optional[int] = None


class ServerList(RegistryModel):
    servers: Annotated[List[ServerDetail], EmptyIfNone] = Field(default_factory=list)
    metadata: Optional[ServerListMetadata] = None

    @property
    def next_cursor(self) -> Optional[str]:
        """Cursor for the following page, or None when this is the last page."""
        cursor = self.metadata.next_cursor if self.metadata else None
        return cursor or None

    @classmethod
    def parse_page(cls, payload: Dict[str, Any]) -> "ServerList":
        """
        Decode a listing page, skipping entries that fail validation.

        One malformed server (unknown argument tag, missing required field)
        is logged and dropped; the rest of the page is kept.
        """
        servers: List[ServerDetail] = []
        for index, raw in enumerate(payload.get("servers") or []):
            try:
                servers.append(ServerDetail.model_validate(raw))
            except ValidationError as e:
                name = _entry_name(raw)
                logger.warning(f"Skipping malformed registry entry #{index} ({name}): {e.error_count()} error(s): {e}")

        metadata = None
        raw_metadata = payload.get("metadata")
        if isinstance(raw_metadata, dict):
            try:
                metadata = ServerListMetadata.model_validate(raw_metadata)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed listing metadata: {e}")

        return cls(servers=servers, metadata=metadata)


def _entry_name(raw: Any) -> str:
    if isinstance(raw, dict):
        inner = raw.get("server") if isinstance(raw.get("server"), dict) else raw
        return str(inner.get("name", "unknown"))
    return "unknown"


class ListServersParams(RegistryModel):
    base_url: str
    cursor: Optional[str] = None
    limit: Optional[int] = None


class GetServerParams(RegistryModel):
    base_url: str
    id: str
    version: Optional[str] = None


# Registry allowlist

class RegistryAccess(str, Enum):
    REGISTRY_ONLY = "registry_only"
    ALLOW_ALL = "allow_all"


class RegistryOwner(RegistryModel):
    login: str
    id: int
    type: str  # "Business" (Enterprise) or "Organization"
    parent_login: Optional[str] = None
    parent_id: Optional[int] = None


class RegistryAllowlistEntry(RegistryModel):
    """Registry policy handed down by an organization; ``registry_only`` pins the URL."""
    url: str
    registry_access: RegistryAccess
    owner: RegistryOwner


# Synthesized installation candidates

class InstallationOption(BaseModel):
    """A user-facing way to install a server: one remote or one package, with its config."""
    display_name: str
    description: str
    config: Dict[str, Any]
    is_default: bool = False
    variant: Union[Remote, Package]

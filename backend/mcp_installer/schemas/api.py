from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from mcp_installer.schemas.registry import RegistryAllowlistEntry, ServerDetail


class RegistryURLUpdate(BaseModel):
    url: str = ""


class RegistryURLState(BaseModel):
    url: str
    history: List[str] = Field(default_factory=list)
    locked: bool = False
    allowlist: Optional[RegistryAllowlistEntry] = None


class ServerRequest(BaseModel):
    server: ServerDetail


class InstallRequest(BaseModel):
    server: ServerDetail
    # Substring of an option's display name or description; the default option when omitted.
    option: Optional[str] = None
    confirm_overwrite: bool = False


class ServerEntry(BaseModel):
    server: Dict[str, Any]
    installed: bool


class ServerPage(BaseModel):
    servers: List[ServerEntry]
    next_cursor: Optional[str] = None


class OptionEntry(BaseModel):
    display_name: str
    description: str
    config: Dict[str, Any]
    is_default: bool
    installed: bool
    would_overwrite: bool


class InstallResponse(BaseModel):
    name: str
    option: str
    config: Dict[str, Any]


class InstalledKeys(BaseModel):
    keys: List[str]


class RefreshResponse(BaseModel):
    refreshed: bool


class GalleryState(BaseModel):
    servers: List[ServerEntry]
    has_more: bool
    is_loading: bool

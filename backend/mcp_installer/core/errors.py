class MCPRegistryError(Exception):
    """
    Base class for every failure the installer surfaces to its callers.

    Each subclass carries a human readable ``message`` that the API layer
    returns verbatim in the ``detail`` field, with ``status_code`` as the
    HTTP status.
    """
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RegistryURLNotConfigured(MCPRegistryError):
    status_code = 400

    def __init__(self):
        super().__init__(
            "MCP Registry URL is not configured. Configure a registry URL before "
            "browsing or installing servers from the registry."
        )


class NoInstallationOptionsAvailable(MCPRegistryError):
    status_code = 422

    def __init__(self, server_name: str):
        self.server_name = server_name
        super().__init__(
            f"Cannot create server configuration for '{server_name}' - no installation options available"
        )


class InvalidConfigurationStructure(MCPRegistryError):
    def __init__(self):
        super().__init__("Invalid MCP configuration file structure")


class ServerNotFound(MCPRegistryError):
    status_code = 404

    def __init__(self, server_name: str):
        self.server_name = server_name
        super().__init__(f"MCP Server '{server_name}' not found in configuration")


class ConfigurationFileError(MCPRegistryError):
    def __init__(self, message: str):
        super().__init__(f"Configuration file error: {message}")


class InvalidRegistryURL(MCPRegistryError):
    status_code = 422

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid MCP Registry URL '{url}': {reason}")


class RegistryURLLocked(MCPRegistryError):
    status_code = 409

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"MCP Registry URL is managed by an allowlist and pinned to '{url}'")


class OverwriteConfirmationRequired(MCPRegistryError):
    status_code = 409

    def __init__(self, server_name: str):
        self.server_name = server_name
        super().__init__(
            f"MCP Server '{server_name}' is already installed with a different configuration; "
            "confirm to overwrite it"
        )

import pytest

from mcp_installer.schemas.registry import OFFICIAL_META_KEY, ServerDetail

REGISTRY_URL = "https://registry.example.com/v0/servers"


@pytest.fixture
def registry_url() -> str:
    return REGISTRY_URL


@pytest.fixture
def server_data() -> dict:
    """A registry server (camelCase wire form) with one remote and two packages."""
    return {
        "name": "io.example/weather",
        "description": "Weather forecasts for MCP clients",
        "version": "1.2.0",
        "repository": {"url": "https://github.com/example/weather", "source": "github", "id": "repo-42"},
        "remotes": [
            {
                "type": "streamable-http",
                "url": "https://weather.example.com/mcp",
                "headers": [{"name": "Authorization", "value": "Bearer t"}],
            }
        ],
        "packages": [
            {
                "registryType": "npm",
                "identifier": "@example/weather",
                "version": "1.2.0",
                "environmentVariables": [{"name": "WEATHER_API_KEY", "isSecret": True}],
            },
            {
                "registryType": "pypi",
                "identifier": "weather-mcp",
                "version": "1.2.0",
            },
        ],
        "_meta": {
            OFFICIAL_META_KEY: {"id": "abc", "isLatest": True, "status": "active"},
        },
    }


@pytest.fixture
def server(server_data) -> ServerDetail:
    return ServerDetail.model_validate(server_data)

"""
PowerPlatform MCP Server.

Exposes Dataverse (Power Platform) metadata and records to MCP clients.

### Running the server
    powerplatform-mcp                       # stdio, for Claude Desktop
    powerplatform-mcp --transport http      # streamable HTTP on :8080/mcp

### Configuration
    POWERPLATFORM_URL, POWERPLATFORM_CLIENT_ID,
    POWERPLATFORM_CLIENT_SECRET, POWERPLATFORM_TENANT_ID

### Using the service directly
    from powerplatform_mcp import PowerPlatformConfig, PowerPlatformService

    service = PowerPlatformService(PowerPlatformConfig.from_env())
    metadata = await service.get_entity_metadata("account")
"""

from .config import PowerPlatformConfig
from .errors import (
    AuthenticationError,
    ConfigurationError,
    PowerPlatformAPIError,
    PowerPlatformError,
)
from .service import PowerPlatformService

__version__ = "1.0.0"

__all__ = [
    "PowerPlatformConfig",
    "PowerPlatformService",
    # Errors
    "PowerPlatformError",
    "ConfigurationError",
    "AuthenticationError",
    "PowerPlatformAPIError",
]

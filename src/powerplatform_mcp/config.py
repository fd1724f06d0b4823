"""
Configuration for the PowerPlatform MCP server.

Values come from environment variables (optionally loaded from a .env file
by the entry point). Nothing is validated at import time: the server starts
without credentials and each tool reports missing configuration when called.
"""

import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from .errors import ConfigurationError


# Environment variable -> config field, in reporting order
ENV_VARS = {
    "POWERPLATFORM_URL": "organization_url",
    "POWERPLATFORM_CLIENT_ID": "client_id",
    "POWERPLATFORM_CLIENT_SECRET": "client_secret",
    "POWERPLATFORM_TENANT_ID": "tenant_id",
}

AUTHORITY_HOST = "https://login.microsoftonline.com"


@dataclass
class PowerPlatformConfig:
    """Connection settings for a Dataverse environment."""
    organization_url: str = ""
    client_id: str = ""
    client_secret: str = ""
    tenant_id: str = ""

    def __post_init__(self):
        self.organization_url = (self.organization_url or "").rstrip("/")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PowerPlatformConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            PowerPlatformConfig with empty strings for unset variables
        """
        environ = os.environ if environ is None else environ
        return cls(**{field: environ.get(var, "") for var, field in ENV_VARS.items()})

    def missing_fields(self) -> List[str]:
        """Return the names of unset fields."""
        return [field for field in ENV_VARS.values() if not getattr(self, field)]

    def validate(self) -> None:
        """Raise ConfigurationError if any field is unset."""
        missing = self.missing_fields()
        if missing:
            raise ConfigurationError(
                f"Missing PowerPlatform configuration: {', '.join(missing)}. "
                "Set these in environment variables."
            )

    @property
    def authority(self) -> str:
        return f"{AUTHORITY_HOST}/{self.tenant_id}"

    @property
    def scope(self) -> str:
        # Client-credential tokens are requested for the whole resource
        return f"{self.organization_url}/.default"

"""
Exceptions raised by the PowerPlatform service layer.

Tools catch all of these at the MCP boundary and report them as text.
"""

from typing import Optional


class PowerPlatformError(Exception):
    """Base class for PowerPlatform service errors."""


class ConfigurationError(PowerPlatformError):
    """Raised when required connection settings are missing."""


class AuthenticationError(PowerPlatformError):
    """Raised when an access token cannot be acquired."""


class PowerPlatformAPIError(PowerPlatformError):
    """
    Raised when a Web API request fails.

    Covers both non-2xx responses and transport-level failures; status_code is
    None for the latter.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

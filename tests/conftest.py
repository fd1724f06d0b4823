"""
Shared fixtures for PowerPlatform MCP tests.

HTTP traffic goes through httpx.MockTransport; the OAuth credential is a
MagicMock returning azure-core AccessToken tuples.
"""

import time
from unittest.mock import MagicMock

import httpx
import pytest
from azure.core.credentials import AccessToken

from powerplatform_mcp.config import PowerPlatformConfig
from powerplatform_mcp.service import PowerPlatformService

ORG_URL = "https://contoso.crm.dynamics.com"

TEST_ENV = {
    "POWERPLATFORM_URL": ORG_URL,
    "POWERPLATFORM_CLIENT_ID": "client-id",
    "POWERPLATFORM_CLIENT_SECRET": "client-secret",
    "POWERPLATFORM_TENANT_ID": "tenant-id",
}


class RecordingHandler:
    """MockTransport handler that records requests and serves canned routes."""

    def __init__(self, routes=None, status_code=200):
        self.routes = routes or {}
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, payload in self.routes.items():
            if request.url.path.endswith(suffix):
                return httpx.Response(self.status_code, json=payload)
        return httpx.Response(404, json={"error": {"message": "Resource not found"}})

    @property
    def paths(self):
        return [request.url.path for request in self.requests]


@pytest.fixture
def config():
    return PowerPlatformConfig(
        organization_url=ORG_URL,
        client_id="client-id",
        client_secret="client-secret",
        tenant_id="tenant-id",
    )


@pytest.fixture
def credential():
    cred = MagicMock()
    cred.get_token.return_value = AccessToken("token-1", int(time.time()) + 3600)
    return cred


@pytest.fixture
def make_service(config, credential):
    """Build a service whose requests are answered by a RecordingHandler."""
    def factory(routes=None, status_code=200):
        handler = RecordingHandler(routes, status_code)
        service = PowerPlatformService(
            config,
            credential=credential,
            transport=httpx.MockTransport(handler),
        )
        return service, handler
    return factory

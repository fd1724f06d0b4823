"""
PowerPlatform (Dataverse) Web API service.

Wraps the OData v4 endpoints used by the MCP tools. Each public method issues
one authenticated GET (get_entity_relationships issues two concurrently) and
returns the reshaped JSON.

Authentication uses the OAuth client-credentials flow through azure-identity.
The bearer token is cached on the instance and refreshed five minutes before
it expires.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from azure.identity import ClientSecretCredential

from .config import AUTHORITY_HOST, PowerPlatformConfig
from .errors import AuthenticationError, PowerPlatformAPIError

logger = logging.getLogger(__name__)

API_PATH = "api/data/v9.2"

# Seconds subtracted from the token expiry so it is refreshed early
TOKEN_REFRESH_MARGIN = 5 * 60

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RECORDS = 50

ODATA_HEADERS = {
    "Accept": "application/json",
    "OData-MaxVersion": "4.0",
    "OData-Version": "4.0",
}

ONE_TO_MANY_FIELDS = [
    "SchemaName",
    "RelationshipType",
    "ReferencedAttribute",
    "ReferencedEntity",
    "ReferencingAttribute",
    "ReferencingEntity",
    "ReferencedEntityNavigationPropertyName",
    "ReferencingEntityNavigationPropertyName",
]

MANY_TO_MANY_FIELDS = [
    "SchemaName",
    "RelationshipType",
    "Entity1LogicalName",
    "Entity2LogicalName",
    "Entity1IntersectAttribute",
    "Entity2IntersectAttribute",
    "Entity1NavigationPropertyName",
    "Entity2NavigationPropertyName",
]

# Same unreserved set as JavaScript's encodeURIComponent
_QUERY_SAFE = "-_.!~*'()"

# $select is a comma-separated list; its separators stay literal
_SELECT_SAFE = _QUERY_SAFE + ","


def odata_query(options: Dict[str, Any]) -> str:
    """
    Build an OData query string from system query options.

    Args:
        options: Option names without the '$' prefix, e.g. {"top": 5}

    Returns:
        Query string without the leading '?'
    """
    parts = []
    for name, value in options.items():
        safe = _SELECT_SAFE if name == "select" else _QUERY_SAFE
        parts.append(f"${name}={quote(str(value), safe=safe)}")
    return "&".join(parts)


def _entity_definition(entity_name: str) -> str:
    return f"{API_PATH}/EntityDefinitions(LogicalName='{entity_name}')"


def filter_lookup_name_attributes(attributes: list) -> list:
    """
    Drop the derived '<lookup>name' attributes from an attribute list.

    Dataverse emits '<lookup>name' and '<lookup>yominame' companions for each
    lookup. Wherever a '<prefix>yominame' attribute is present, '<prefix>name'
    is removed. Order is preserved.
    """
    prefixes = {
        attr.get("LogicalName", "")[: -len("yominame")]
        for attr in attributes
        if attr.get("LogicalName", "").endswith("yominame")
    }
    return [
        attr for attr in attributes
        if not _is_derived_name(attr.get("LogicalName", ""), prefixes)
    ]


def _is_derived_name(logical_name: str, prefixes: set) -> bool:
    if logical_name.endswith("yominame") or not logical_name.endswith("name"):
        return False
    return logical_name[: -len("name")] in prefixes


def filter_regarding_relationships(relationships: list) -> list:
    """Drop one-to-many relationships on the polymorphic 'regardingobjectid' lookup."""
    return [
        rel for rel in relationships
        if not (rel.get("ReferencingAttribute") or "").lower().startswith("regardingobjectid")
    ]


class PowerPlatformService:
    """
    Client for the Dataverse Web API.

    A single instance is shared by all tool calls; the only state it carries
    is the cached access token.
    """

    def __init__(
        self,
        config: PowerPlatformConfig,
        credential: Optional[Any] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the service.

        Args:
            config: Connection settings
            credential: Object with get_token(scope) (default: ClientSecretCredential)
            transport: httpx transport override, used by tests
            timeout: Request timeout in seconds
        """
        self.config = config
        self.credential = credential or ClientSecretCredential(
            tenant_id=config.tenant_id,
            client_id=config.client_id,
            client_secret=config.client_secret,
            authority=AUTHORITY_HOST,
        )
        self._transport = transport
        self._timeout = timeout
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0
        logger.debug("Token authority: %s", config.authority)

    async def get_access_token(self) -> str:
        """Return a bearer token, acquiring a new one if the cached one is stale."""
        if self._access_token and self._token_expires_at > time.time():
            return self._access_token

        try:
            result = await asyncio.to_thread(self.credential.get_token, self.config.scope)
        except Exception as e:
            logger.error("Error acquiring access token: %s", e)
            raise AuthenticationError("Authentication failed") from e

        if not result or not getattr(result, "token", None):
            logger.error("Error acquiring access token: empty token returned")
            raise AuthenticationError("Authentication failed")

        self._access_token = result.token
        self._token_expires_at = result.expires_on - TOKEN_REFRESH_MARGIN
        return self._access_token

    async def make_request(self, endpoint: str) -> Any:
        """
        Make an authenticated GET request to the Web API.

        Args:
            endpoint: Path relative to the organization URL

        Returns:
            Parsed JSON response

        Raises:
            AuthenticationError: If no token could be acquired
            PowerPlatformAPIError: If the request or response failed
        """
        token = await self.get_access_token()
        url = f"{self.config.organization_url}/{endpoint}"
        headers = {"Authorization": f"Bearer {token}", **ODATA_HEADERS}

        logger.debug("GET %s", url)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("PowerPlatform API request failed: %s", e)
            raise PowerPlatformAPIError(
                f"PowerPlatform API request failed: {e}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("PowerPlatform API request failed: %s", e)
            raise PowerPlatformAPIError(f"PowerPlatform API request failed: {e}") from e

    async def get_entity_metadata(self, entity_name: str) -> Dict[str, Any]:
        """Get metadata about an entity, without its privilege list."""
        response = await self.make_request(_entity_definition(entity_name))
        if isinstance(response, dict):
            response.pop("Privileges", None)
        return response

    async def get_entity_attributes(self, entity_name: str) -> Dict[str, Any]:
        """Get the non-virtual attribute names of an entity."""
        query = odata_query({"select": "LogicalName", "filter": "AttributeType ne 'Virtual'"})
        response = await self.make_request(f"{_entity_definition(entity_name)}/Attributes?{query}")
        if isinstance(response, dict) and isinstance(response.get("value"), list):
            response["value"] = filter_lookup_name_attributes(response["value"])
        return response

    async def get_entity_attribute(self, entity_name: str, attribute_name: str) -> Dict[str, Any]:
        """Get the full definition of a single attribute."""
        return await self.make_request(
            f"{_entity_definition(entity_name)}/Attributes(LogicalName='{attribute_name}')"
        )

    async def get_entity_one_to_many_relationships(self, entity_name: str) -> Dict[str, Any]:
        query = odata_query({"select": ",".join(ONE_TO_MANY_FIELDS)})
        response = await self.make_request(
            f"{_entity_definition(entity_name)}/OneToManyRelationships?{query}"
        )
        if isinstance(response, dict) and isinstance(response.get("value"), list):
            response["value"] = filter_regarding_relationships(response["value"])
        return response

    async def get_entity_many_to_one_relationships(self, entity_name: str) -> Dict[str, Any]:
        """Get the relationships in which the entity holds the lookup."""
        query = odata_query({"select": ",".join(ONE_TO_MANY_FIELDS)})
        return await self.make_request(
            f"{_entity_definition(entity_name)}/ManyToOneRelationships?{query}"
        )

    async def get_entity_many_to_many_relationships(self, entity_name: str) -> Dict[str, Any]:
        query = odata_query({"select": ",".join(MANY_TO_MANY_FIELDS)})
        return await self.make_request(
            f"{_entity_definition(entity_name)}/ManyToManyRelationships?{query}"
        )

    async def get_entity_relationships(self, entity_name: str) -> Dict[str, Any]:
        """Get one-to-many and many-to-many relationships, fetched concurrently."""
        one_to_many, many_to_many = await asyncio.gather(
            self.get_entity_one_to_many_relationships(entity_name),
            self.get_entity_many_to_many_relationships(entity_name),
        )
        return {"oneToMany": one_to_many, "manyToMany": many_to_many}

    async def get_global_option_set(self, option_set_name: str) -> Dict[str, Any]:
        return await self.make_request(
            f"{API_PATH}/GlobalOptionSetDefinitions(Name='{option_set_name}')"
        )

    async def get_record(self, entity_name_plural: str, record_id: str) -> Dict[str, Any]:
        """
        Get a single record by ID.

        Args:
            entity_name_plural: Entity set name (e.g. 'accounts')
            record_id: Record GUID
        """
        return await self.make_request(f"{API_PATH}/{entity_name_plural}({record_id})")

    async def query_records(
        self,
        entity_name_plural: str,
        filter: str,
        max_records: int = DEFAULT_MAX_RECORDS,
    ) -> Dict[str, Any]:
        """
        Query records with an OData filter expression.

        Args:
            entity_name_plural: Entity set name (e.g. 'accounts')
            filter: OData $filter expression
            max_records: Value for $top (default: 50)
        """
        query = odata_query({"filter": filter, "top": max_records})
        return await self.make_request(f"{API_PATH}/{entity_name_plural}?{query}")

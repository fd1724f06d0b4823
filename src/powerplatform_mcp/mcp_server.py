"""
MCP Server exposing PowerPlatform (Dataverse) metadata and records.

Built on the official MCP Python SDK (FastMCP). Every tool performs a read-only
Web API call through PowerPlatformService and returns text:
- Entity metadata, attributes and relationships
- Global option sets
- Single records and filtered record queries
- Prompt templates describing an entity for an assistant

Error handling is uniform: any failure (missing configuration, authentication,
HTTP) is logged and returned to the caller as "Failed to ...: <error>".

Transports: stdio (for Claude Desktop and other local MCP clients) and
streamable HTTP (served with uvicorn).
"""

import json
import logging
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from .config import PowerPlatformConfig
from .prompts import (
    PROMPT_TEMPLATES,
    build_attribute_details,
    build_entity_overview,
    build_query_template,
    build_relationship_map,
)
from .service import DEFAULT_MAX_RECORDS, PowerPlatformService

logger = logging.getLogger(__name__)

SERVER_NAME = "powerplatform-mcp"


mcp = FastMCP(
    SERVER_NAME,
    instructions="""
    PowerPlatform MCP Server providing read-only access to a Dataverse environment:
    - Entity metadata, attributes and relationships
    - Global option set definitions
    - Record lookup by ID and OData-filtered record queries
    - Prompt templates summarizing entities, attributes and relationships
    """
)


_service: Optional[PowerPlatformService] = None


def get_powerplatform_service() -> PowerPlatformService:
    """
    Get or create the shared PowerPlatformService.

    Configuration is read from the environment on first use.

    Raises:
        ConfigurationError: If any required environment variable is unset
    """
    global _service
    if _service is None:
        config = PowerPlatformConfig.from_env()
        config.validate()
        _service = PowerPlatformService(config)
        logger.info("PowerPlatform service initialized for %s", config.organization_url)
    return _service


def reset_powerplatform_service() -> None:
    """Drop the shared service so the next call re-reads configuration."""
    global _service
    _service = None


def _format_result(title: str, data: Any) -> str:
    return f"{title}:\n\n{json.dumps(data, indent=2)}"


def _failure(action: str, error: Exception) -> str:
    logger.error("Error trying to %s: %s", action, error)
    return f"Failed to {action}: {error}"


@mcp.tool(name="get-entity-metadata")
async def get_entity_metadata(entity_name: str) -> str:
    """
    Get metadata about a PowerPlatform entity.

    Args:
        entity_name: The logical name of the entity (e.g. 'account')
    """
    try:
        metadata = await get_powerplatform_service().get_entity_metadata(entity_name)
        return _format_result(f"Entity metadata for '{entity_name}'", metadata)
    except Exception as e:
        return _failure("get entity metadata", e)


@mcp.tool(name="get-entity-attributes")
async def get_entity_attributes(entity_name: str) -> str:
    """
    Get attributes/fields of a PowerPlatform entity.

    Derived lookup-name attributes are left out of the list.

    Args:
        entity_name: The logical name of the entity
    """
    try:
        attributes = await get_powerplatform_service().get_entity_attributes(entity_name)
        return _format_result(f"Attributes for entity '{entity_name}'", attributes)
    except Exception as e:
        return _failure("get entity attributes", e)


@mcp.tool(name="get-entity-attribute")
async def get_entity_attribute(entity_name: str, attribute_name: str) -> str:
    """
    Get the full definition of a single attribute of a PowerPlatform entity.

    Args:
        entity_name: The logical name of the entity
        attribute_name: The logical name of the attribute
    """
    try:
        attribute = await get_powerplatform_service().get_entity_attribute(entity_name, attribute_name)
        return _format_result(f"Attribute '{attribute_name}' for entity '{entity_name}'", attribute)
    except Exception as e:
        return _failure("get entity attribute", e)


@mcp.tool(name="get-entity-relationships")
async def get_entity_relationships(entity_name: str) -> str:
    """
    Get the one-to-many and many-to-many relationships of a PowerPlatform entity.

    Args:
        entity_name: The logical name of the entity
    """
    try:
        relationships = await get_powerplatform_service().get_entity_relationships(entity_name)
        return _format_result(f"Relationships for entity '{entity_name}'", relationships)
    except Exception as e:
        return _failure("get entity relationships", e)


@mcp.tool(name="get-global-option-set")
async def get_global_option_set(option_set_name: str) -> str:
    """
    Get a global option set definition by name.

    Args:
        option_set_name: The name of the global option set
    """
    try:
        option_set = await get_powerplatform_service().get_global_option_set(option_set_name)
        return _format_result(f"Global option set '{option_set_name}'", option_set)
    except Exception as e:
        return _failure("get global option set", e)


@mcp.tool(name="get-record")
async def get_record(entity_name_plural: str, record_id: str) -> str:
    """
    Get a specific record by entity set name and ID.

    Args:
        entity_name_plural: The plural (entity set) name, e.g. 'accounts'
        record_id: The GUID of the record
    """
    try:
        record = await get_powerplatform_service().get_record(entity_name_plural, record_id)
        return _format_result(f"Record from '{entity_name_plural}' with ID '{record_id}'", record)
    except Exception as e:
        return _failure("get record", e)


@mcp.tool(name="query-records")
async def query_records(
    entity_name_plural: str,
    filter: str,
    max_records: int = DEFAULT_MAX_RECORDS,
) -> str:
    """
    Query records using an OData filter expression.

    Args:
        entity_name_plural: The plural (entity set) name, e.g. 'accounts'
        filter: OData filter expression, e.g. "name eq 'Contoso'"
        max_records: Maximum number of records to return (default: 50)
    """
    try:
        records = await get_powerplatform_service().query_records(
            entity_name_plural, filter, max_records
        )
        count = len(records.get("value", [])) if isinstance(records, dict) else 0
        return _format_result(
            f"Retrieved {count} records from '{entity_name_plural}' with filter '{filter}'",
            records,
        )
    except Exception as e:
        return _failure("query records", e)


async def render_prompt(
    prompt_type: str,
    entity_name: str,
    attribute_name: Optional[str] = None,
) -> str:
    """
    Fetch the data a prompt needs and fill its template.

    Raises:
        ValueError: For an unknown prompt type, or ATTRIBUTE_DETAILS without attribute_name
    """
    if prompt_type not in PROMPT_TEMPLATES:
        raise ValueError(
            f"Unknown prompt type '{prompt_type}'. Use one of: {', '.join(PROMPT_TEMPLATES)}"
        )
    service = get_powerplatform_service()

    if prompt_type == "ENTITY_OVERVIEW":
        metadata = await service.get_entity_metadata(entity_name)
        attributes = await service.get_entity_attributes(entity_name)
        return build_entity_overview(entity_name, metadata, attributes)

    if prompt_type == "ATTRIBUTE_DETAILS":
        if not attribute_name:
            raise ValueError("attribute_name is required for ATTRIBUTE_DETAILS")
        attribute = await service.get_entity_attribute(entity_name, attribute_name)
        return build_attribute_details(entity_name, attribute_name, attribute)

    if prompt_type == "QUERY_TEMPLATE":
        metadata = await service.get_entity_metadata(entity_name)
        return build_query_template(entity_name, metadata)

    # Sequential after the concurrent pair, so no more than two requests are in flight
    relationships = await service.get_entity_relationships(entity_name)
    many_to_one = await service.get_entity_many_to_one_relationships(entity_name)
    return build_relationship_map(entity_name, relationships, many_to_one)


@mcp.tool(name="use-powerplatform-prompt")
async def use_powerplatform_prompt(
    prompt_type: str,
    entity_name: str,
    attribute_name: Optional[str] = None,
) -> str:
    """
    Use a predefined prompt template to describe a PowerPlatform entity.

    Args:
        prompt_type: One of ENTITY_OVERVIEW, ATTRIBUTE_DETAILS, QUERY_TEMPLATE,
            RELATIONSHIP_MAP. Other values are reported as a failure.
        entity_name: The logical name of the entity
        attribute_name: The logical name of the attribute (ATTRIBUTE_DETAILS only)
    """
    try:
        return await render_prompt(prompt_type, entity_name, attribute_name)
    except Exception as e:
        return _failure("use PowerPlatform prompt", e)


# MCP prompts (prompts/list, prompts/get) backed by the same templates

@mcp.prompt(name="entity-overview", description="Overview of a PowerPlatform entity")
async def entity_overview_prompt(entity_name: str) -> str:
    try:
        return await render_prompt("ENTITY_OVERVIEW", entity_name)
    except Exception as e:
        return _failure("build entity overview", e)


@mcp.prompt(name="attribute-details", description="Details of a PowerPlatform entity attribute")
async def attribute_details_prompt(entity_name: str, attribute_name: str) -> str:
    try:
        return await render_prompt("ATTRIBUTE_DETAILS", entity_name, attribute_name)
    except Exception as e:
        return _failure("build attribute details", e)


@mcp.prompt(name="query-template", description="OData query template for a PowerPlatform entity")
async def query_template_prompt(entity_name: str) -> str:
    try:
        return await render_prompt("QUERY_TEMPLATE", entity_name)
    except Exception as e:
        return _failure("build query template", e)


@mcp.prompt(name="relationship-map", description="Relationship map of a PowerPlatform entity")
async def relationship_map_prompt(entity_name: str) -> str:
    try:
        return await render_prompt("RELATIONSHIP_MAP", entity_name)
    except Exception as e:
        return _failure("build relationship map", e)


def run_server():
    """Run the MCP server with stdio transport (default for MCP)."""
    mcp.run(transport="stdio")


def run_http_server(host: str = "0.0.0.0", port: int = 8080):
    """Run the MCP server with streamable HTTP transport."""
    import uvicorn
    # FastMCP.run() doesn't accept host/port for streamable-http, so serve the ASGI app directly
    app = mcp.streamable_http_app()
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    run_server()

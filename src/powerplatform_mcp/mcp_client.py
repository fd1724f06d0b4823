"""
MCP Client for the PowerPlatform MCP server.

Uses the official MCP Python SDK over the streamable HTTP transport, so it
talks to the server exactly as any other MCP client would (tools/list,
tools/call). Tool results are returned as the text the server produced.

Useful for smoke-testing a deployed server:

    client = get_mcp_client("http://localhost:8080")
    print(client.get_entity_metadata("account"))
"""

import asyncio
import concurrent.futures
import os
from typing import Any, Dict, List, Optional

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError


# Default MCP server URL - configurable via environment variable
DEFAULT_MCP_URL = os.environ.get("MCP_SERVER_URL", "http://localhost:8080/mcp")


class PowerPlatformMCPClient:
    """
    MCP Client for the PowerPlatform tools.

    Each call opens a short-lived session; the tool list is cached.
    """

    def __init__(self, base_url: str = DEFAULT_MCP_URL):
        """
        Initialize the MCP client.

        Args:
            base_url: URL of the MCP server endpoint (default: http://localhost:8080/mcp)
        """
        self.url = base_url.rstrip("/")
        if not self.url.endswith("/mcp"):
            self.url = f"{self.url}/mcp"
        self._tools_cache: Optional[List[Dict[str, Any]]] = None

    @property
    def base_url(self) -> str:
        return self.url.rsplit("/mcp", 1)[0]

    async def _run_session(self, callback):
        """Run an async callback within an initialized MCP session."""
        async with streamablehttp_client(self.url) as (read_stream, write_stream, _):
            async with ClientSession(read_stream, write_stream) as session:
                await session.initialize()
                try:
                    return await callback(session)
                except McpError as e:
                    raise MCPError(e.error.code, e.error.message, e.error.data) from e

    def _run_sync(self, coro):
        """Run an async coroutine synchronously."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coro)
        # Already inside an event loop: run on a separate thread
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()

    async def list_tools_async(self) -> List[Dict[str, Any]]:
        async def get_tools(session: ClientSession):
            result = await session.list_tools()
            return [
                {
                    "name": tool.name,
                    "description": tool.description or "",
                    "inputSchema": tool.inputSchema or {},
                }
                for tool in result.tools
            ]
        return await self._run_session(get_tools)

    async def call_tool_async(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        async def call(session: ClientSession):
            result = await session.call_tool(name, arguments or {})
            return extract_text(name, result)
        return await self._run_session(call)

    def list_tools(self, use_cache: bool = True) -> List[Dict[str, Any]]:
        """
        List available tools from the MCP server.

        Args:
            use_cache: Whether to use the cached tools list

        Returns:
            List of tool definitions with name, description and input schema
        """
        if use_cache and self._tools_cache is not None:
            return self._tools_cache

        tools = self._run_sync(self.list_tools_async())
        self._tools_cache = tools
        return tools

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """
        Call a tool on the MCP server via tools/call.

        Args:
            name: Name of the tool to call
            arguments: Arguments to pass to the tool

        Returns:
            Text of the first content item

        Raises:
            MCPToolError: If the tool execution failed (isError: true)
        """
        return self._run_sync(self.call_tool_async(name, arguments))

    # Convenience methods for the PowerPlatform tools

    def get_entity_metadata(self, entity_name: str) -> str:
        return self.call_tool("get-entity-metadata", {"entity_name": entity_name})

    def get_entity_attributes(self, entity_name: str) -> str:
        return self.call_tool("get-entity-attributes", {"entity_name": entity_name})

    def get_entity_attribute(self, entity_name: str, attribute_name: str) -> str:
        return self.call_tool("get-entity-attribute", {
            "entity_name": entity_name,
            "attribute_name": attribute_name,
        })

    def get_entity_relationships(self, entity_name: str) -> str:
        return self.call_tool("get-entity-relationships", {"entity_name": entity_name})

    def get_global_option_set(self, option_set_name: str) -> str:
        return self.call_tool("get-global-option-set", {"option_set_name": option_set_name})

    def get_record(self, entity_name_plural: str, record_id: str) -> str:
        return self.call_tool("get-record", {
            "entity_name_plural": entity_name_plural,
            "record_id": record_id,
        })

    def query_records(self, entity_name_plural: str, filter: str, max_records: int = 50) -> str:
        return self.call_tool("query-records", {
            "entity_name_plural": entity_name_plural,
            "filter": filter,
            "max_records": max_records,
        })

    def use_prompt(
        self,
        prompt_type: str,
        entity_name: str,
        attribute_name: Optional[str] = None,
    ) -> str:
        """Render one of the server's prompt templates through the use-powerplatform-prompt tool."""
        args = {"prompt_type": prompt_type, "entity_name": entity_name}
        if attribute_name is not None:
            args["attribute_name"] = attribute_name
        return self.call_tool("use-powerplatform-prompt", args)


def extract_text(tool_name: str, result: Any) -> str:
    """
    Pull the text out of a CallToolResult.

    Raises:
        MCPToolError: If the result is flagged as an error
    """
    content = result.content or []
    text = next((item.text for item in content if hasattr(item, "text")), None)
    if result.isError:
        raise MCPToolError(tool_name, text or "Tool execution failed")
    return text or ""


class MCPError(Exception):
    """JSON-RPC error from the server, e.g. an unknown method or invalid params."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"MCP Error {code}: {message}")


class MCPToolError(Exception):
    """A tools/call result flagged isError; message is the text the server returned."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        self.message = message
        super().__init__(f"Tool '{tool_name}' failed: {message}")


# Singleton client instance
_client: Optional[PowerPlatformMCPClient] = None


def get_mcp_client(base_url: str = DEFAULT_MCP_URL) -> PowerPlatformMCPClient:
    """
    Get or create a singleton MCP client.

    Args:
        base_url: URL of the MCP server

    Returns:
        PowerPlatformMCPClient instance
    """
    global _client
    if _client is None or _client.url != PowerPlatformMCPClient(base_url).url:
        _client = PowerPlatformMCPClient(base_url)
    return _client

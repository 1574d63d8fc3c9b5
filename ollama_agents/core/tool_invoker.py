"""ollama_agents/core/tool_invoker.py

MCP client wrapper: lists the tool catalog and executes tools by name.

The invoker talks to the tool server either in-process (a ``FastMCP``
instance, used by tests and single-process deployments) or over stdio
(a subprocess launched from settings).
"""

from __future__ import annotations

# Standard Library
import dataclasses
import logging
from typing import Any

# Third-Party Libraries
from fastmcp import Client, FastMCP
from fastmcp.client.transports import StdioTransport

# Local Modules
from ollama_agents.core.errors import ToolCatalogError, ToolExecutionError
from ollama_agents.core.settings import AgentSettings

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class ToolSpec:
    """A catalog entry as advertised by the MCP server."""

    name: str
    description: str
    input_schema: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


def extract_text_content(content: list[Any]) -> str:
    """Join every text fragment of an MCP result with newlines.

    Non-text fragments (images, embedded resources) are ignored.
    """
    parts: list[str] = []
    for item in content or []:
        item_type = getattr(item, "type", None)
        if item_type is None and isinstance(item, dict):
            item_type = item.get("type")
        if item_type != "text":
            continue
        text = getattr(item, "text", None)
        if text is None and isinstance(item, dict):
            text = item.get("text", "")
        parts.append(text or "")
    return "\n".join(parts)


class ToolInvoker:
    """Executes MCP tools and exposes the tool catalog."""

    def __init__(self, client: Client) -> None:
        self.client = client

    @classmethod
    def in_process(cls, server: FastMCP) -> ToolInvoker:
        """Build an invoker bound to a server running in this process."""
        return cls(Client(server))

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> ToolInvoker:
        """Build an invoker that spawns the tool server over stdio."""
        transport = StdioTransport(
            command=settings.mcp_server_command,
            args=list(settings.mcp_server_args),
            env={"SERVICE_BASE_URL": settings.service_base_url},
        )
        return cls(Client(transport))

    async def __aenter__(self) -> ToolInvoker:
        await self.client.__aenter__()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.client.__aexit__(exc_type, exc, tb)

    async def list_tools(self) -> list[ToolSpec]:
        """Fetch the current tool catalog.

        Raises:
            ToolCatalogError: If the MCP server cannot be reached.
        """
        try:
            async with self.client:
                tools = await self.client.list_tools()
        except Exception as exc:
            logger.error("[tool_invoker] list_tools failed: %s", exc, exc_info=True)
            raise ToolCatalogError(f"Failed to list tools: {exc}") from exc

        return [
            ToolSpec(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {}),
            )
            for tool in tools
        ]

    async def call_tool(self, name: str, args: dict[str, Any] | None = None) -> str:
        """Execute a tool and return its text output.

        Args:
            name: Tool name as advertised in the catalog.
            args: Tool arguments.

        Returns:
            Every text fragment of the result joined with newlines.

        Raises:
            ToolExecutionError: On transport failure or a tool-reported error.
        """
        logger.info("[tool_invoker] call tool=%s args=%s", name, args)
        try:
            async with self.client:
                result = await self.client.call_tool(name, args or {})
        except Exception as exc:
            logger.error("[tool_invoker] tool=%s failed: %s", name, exc)
            raise ToolExecutionError(name, str(exc)) from exc

        # Older fastmcp releases return the content list directly.
        content = getattr(result, "content", result)
        text = extract_text_content(content)
        logger.info("[tool_invoker] tool=%s -> %d chars", name, len(text))
        return text

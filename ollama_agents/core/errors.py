"""ollama_agents/core/errors.py

Exception hierarchy shared by the gateway, tool invoker, pipeline and agents.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by the orchestration core."""


class ToolPermissionError(BridgeError):
    """An agent tried to call a tool that is not on its allow-list."""

    def __init__(self, tool_name: str, agent_name: str) -> None:
        self.tool_name = tool_name
        self.agent_name = agent_name
        super().__init__(f"Tool {tool_name} is not available to agent {agent_name}")


class ToolExecutionError(BridgeError):
    """The tool backend failed while executing a named tool."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Failed to execute tool {tool_name}: {message}")


class ToolCatalogError(BridgeError):
    """The tool catalog could not be fetched from the MCP server."""


class AnalysisParseError(BridgeError):
    """The model's tool-selection output was not valid structured JSON."""


class GatewayError(BridgeError):
    """The language-model backend is unreachable or returned an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class MisrouteError(BridgeError):
    """An agent received a request it does not consider part of its domain."""

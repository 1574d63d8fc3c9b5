"""tests/conftest.py

Pytest configuration and shared fixtures for the ollama_agents test suite.
"""

from __future__ import annotations

# Standard Library
from unittest.mock import AsyncMock, Mock

# Third-Party Libraries
import pytest

# Local Modules
from ollama_agents.core.gateway import OllamaGateway
from ollama_agents.core.tool_invoker import ToolInvoker, ToolSpec


@pytest.fixture
def sample_catalog() -> list[ToolSpec]:
    """Tool catalog as advertised by the tool server.

    Returns:
        One ToolSpec per tool, with minimal parameter schemas.
    """

    def _schema(*names: str) -> dict:
        return {"type": "object", "properties": {name: {"type": "string"} for name in names}}

    return [
        ToolSpec("get_datetime", "Get the current date and time", _schema("format", "timezone")),
        ToolSpec("calculator", "Perform mathematical calculations", _schema("expression", "operation")),
        ToolSpec("weather_info", "Get weather information", _schema("location", "units")),
        ToolSpec("url_utilities", "URL operations", _schema("operation", "url")),
        ToolSpec("query_custom_service", "Query the custom service", _schema("endpoint")),
        ToolSpec("execute_query", "Execute a database query", _schema("query")),
        ToolSpec("service_health", "Check service health", _schema()),
    ]


@pytest.fixture
def mock_gateway() -> Mock:
    """Create a mock language-model gateway.

    Returns:
        Mock gateway whose ``chat`` answers with a fixed string.
    """
    gateway = Mock(spec=OllamaGateway)
    gateway.model = "test-model"
    gateway.chat = AsyncMock(return_value="This is a test response from the mock LLM.")
    gateway.list_models = AsyncMock(return_value=[{"name": "test-model"}])
    return gateway


@pytest.fixture
def mock_invoker(sample_catalog: list[ToolSpec]) -> Mock:
    """Create a mock MCP tool invoker.

    Returns:
        Mock invoker serving ``sample_catalog`` and echoing tool names.
    """
    invoker = Mock(spec=ToolInvoker)
    invoker.list_tools = AsyncMock(return_value=sample_catalog)

    async def _call_tool(name: str, args: dict | None = None) -> str:
        return f"{name} output"

    invoker.call_tool = AsyncMock(side_effect=_call_tool)
    return invoker

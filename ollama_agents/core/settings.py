"""ollama_agents/core/settings.py

Runtime configuration loaded from environment variables / .env file.

Configure via environment variables:
  OLLAMA_BASE_URL        - native Ollama endpoint (no /v1 suffix)
  OLLAMA_MODEL           - default model for analysis and synthesis
  REQUEST_TIMEOUT        - seconds before a gateway call is abandoned
  MCP_SERVER_COMMAND     - executable that launches the MCP tool server
  MCP_SERVER_ARGS        - JSON list of arguments for that executable
  SERVICE_BASE_URL       - base URL of the custom service the tools query
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """Settings for the gateway, tool invoker, agents and HTTP API.

    Attributes:
        ollama_base_url: Native Ollama API base URL.
        ollama_model: Model tag used when a caller does not pick one.
        request_timeout: Timeout (seconds) for every gateway request.
        mcp_server_command: Executable used to spawn the stdio MCP server.
        mcp_server_args: Arguments passed to ``mcp_server_command``.
        service_base_url: Base URL forwarded to the tool server.
        max_context_messages: Rolling window size of each conversation.
        prompt_history_messages: History turns rendered into agent prompts.
        routing_threshold: Minimum confidence for domain routing.
        api_host: Bind address of the HTTP API.
        api_port: Port of the HTTP API.
        cors_origins: Origins allowed to call the HTTP API.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ollama_base_url: str = Field(
        "http://127.0.0.1:11434",
        description="Native Ollama API base URL.",
    )
    ollama_model: str = Field(
        "gemma3:4b",
        description="Default model for tool analysis and answer synthesis.",
    )
    request_timeout: float = Field(
        10.0,
        description="Seconds before a gateway request times out.",
    )
    mcp_server_command: str = Field(
        "python",
        description="Executable that launches the MCP tool server over stdio.",
    )
    mcp_server_args: list[str] = Field(
        default_factory=lambda: ["-m", "ollama_agents.servers.tool_server"],
        description="Arguments for the MCP server command.",
    )
    service_base_url: str = Field(
        "http://localhost:3000",
        description="Custom service queried by the HTTP-backed tools.",
    )
    max_context_messages: int = Field(
        20,
        description="Maximum messages kept per conversation (FIFO eviction).",
    )
    prompt_history_messages: int = Field(
        10,
        description="Most recent history turns rendered into agent prompts.",
    )
    routing_threshold: float = Field(
        0.6,
        description="Confidence below which requests go to general processing.",
    )
    api_host: str = Field("0.0.0.0", description="HTTP API bind address.")
    api_port: int = Field(8300, description="HTTP API port.")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by the CORS middleware.",
    )


def load_settings() -> AgentSettings:
    """Build a fresh settings object from the current environment."""
    return AgentSettings()

"""ollama_agents/runtime.py

Wires settings, gateway, tool invoker, pipeline and routing manager
together for the CLI and the HTTP API.
"""

from __future__ import annotations

# Standard Library
import dataclasses
import logging

# Local Modules
from ollama_agents.agents.manager import RoutingManager, build_default_agents
from ollama_agents.core.gateway import OllamaGateway
from ollama_agents.core.pipeline import ToolSelectionPipeline
from ollama_agents.core.settings import AgentSettings, load_settings
from ollama_agents.core.tool_invoker import ToolInvoker

logger = logging.getLogger(__name__)


@dataclasses.dataclass(slots=True)
class Runtime:
    settings: AgentSettings
    gateway: OllamaGateway
    invoker: ToolInvoker
    pipeline: ToolSelectionPipeline
    manager: RoutingManager


def build_runtime(settings: AgentSettings | None = None, in_process: bool = False) -> Runtime:
    """Build every component from ``settings``.

    Args:
        settings: Configuration. Loaded from the environment when omitted.
        in_process: Serve tools from this process instead of spawning the
            stdio tool server.
    """
    settings = settings or load_settings()
    gateway = OllamaGateway(
        host=settings.ollama_base_url,
        model=settings.ollama_model,
        timeout=settings.request_timeout,
    )
    if in_process:
        from ollama_agents.servers.tool_server import mcp

        invoker = ToolInvoker.in_process(mcp)
    else:
        invoker = ToolInvoker.from_settings(settings)

    pipeline = ToolSelectionPipeline(gateway, invoker)
    agents = build_default_agents(
        gateway,
        invoker,
        max_messages=settings.max_context_messages,
        prompt_history=settings.prompt_history_messages,
    )
    manager = RoutingManager(
        gateway,
        invoker,
        pipeline=pipeline,
        agents=agents,
        threshold=settings.routing_threshold,
    )
    logger.info(
        "[runtime] model=%s ollama=%s tools=%s",
        settings.ollama_model,
        settings.ollama_base_url,
        "in-process" if in_process else settings.mcp_server_command,
    )
    return Runtime(settings, gateway, invoker, pipeline, manager)

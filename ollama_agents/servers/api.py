"""
ollama_agents/servers/api.py

FastAPI HTTP interface for the routing manager, the agents and the tools.

Endpoints:
  GET    /api/health                    - liveness probe plus tool-server status
  GET    /api/agents                    - registered agents
  GET    /api/tools                     - MCP tool catalog
  POST   /api/tools/{name}              - call one tool directly
  POST   /api/chat                      - general tool-selection pipeline
  POST   /api/chat/agent                - routed chat (auto or explicit agent)
  POST   /api/agents/{name}/chat        - chat with one agent, no routing
  GET    /api/agents/{name}/history     - conversation history of one agent
  DELETE /api/agents/{name}/context     - forget one conversation of one agent
  GET    /api/ollama/models             - models installed on the Ollama host
"""

from __future__ import annotations

import datetime
import logging
from typing import Any

import uvicorn
from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ollama_agents.core.errors import BridgeError, ToolCatalogError
from ollama_agents.core.settings import load_settings
from ollama_agents.runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)

WEB_CONVERSATION_ID = "web-session"

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="The user message.")
    model: str | None = Field(None, description="Override the default model.")


class AgentChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="The user message.")
    conversationId: str | None = Field(None, description="Conversation to continue.")
    agent: str | None = Field(None, description="Agent to use instead of auto-routing.")


def _now() -> str:
    return datetime.datetime.now(datetime.UTC).isoformat()


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the API around ``runtime`` (built from settings when omitted)."""
    runtime = runtime or build_runtime()
    manager = runtime.manager

    app = FastAPI(
        title="Ollama MCP Agents",
        version="0.1.0",
        description="Routes chat requests to specialised agents backed by MCP tools.",
    )
    app.state.runtime = runtime
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(runtime.settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health", tags=["meta"])
    async def health() -> dict[str, Any]:
        """Liveness probe. Never fails when the tool server is down."""
        body: dict[str, Any] = {
            "status": "ok",
            "success": True,
            "timestamp": _now(),
            "agents": manager.get_available_agents(),
        }
        try:
            await runtime.invoker.list_tools()
            body["mcpConnected"] = True
        except ToolCatalogError as exc:
            body["mcpConnected"] = False
            body["error"] = str(exc)
        return body

    @app.get("/api/agents", tags=["agents"])
    async def list_agents() -> dict[str, Any]:
        agents = manager.get_available_agents()
        return {"success": True, "agents": agents, "count": len(agents)}

    @app.get("/api/tools", tags=["tools"])
    async def list_tools() -> Any:
        try:
            tools = await runtime.invoker.list_tools()
        except ToolCatalogError as exc:
            return _error(502, str(exc))
        return {
            "success": True,
            "tools": [tool.to_dict() for tool in tools],
            "count": len(tools),
        }

    @app.post("/api/tools/{name}", tags=["tools"])
    async def call_tool(name: str, args: dict[str, Any] | None = None) -> Any:
        """Call one tool directly; the JSON body is the argument object."""
        args = args or {}
        logger.info("[api] direct tool call %s %s", name, args)
        try:
            result = await runtime.invoker.call_tool(name, args)
        except BridgeError as exc:
            return _error(500, str(exc), toolName=name, args=args)
        return {
            "success": True,
            "result": result,
            "toolName": name,
            "args": args,
            "timestamp": _now(),
        }

    @app.post("/api/chat", tags=["chat"])
    async def chat(body: ChatRequest) -> Any:
        """General tool-selection pipeline, no agent routing."""
        try:
            result = await runtime.pipeline.run(body.message, model=body.model)
        except BridgeError as exc:
            logger.error("[api] chat failed: %s", exc)
            return _error(502, str(exc))
        return {
            "success": True,
            "response": result.response,
            "toolsUsed": result.tools_used,
            "failedTools": result.failed_tools,
            "model": body.model or runtime.settings.ollama_model,
            "timestamp": _now(),
        }

    @app.post("/api/chat/agent", tags=["chat"])
    async def chat_agent(body: AgentChatRequest) -> dict[str, Any]:
        """Routed chat. The body mirrors the routing result field for field."""
        conversation_id = body.conversationId or WEB_CONVERSATION_ID
        result = await manager.route_message(body.message, conversation_id, body.agent)
        return {
            "success": True,
            **result.to_dict(),
            "conversationId": conversation_id,
            "timestamp": _now(),
        }

    @app.post("/api/agents/{name}/chat", tags=["agents"])
    async def chat_with_agent(name: str, body: AgentChatRequest) -> Any:
        agent = manager.get_agent(name)
        if agent is None:
            return _error(404, f"Agent '{name}' not found")
        conversation_id = body.conversationId or f"{name}-session"
        try:
            async with agent.conversation_lock(conversation_id):
                result = await agent.process_request(body.message, conversation_id)
        except Exception as exc:
            logger.error("[api] agent %s failed: %s", name, exc, exc_info=True)
            return _error(500, str(exc), agentName=name)
        return {
            "success": True,
            "response": result.response,
            "agentUsed": name,
            "toolsUsed": result.tools_used,
            "conversationId": conversation_id,
            "context": result.context.to_dict(),
            "timestamp": _now(),
        }

    @app.get("/api/agents/{name}/history", tags=["agents"])
    async def agent_history(
        name: str, conversation_id: str = Query("default", alias="conversationId")
    ) -> Any:
        if manager.get_agent(name) is None:
            return _error(404, f"Agent '{name}' not found")
        history = manager.get_agent_history(name, conversation_id)
        return {
            "success": True,
            "history": [message.to_dict() for message in history],
            "agentName": name,
            "conversationId": conversation_id,
            "messageCount": len(history),
        }

    @app.delete("/api/agents/{name}/context", tags=["agents"])
    async def clear_agent_context(
        name: str, conversation_id: str = Query("default", alias="conversationId")
    ) -> Any:
        if not manager.clear_agent_context(name, conversation_id):
            return _error(404, f"Agent '{name}' not found")
        return {
            "success": True,
            "message": "History cleared successfully",
            "agentName": name,
            "conversationId": conversation_id,
        }

    @app.get("/api/ollama/models", tags=["meta"])
    async def ollama_models() -> Any:
        try:
            models = await runtime.gateway.list_models()
        except BridgeError as exc:
            return _error(502, str(exc))
        return {
            "success": True,
            "models": models,
            "defaultModel": runtime.settings.ollama_model,
        }

    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_api() -> None:
    """Start the FastAPI server via uvicorn."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = load_settings()
    logger.info("Starting ollama-agents API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(
        "ollama_agents.servers.api:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
        reload=False,
    )


if __name__ == "__main__":
    run_api()

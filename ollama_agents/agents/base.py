"""ollama_agents/agents/base.py

Shared contract for specialised agents.

Every agent owns a :class:`ConversationStore`, an allow-list of tool names
(``"*"`` permits every tool) and a system prompt.  Concrete agents only
implement :meth:`BaseAgent.process_request`.

Error contract:
  * Recoverable failures while doing the agent's own work (a tool error, a
    permission error, the model being unreachable) are answered with an
    apology so routing still credits the agent.
  * :class:`~ollama_agents.core.errors.MisrouteError` (or any unexpected
    exception) propagates; the routing manager treats it as a miss-route and
    falls back to general processing.
"""

from __future__ import annotations

# Standard Library
import abc
import asyncio
import dataclasses
import logging
from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

# Local Modules
from ollama_agents.core.errors import ToolPermissionError
from ollama_agents.core.gateway import OllamaGateway
from ollama_agents.core.memory import (
    DEFAULT_CONVERSATION_ID,
    DEFAULT_MAX_MESSAGES,
    ConversationContext,
    ConversationStore,
    Message,
    Role,
)
from ollama_agents.core.tool_invoker import ToolInvoker

logger = logging.getLogger(__name__)

WILDCARD_TOOL: str = "*"
PROMPT_HISTORY_MESSAGES: int = 10


@dataclasses.dataclass(slots=True)
class AgentResult:
    """What an agent returns for one request."""

    response: str
    tools_used: list[str]
    context: ConversationContext


@runtime_checkable
class Agent(Protocol):
    """Capabilities the routing manager relies on."""

    name: str
    description: str

    async def process_request(
        self,
        message: str,
        conversation_id: str = DEFAULT_CONVERSATION_ID,
        context: dict[str, Any] | None = None,
    ) -> AgentResult: ...

    def get_info(self) -> dict[str, Any]: ...

    async def execute_tool(self, tool_name: str, args: dict[str, Any]) -> str: ...

    def clear_context(self, conversation_id: str = DEFAULT_CONVERSATION_ID) -> None: ...

    def get_conversation_history(
        self, conversation_id: str = DEFAULT_CONVERSATION_ID
    ) -> list[Message]: ...

    def conversation_lock(self, conversation_id: str) -> asyncio.Lock: ...


class BaseAgent(abc.ABC):
    """Conversation memory, tool permissions and prompt assembly for agents."""

    def __init__(
        self,
        name: str,
        description: str,
        system_prompt: str,
        allowed_tools: Iterable[str],
        gateway: OllamaGateway,
        invoker: ToolInvoker,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        prompt_history: int = PROMPT_HISTORY_MESSAGES,
    ) -> None:
        """Initialize the agent.

        Args:
            name: Display name of the agent.
            description: One-line summary used for discovery and prompts.
            system_prompt: Instructions placed at the top of every prompt.
            allowed_tools: Tool names this agent may call; ``"*"`` for all.
            gateway: Language-model gateway.
            invoker: MCP tool invoker.
            max_messages: Rolling window size per conversation.
            prompt_history: History turns rendered into prompts.
        """
        self.name = name
        self.description = description
        self.system_prompt = system_prompt
        self.allowed_tools: tuple[str, ...] = tuple(allowed_tools)
        self.gateway = gateway
        self.invoker = invoker
        self.prompt_history = prompt_history
        self.store = ConversationStore(max_messages=max_messages)
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def process_request(
        self,
        message: str,
        conversation_id: str = DEFAULT_CONVERSATION_ID,
        context: dict[str, Any] | None = None,
    ) -> AgentResult:
        """Answer ``message`` within ``conversation_id``.

        Implementations must record the user turn before doing any work and
        the assistant turn (with the tools used) before returning.
        """

    # ------------------------------------------------------------------
    # Conversation memory
    # ------------------------------------------------------------------

    def get_or_create_context(
        self, conversation_id: str = DEFAULT_CONVERSATION_ID
    ) -> ConversationContext:
        return self.store.get_or_create_context(conversation_id)

    def add_message(
        self,
        conversation_id: str,
        role: Role | str,
        content: str,
        tools_used: list[str] | None = None,
    ) -> Message:
        return self.store.add_message(conversation_id, role, content, tools_used)

    def clear_context(self, conversation_id: str = DEFAULT_CONVERSATION_ID) -> None:
        self.store.clear_context(conversation_id)
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]

    def get_conversation_history(
        self, conversation_id: str = DEFAULT_CONVERSATION_ID
    ) -> list[Message]:
        return self.store.get_conversation_history(conversation_id)

    def conversation_lock(self, conversation_id: str) -> asyncio.Lock:
        """Lock serialising requests that share a conversation id."""
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def is_tool_available(self, tool_name: str) -> bool:
        return tool_name in self.allowed_tools or WILDCARD_TOOL in self.allowed_tools

    async def execute_tool(self, tool_name: str, args: dict[str, Any]) -> str:
        """Run a tool on behalf of this agent.

        Raises:
            ToolPermissionError: If the tool is not on the allow-list.  The
                invoker is never reached in that case.
            ToolExecutionError: If the tool backend fails.
        """
        if not self.is_tool_available(tool_name):
            raise ToolPermissionError(tool_name, self.name)
        logger.info("[%s] executing tool %s", self.name, tool_name)
        return await self.invoker.call_tool(tool_name, args)

    # ------------------------------------------------------------------
    # Prompting
    # ------------------------------------------------------------------

    def create_enhanced_prompt(
        self,
        user_message: str,
        context: ConversationContext,
        include_history: bool = True,
    ) -> str:
        """Assemble the standard agent prompt.

        Sections, in order: system prompt, recent history (optional), the
        current request, the allowed tools, and the agent's role.
        """
        prompt = self.system_prompt + "\n\n"

        if include_history and self.prompt_history > 0 and context.messages:
            prompt += "Conversation History:\n"
            for msg in context.messages[-self.prompt_history:]:
                tool_info = (
                    f" (used tools: {', '.join(msg.tools_used)})" if msg.tools_used else ""
                )
                prompt += f"{msg.role.value.upper()}: {msg.content}{tool_info}\n"
            prompt += "\n"

        prompt += f"Current Request: {user_message}\n\n"
        prompt += f"Available Tools: {', '.join(self.allowed_tools)}\n"
        prompt += f"Agent Role: {self.name} - {self.description}"
        return prompt

    def get_info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "availableTools": list(self.allowed_tools),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, tools={self.allowed_tools!r})"

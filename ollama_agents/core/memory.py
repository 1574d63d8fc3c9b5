"""ollama_agents/core/memory.py

Per-conversation rolling context windows owned by a single agent.
Each conversation id keeps the last N messages plus free-form metadata.
"""

from __future__ import annotations

# Standard Library
import dataclasses
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

DEFAULT_CONVERSATION_ID: str = "default"
DEFAULT_MAX_MESSAGES: int = 20


class Role(StrEnum):
    """Speaker of a stored conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclasses.dataclass(frozen=True, slots=True)
class Message:
    """One immutable turn in a conversation.

    Attributes:
        role: Who produced the turn.
        content: The message text.
        timestamp: When the turn was recorded (UTC).
        tools_used: Tool names invoked while producing an assistant turn,
            or ``None`` when no tools were involved.
    """

    role: Role
    content: str
    timestamp: datetime
    tools_used: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render the message with the camelCase keys used on the wire."""
        data: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tools_used is not None:
            data["toolsUsed"] = list(self.tools_used)
        return data


@dataclasses.dataclass(slots=True)
class ConversationContext:
    """Ordered message history and metadata for one conversation id."""

    conversation_id: str
    messages: list[Message] = dataclasses.field(default_factory=list)
    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "messages": [message.to_dict() for message in self.messages],
            "metadata": dict(self.metadata),
        }


class ConversationStore:
    """Rolling context windows keyed by conversation id.

    Every conversation keeps at most ``max_messages`` turns; appending past
    the limit evicts the oldest turn first. A store belongs to exactly one
    agent and is only mutated through that agent.
    """

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES) -> None:
        """Initialize an empty store.

        Args:
            max_messages: Maximum number of messages retained per
                conversation (default 20).
        """
        self.max_messages = max_messages
        self._contexts: dict[str, ConversationContext] = {}

    def get_or_create_context(
        self, conversation_id: str = DEFAULT_CONVERSATION_ID
    ) -> ConversationContext:
        """Return the context for ``conversation_id``, creating it if needed."""
        context = self._contexts.get(conversation_id)
        if context is None:
            context = ConversationContext(conversation_id=conversation_id)
            self._contexts[conversation_id] = context
        return context

    def add_message(
        self,
        conversation_id: str,
        role: Role | str,
        content: str,
        tools_used: list[str] | tuple[str, ...] | None = None,
    ) -> Message:
        """Append a turn to a conversation and enforce the rolling window.

        Args:
            conversation_id: Target conversation.
            role: ``"user"`` or ``"assistant"``.
            content: The message text. Must not be ``None``.
            tools_used: Tools invoked while producing this turn.

        Returns:
            The stored message.

        Raises:
            ValueError: If ``content`` is ``None`` or ``role`` is unknown.
        """
        if content is None:
            raise ValueError("Message content must not be None")

        message = Message(
            role=Role(role),
            content=content,
            timestamp=datetime.now(timezone.utc),
            tools_used=tuple(tools_used) if tools_used is not None else None,
        )
        context = self.get_or_create_context(conversation_id)
        context.messages.append(message)

        # Keep only the last max_messages (FIFO)
        overflow = len(context.messages) - self.max_messages
        if overflow > 0:
            del context.messages[:overflow]

        return message

    def clear_context(self, conversation_id: str = DEFAULT_CONVERSATION_ID) -> None:
        """Drop a conversation entirely; the next access starts fresh."""
        self._contexts.pop(conversation_id, None)

    def get_conversation_history(
        self, conversation_id: str = DEFAULT_CONVERSATION_ID
    ) -> list[Message]:
        """Return a copy of a conversation's messages (empty if unknown)."""
        context = self._contexts.get(conversation_id)
        return list(context.messages) if context else []

    def conversation_ids(self) -> list[str]:
        return list(self._contexts)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._contexts

    def __len__(self) -> int:
        return len(self._contexts)

"""ollama_agents/agents/manager.py

Routing manager: decides which agent answers a message.

Routing is keyword scoring over a fixed, ordered set of domains.  A domain
whose score clears the threshold is handed to its registered agent; a
domain without an agent, or no match at all, goes through the general
tool-selection pipeline.  An agent that raises is treated as a miss-route
and the request is retried on the general path.

Adding a domain:
    1. Append a :class:`DomainRule` to ``DOMAIN_RULES`` (order is priority).
    2. Register an agent under the rule's ``agent_name``.
"""

from __future__ import annotations

# Standard Library
import dataclasses
import datetime
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any, Final

# Local Modules
from ollama_agents.agents.base import Agent
from ollama_agents.agents.calculator import CalculatorAgent
from ollama_agents.agents.weather import WeatherAgent
from ollama_agents.core.gateway import OllamaGateway
from ollama_agents.core.memory import DEFAULT_CONVERSATION_ID, ConversationContext, Message
from ollama_agents.core.pipeline import ToolSelectionPipeline
from ollama_agents.core.tool_invoker import ToolInvoker

logger = logging.getLogger(__name__)

GENERAL_AGENT: Final[str] = "general"
ERROR_AGENT: Final[str] = "error"
GENERAL_CONFIDENCE: Final[float] = 0.5
DEFAULT_THRESHOLD: Final[float] = 0.6
MAX_CONFIDENCE: Final[float] = 0.99
# Bonus per keyword hit beyond the first.
HIT_BONUS: Final[float] = 0.02


@dataclasses.dataclass(frozen=True, slots=True)
class RoutingDecision:
    agent_name: str
    confidence: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentName": self.agent_name,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclasses.dataclass(slots=True)
class RoutingResult:
    """Reply plus the routing metadata that produced it."""

    response: str
    agent_used: str
    tools_used: list[str]
    routing: RoutingDecision
    context: ConversationContext

    def to_dict(self) -> dict[str, Any]:
        return {
            "response": self.response,
            "agentUsed": self.agent_used,
            "toolsUsed": list(self.tools_used),
            "routing": self.routing.to_dict(),
            "context": self.context.to_dict(),
        }


@dataclasses.dataclass(frozen=True, slots=True)
class DomainRule:
    """Keywords and patterns that vote for one domain."""

    agent_name: str
    base_confidence: float
    keywords: tuple[str, ...]
    reason: str
    patterns: tuple[re.Pattern[str], ...] = ()

    def count_hits(self, lowered: str) -> int:
        hits = sum(
            1 for keyword in self.keywords if re.search(rf"\b{re.escape(keyword)}\b", lowered)
        )
        hits += sum(1 for pattern in self.patterns if pattern.search(lowered))
        return hits

    def score(self, lowered: str) -> float:
        hits = self.count_hits(lowered)
        if not hits:
            return 0.0
        return min(self.base_confidence + HIT_BONUS * (hits - 1), MAX_CONFIDENCE)


DOMAIN_RULES: Final[tuple[DomainRule, ...]] = (
    DomainRule(
        agent_name="weather",
        base_confidence=0.9,
        keywords=(
            "weather", "temperature", "rain", "snow", "sunny", "cloudy", "forecast",
            "climate", "humidity", "wind", "storm", "cold", "hot", "celsius",
            "fahrenheit", "degrees",
        ),
        reason="Message contains weather-related keywords",
    ),
    DomainRule(
        agent_name="calculator",
        base_confidence=0.85,
        keywords=(
            "calculate", "math", "factorial", "fibonacci", "prime", "addition",
            "subtraction", "multiplication", "division", "equals", "sum", "product",
            "plus", "minus",
        ),
        reason="Message contains mathematical expressions or keywords",
        patterns=(re.compile(r"\d\s*[-+*/^%]\s*\d"),),
    ),
    DomainRule(
        agent_name="database",
        base_confidence=0.8,
        keywords=(
            "query", "database", "select", "users", "table", "sql", "data", "records",
            "search", "find",
        ),
        reason="Message contains database-related keywords",
    ),
    DomainRule(
        agent_name="api",
        base_confidence=0.75,
        keywords=(
            "api", "service", "endpoint", "call", "request", "health", "status",
            "server", "connection",
        ),
        reason="Message contains API/service-related keywords",
    ),
)


def build_default_agents(
    gateway: OllamaGateway, invoker: ToolInvoker, **agent_kwargs: Any
) -> dict[str, Agent]:
    """The stock registry: weather and calculator agents."""
    return {
        "weather": WeatherAgent(gateway, invoker, **agent_kwargs),
        "calculator": CalculatorAgent(gateway, invoker, **agent_kwargs),
    }


def _now_iso() -> str:
    return datetime.datetime.now(datetime.UTC).isoformat()


class RoutingManager:
    """Routes messages to agents, falling back to the general pipeline."""

    def __init__(
        self,
        gateway: OllamaGateway,
        invoker: ToolInvoker,
        pipeline: ToolSelectionPipeline | None = None,
        agents: Mapping[str, Agent] | None = None,
        threshold: float = DEFAULT_THRESHOLD,
        rules: Iterable[DomainRule] = DOMAIN_RULES,
    ) -> None:
        """Initialize the manager.

        Args:
            gateway: Language-model gateway shared with the agents.
            invoker: MCP tool invoker shared with the agents.
            pipeline: General-path pipeline. Built from gateway and invoker
                when omitted.
            agents: Agent registry. Defaults to :func:`build_default_agents`.
            threshold: Minimum domain score for a non-general decision.
            rules: Ordered domain rules; earlier rules win ties.
        """
        self.gateway = gateway
        self.invoker = invoker
        self.pipeline = pipeline or ToolSelectionPipeline(gateway, invoker)
        self.agents: dict[str, Agent] = dict(
            agents if agents is not None else build_default_agents(gateway, invoker)
        )
        self.threshold = threshold
        self.rules: tuple[DomainRule, ...] = tuple(rules)
        logger.info("[router] registered agents: %s", ", ".join(self.agents) or "none")

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def analyze_and_route(self, message: str) -> RoutingDecision:
        """Score every domain and pick the strongest one.

        Ties go to the earlier rule. Scores below the threshold yield a
        ``general`` decision.
        """
        lowered = message.lower()
        best_rule: DomainRule | None = None
        best_score = 0.0
        for rule in self.rules:
            score = rule.score(lowered)
            if score > best_score:
                best_rule, best_score = rule, score

        if best_rule is None or best_score < self.threshold:
            return RoutingDecision(
                agent_name=GENERAL_AGENT,
                confidence=GENERAL_CONFIDENCE,
                reason=(
                    "No domain matched strongly enough "
                    f"(best score {best_score:.2f} < {self.threshold:.2f})"
                ),
            )
        return RoutingDecision(
            agent_name=best_rule.agent_name,
            confidence=round(best_score, 2),
            reason=best_rule.reason,
        )

    async def route_message(
        self,
        message: str,
        conversation_id: str | None = None,
        explicit_agent: str | None = None,
    ) -> RoutingResult:
        """Answer ``message`` with the best agent.

        Args:
            message: User input.
            conversation_id: Conversation to continue. Defaults to ``"default"``.
            explicit_agent: Registered agent to use regardless of content.
                Unknown names are ignored.

        Returns:
            The reply with the agent used, the tools run and the routing
            decision. Never raises for agent or model failures.
        """
        cid = conversation_id or DEFAULT_CONVERSATION_ID

        if explicit_agent and explicit_agent in self.agents:
            routing = RoutingDecision(explicit_agent, 1.0, "Explicitly requested")
        else:
            if explicit_agent:
                logger.warning(
                    "[router] unknown agent %r requested; routing by content", explicit_agent
                )
            routing = self.analyze_and_route(message)

        agent = self.agents.get(routing.agent_name)
        if agent is None:
            return await self._handle_general(message, cid, routing)

        logger.info(
            "[router] -> %s (confidence %.2f): %s",
            routing.agent_name,
            routing.confidence,
            routing.reason,
        )
        try:
            async with agent.conversation_lock(cid):
                result = await agent.process_request(message, cid)
        except Exception as exc:
            logger.warning(
                "[router] %s agent failed, falling back to general: %s",
                routing.agent_name,
                exc,
                exc_info=True,
            )
            fallback = RoutingDecision(
                agent_name=GENERAL_AGENT,
                confidence=GENERAL_CONFIDENCE,
                reason=f"Fallback due to {routing.agent_name} agent error: {exc}",
            )
            return await self._handle_general(message, cid, fallback)

        return RoutingResult(
            response=result.response,
            agent_used=routing.agent_name,
            tools_used=list(result.tools_used),
            routing=routing,
            context=result.context,
        )

    async def _handle_general(
        self, message: str, conversation_id: str, routing: RoutingDecision
    ) -> RoutingResult:
        """Run the general pipeline; failures become a natural-language reply."""
        logger.info("[router] using general pipeline (%s)", routing.reason)
        try:
            result = await self.pipeline.run(message)
        except Exception as exc:
            logger.error("[router] general processing failed: %s", exc, exc_info=True)
            return RoutingResult(
                response=f"I encountered an error processing your request: {exc}",
                agent_used=ERROR_AGENT,
                tools_used=[],
                routing=routing,
                context=ConversationContext(
                    conversation_id, [], {"error": True, "timestamp": _now_iso()}
                ),
            )
        return RoutingResult(
            response=result.response,
            agent_used=GENERAL_AGENT,
            tools_used=list(result.tools_used),
            routing=routing,
            context=ConversationContext(conversation_id, [], {"timestamp": _now_iso()}),
        )

    async def process_batch(self, requests: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Route several requests one after another.

        Each request is a mapping with ``message`` and optional
        ``conversationId`` and ``agent`` keys. A failing item is reported in
        place and does not stop the batch.
        """
        results: list[dict[str, Any]] = []
        for item in requests:
            message = item.get("message", "")
            try:
                result = await self.route_message(
                    message, item.get("conversationId"), item.get("agent")
                )
            except Exception as exc:
                logger.error("[router] batch item failed: %s", exc, exc_info=True)
                results.append(
                    {
                        "request": message,
                        "response": f"Error: {exc}",
                        "agentUsed": ERROR_AGENT,
                        "toolsUsed": [],
                        "routing": RoutingDecision(ERROR_AGENT, 0.0, "Processing error").to_dict(),
                    }
                )
                continue
            results.append(
                {
                    "request": message,
                    "response": result.response,
                    "agentUsed": result.agent_used,
                    "toolsUsed": list(result.tools_used),
                    "routing": result.routing.to_dict(),
                }
            )
        return results

    # ------------------------------------------------------------------
    # Registry access
    # ------------------------------------------------------------------

    def get_available_agents(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "name": agent.name,
                "description": agent.description,
                "tools": agent.get_info()["availableTools"],
            }
            for name, agent in self.agents.items()
        }

    def get_agent(self, name: str) -> Agent | None:
        return self.agents.get(name)

    def clear_agent_context(
        self, name: str, conversation_id: str = DEFAULT_CONVERSATION_ID
    ) -> bool:
        """Drop one conversation of one agent. False if the agent is unknown."""
        agent = self.agents.get(name)
        if agent is None:
            return False
        agent.clear_context(conversation_id)
        return True

    def get_agent_history(
        self, name: str, conversation_id: str = DEFAULT_CONVERSATION_ID
    ) -> list[Message]:
        agent = self.agents.get(name)
        if agent is None:
            return []
        return agent.get_conversation_history(conversation_id)

"""ollama_agents/agents/calculator.py

Calculator agent: arithmetic, factorials, Fibonacci numbers and primality.
"""

from __future__ import annotations

# Standard Library
import logging
from typing import Any

# Local Modules
from ollama_agents.agents.base import AgentResult, BaseAgent
from ollama_agents.core.errors import BridgeError, MisrouteError
from ollama_agents.core.gateway import OllamaGateway
from ollama_agents.core.memory import DEFAULT_CONVERSATION_ID, Role
from ollama_agents.core.pipeline import calculator_call
from ollama_agents.core.tool_invoker import ToolInvoker

logger = logging.getLogger(__name__)

CALCULATOR_SYSTEM_PROMPT: str = """You are a Calculator Agent, specialized in mathematics.

Your capabilities include:
- Evaluating arithmetic expressions
- Computing factorials and Fibonacci numbers
- Checking whether a number is prime

The calculation has already been performed with the calculator tool. Explain the
result clearly and briefly, showing the steps when they help. Never invent a
different result than the one provided."""


class CalculatorAgent(BaseAgent):
    """Runs calculations with the calculator tool and explains the result."""

    def __init__(self, gateway: OllamaGateway, invoker: ToolInvoker, **kwargs: Any) -> None:
        super().__init__(
            name="CalculatorAgent",
            description="Specialized agent for arithmetic and number-theory calculations",
            system_prompt=CALCULATOR_SYSTEM_PROMPT,
            allowed_tools=("calculator",),
            gateway=gateway,
            invoker=invoker,
            **kwargs,
        )

    @staticmethod
    def parse_calculation(message: str) -> dict[str, Any]:
        """Turn ``message`` into calculator tool arguments.

        Raises:
            MisrouteError: If the message contains nothing to calculate.
        """
        call = calculator_call(message.lower())
        args = call.args
        if args["operation"] == "evaluate" and not args["expression"]:
            raise MisrouteError("No calculable expression found in request")
        if args["operation"] != "evaluate" and "number" not in args:
            raise MisrouteError(f"No number given for {args['operation']}")
        return args

    async def process_request(
        self,
        message: str,
        conversation_id: str = DEFAULT_CONVERSATION_ID,
        context: dict[str, Any] | None = None,
    ) -> AgentResult:
        # Raised before the turn is stored so a miss-route leaves no history.
        args = self.parse_calculation(message)

        agent_context = self.get_or_create_context(conversation_id)
        self.add_message(conversation_id, Role.USER, message)
        if context:
            agent_context.metadata.update(context)

        tools_used: list[str] = []
        try:
            logger.info("[CalculatorAgent] %s", args)
            result = await self.execute_tool("calculator", args)
            tools_used.append("calculator")
            prompt = self.create_enhanced_prompt(message, agent_context)
            prompt += (
                f"\n\nCalculation Result:\n{result}\n\n"
                "Please explain this result to the user:"
            )
            response = await self.gateway.chat(prompt)
        except BridgeError as exc:
            logger.error("[CalculatorAgent] request failed: %s", exc)
            response = (
                "I apologize, but I encountered an error while calculating: "
                f"{exc}. Please check the expression and try again."
            )

        self.add_message(conversation_id, Role.ASSISTANT, response, tools_used or None)
        return AgentResult(response=response, tools_used=tools_used, context=agent_context)

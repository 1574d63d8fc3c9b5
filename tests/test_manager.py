"""tests/test_manager.py

Unit tests for RoutingManager (ollama_agents/agents/manager.py):
domain scoring, explicit override, fallback and conversation isolation.
"""

from __future__ import annotations

# Standard Library
import asyncio
import json
from unittest.mock import AsyncMock, Mock, patch

# Third-Party Libraries
import pytest

# Local Modules
from ollama_agents.agents.manager import RoutingDecision, RoutingManager, RoutingResult
from ollama_agents.core.errors import GatewayError
from ollama_agents.core.memory import ConversationContext, Role

NO_TOOLS = json.dumps({"needsTools": False, "toolCalls": []})


@pytest.fixture
def manager(mock_gateway: Mock, mock_invoker: Mock) -> RoutingManager:
    return RoutingManager(mock_gateway, mock_invoker)


class TestAnalyzeAndRoute:
    """Test suite for keyword scoring."""

    def test_weather_message(self, manager: RoutingManager) -> None:
        """Test a single weather keyword scores the weather base."""
        decision = manager.analyze_and_route("What is the weather in Tokyo?")
        assert decision == RoutingDecision(
            "weather", 0.9, "Message contains weather-related keywords"
        )

    def test_no_keywords_is_general(self, manager: RoutingManager) -> None:
        """Test messages without keywords route to general at 0.5."""
        decision = manager.analyze_and_route("Tell me a joke")
        assert decision.agent_name == "general"
        assert decision.confidence == 0.5
        assert decision.reason.startswith("No domain matched strongly enough")

    def test_extra_hits_raise_confidence(self, manager: RoutingManager) -> None:
        """Test each extra hit adds a small bonus."""
        decision = manager.analyze_and_route("weather forecast with rain")
        assert decision.agent_name == "weather"
        assert decision.confidence == pytest.approx(0.94)

    def test_confidence_capped(self, manager: RoutingManager) -> None:
        """Test confidence never exceeds 0.99."""
        decision = manager.analyze_and_route(
            "weather temperature rain snow sunny cloudy forecast climate humidity wind"
        )
        assert decision.confidence == pytest.approx(0.99)

    def test_arithmetic_pattern(self, manager: RoutingManager) -> None:
        """Test a bare expression routes to the calculator."""
        decision = manager.analyze_and_route("What is 12 * 4?")
        assert decision.agent_name == "calculator"
        assert decision.confidence == pytest.approx(0.85)

    def test_strongest_domain_wins(self, manager: RoutingManager) -> None:
        """Test a domain with more hits beats a higher base with fewer hits."""
        decision = manager.analyze_and_route("calculate the sum and product, math: 3 + 4. hot")
        assert decision.agent_name == "calculator"

    def test_database_and_api_domains(self, manager: RoutingManager) -> None:
        """Test the unregistered domains still score."""
        assert manager.analyze_and_route("Show me the users table").agent_name == "database"
        assert manager.analyze_and_route("check the service health").agent_name == "api"

    def test_keywords_match_whole_words(self, manager: RoutingManager) -> None:
        """Test keywords inside other words do not count."""
        assert manager.analyze_and_route("What is the capital of France?").agent_name == (
            "general"
        )

    def test_threshold_is_configurable(self, mock_gateway: Mock, mock_invoker: Mock) -> None:
        """Test a higher threshold sends weak matches to general."""
        strict = RoutingManager(mock_gateway, mock_invoker, threshold=0.95)
        assert strict.analyze_and_route("weather in Rome").agent_name == "general"


class TestRouteMessage:
    """Test suite for RoutingManager.route_message."""

    @pytest.mark.asyncio
    async def test_weather_scenario(self, manager: RoutingManager) -> None:
        """Test a weather question is answered by the weather agent."""
        result = await manager.route_message("What is the weather in Tokyo?", "c1")

        assert result.agent_used == "weather"
        assert "weather_info" in result.tools_used
        assert result.routing.confidence == pytest.approx(0.9)
        assert result.context.conversation_id == "c1"

    @pytest.mark.asyncio
    async def test_joke_scenario(
        self, manager: RoutingManager, mock_gateway: Mock, mock_invoker: Mock
    ) -> None:
        """Test a message with no domain goes through the pipeline without tools."""
        mock_gateway.chat.side_effect = [NO_TOOLS, "Why did the chicken cross the road?"]

        result = await manager.route_message("Tell me a joke")

        assert result.agent_used == "general"
        assert result.tools_used == []
        assert result.response == "Why did the chicken cross the road?"
        assert result.routing.agent_name == "general"
        assert result.routing.confidence == 0.5
        mock_invoker.call_tool.assert_not_called()

    @pytest.mark.asyncio
    async def test_explicit_override(
        self, manager: RoutingManager, mock_gateway: Mock, mock_invoker: Mock
    ) -> None:
        """Test an explicit agent is used regardless of content."""
        result = await manager.route_message("Hello there", "c1", "weather")

        assert result.agent_used == "weather"
        assert result.routing == RoutingDecision("weather", 1.0, "Explicitly requested")
        mock_invoker.call_tool.assert_not_called()
        mock_gateway.chat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_explicit_agent_ignored(
        self, manager: RoutingManager, mock_gateway: Mock
    ) -> None:
        """Test an unknown explicit agent falls back to content routing."""
        mock_gateway.chat.side_effect = [NO_TOOLS, "ok"]

        result = await manager.route_message("Tell me a joke", None, "poet")

        assert result.agent_used == "general"
        assert result.routing.reason != "Explicitly requested"

    @pytest.mark.asyncio
    async def test_agent_failure_falls_back(
        self, mock_gateway: Mock, mock_invoker: Mock
    ) -> None:
        """Test an agent exception is reported as a fallback to general."""
        broken = Mock()
        broken.process_request = AsyncMock(side_effect=RuntimeError("kaput"))
        broken.conversation_lock = Mock(return_value=asyncio.Lock())
        manager = RoutingManager(mock_gateway, mock_invoker, agents={"weather": broken})
        mock_gateway.chat.side_effect = [NO_TOOLS, "general answer"]

        result = await manager.route_message("weather in Paris")

        assert result.agent_used == "general"
        assert result.response == "general answer"
        assert result.routing == RoutingDecision(
            "general", 0.5, "Fallback due to weather agent error: kaput"
        )

    @pytest.mark.asyncio
    async def test_calculator_misroute_falls_back(self, manager: RoutingManager) -> None:
        """Test the calculator declining a request triggers the fallback."""
        result = await manager.route_message("calculate my happiness")

        assert result.agent_used == "general"
        assert result.routing.reason.startswith("Fallback due to calculator agent error")

    @pytest.mark.asyncio
    async def test_unregistered_domain_keeps_decision(
        self, manager: RoutingManager, mock_gateway: Mock
    ) -> None:
        """Test a domain without an agent uses the pipeline and keeps its routing."""
        mock_gateway.chat.side_effect = [NO_TOOLS, "rows"]

        result = await manager.route_message("Show me the users table")

        assert result.agent_used == "general"
        assert result.routing.agent_name == "database"
        assert result.routing.confidence == pytest.approx(0.82)

    @pytest.mark.asyncio
    async def test_pipeline_failure_becomes_error_reply(
        self, manager: RoutingManager, mock_gateway: Mock
    ) -> None:
        """Test an unreachable model yields a natural-language error, not an exception."""
        mock_gateway.chat.side_effect = GatewayError("Failed to communicate with Ollama")

        result = await manager.route_message("Tell me a joke")

        assert result.agent_used == "error"
        assert result.response.startswith("I encountered an error processing your request")
        assert result.context.metadata["error"] is True

    @pytest.mark.asyncio
    async def test_to_dict_shape(self, manager: RoutingManager) -> None:
        """Test the serialised result carries exactly the documented keys."""
        result = await manager.route_message("What is the weather in Tokyo?", "c1")
        data = result.to_dict()

        assert set(data) == {"response", "agentUsed", "toolsUsed", "routing", "context"}
        assert set(data["routing"]) == {"agentName", "confidence", "reason"}
        assert data["context"]["conversationId"] == "c1"
        assert len(data["context"]["messages"]) == 2

    @pytest.mark.asyncio
    async def test_conversations_isolated(self, manager: RoutingManager) -> None:
        """Test histories for different conversation ids never mix."""
        await manager.route_message("weather in Oslo", "a")
        await manager.route_message("weather in Lima", "b")

        history_a = manager.get_agent_history("weather", "a")
        history_b = manager.get_agent_history("weather", "b")
        assert [m.content for m in history_a if m.role is Role.USER] == ["weather in Oslo"]
        assert [m.content for m in history_b if m.role is Role.USER] == ["weather in Lima"]

    @pytest.mark.asyncio
    async def test_same_conversation_serialised(
        self, manager: RoutingManager, mock_gateway: Mock
    ) -> None:
        """Test concurrent requests on one conversation keep request/response order."""

        async def slow_chat(*args, **kwargs) -> str:
            await asyncio.sleep(0.01)
            return "ok"

        mock_gateway.chat.side_effect = slow_chat

        await asyncio.gather(
            manager.route_message("Hello", "c1", "weather"),
            manager.route_message("Hi again", "c1", "weather"),
        )

        roles = [m.role for m in manager.get_agent_history("weather", "c1")]
        assert roles == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]


class TestRegistryAccess:
    """Test suite for registry helpers and batch processing."""

    def test_get_available_agents(self, manager: RoutingManager) -> None:
        """Test the default registry lists weather and calculator."""
        agents = manager.get_available_agents()
        assert set(agents) == {"weather", "calculator"}
        assert agents["weather"]["name"] == "WeatherAgent"
        assert agents["weather"]["tools"] == ["weather_info", "get_datetime"]
        assert agents["calculator"]["tools"] == ["calculator"]

    def test_get_agent(self, manager: RoutingManager) -> None:
        """Test lookup by registry key."""
        assert manager.get_agent("weather") is manager.agents["weather"]
        assert manager.get_agent("missing") is None

    @pytest.mark.asyncio
    async def test_clear_agent_context(self, manager: RoutingManager) -> None:
        """Test clearing returns False for unknown agents."""
        await manager.route_message("Hello", "c1", "weather")

        assert manager.clear_agent_context("weather", "c1") is True
        assert manager.get_agent_history("weather", "c1") == []
        assert manager.clear_agent_context("missing", "c1") is False

    def test_history_of_unknown_agent(self, manager: RoutingManager) -> None:
        """Test unknown agents have an empty history."""
        assert manager.get_agent_history("missing") == []

    @pytest.mark.asyncio
    async def test_process_batch(self, manager: RoutingManager) -> None:
        """Test every request yields one summary in order."""
        results = await manager.process_batch(
            [
                {"message": "What is the weather in Tokyo?", "conversationId": "b1"},
                {"message": "Hello", "agent": "weather"},
            ]
        )

        assert [r["request"] for r in results] == ["What is the weather in Tokyo?", "Hello"]
        assert [r["agentUsed"] for r in results] == ["weather", "weather"]
        assert results[1]["routing"]["confidence"] == 1.0

    @pytest.mark.asyncio
    async def test_process_batch_captures_errors(self, manager: RoutingManager) -> None:
        """Test a failing item is reported without stopping the batch."""
        ok = RoutingResult(
            response="fine",
            agent_used="general",
            tools_used=[],
            routing=RoutingDecision("general", 0.5, "General processing"),
            context=ConversationContext("default"),
        )
        with patch.object(
            manager, "route_message", AsyncMock(side_effect=[RuntimeError("bad"), ok])
        ):
            results = await manager.process_batch([{"message": "one"}, {"message": "two"}])

        assert results[0]["agentUsed"] == "error"
        assert results[0]["response"] == "Error: bad"
        assert results[1]["request"] == "two"

"""ollama_agents/agents/weather.py

Weather agent: current conditions, forecasts and weather-related advice.
Uses the ``weather_info`` tool and, for time-sensitive questions,
``get_datetime``.
"""

from __future__ import annotations

# Standard Library
import dataclasses
import logging
import re
from typing import Any

# Local Modules
from ollama_agents.agents.base import AgentResult, BaseAgent
from ollama_agents.core.errors import BridgeError
from ollama_agents.core.gateway import OllamaGateway
from ollama_agents.core.memory import DEFAULT_CONVERSATION_ID, ConversationContext, Role
from ollama_agents.core.pipeline import mentions
from ollama_agents.core.tool_invoker import ToolInvoker

logger = logging.getLogger(__name__)

WEATHER_SYSTEM_PROMPT: str = """You are a Weather Agent, specialized in providing accurate and helpful weather information.

Your capabilities include:
- Current weather conditions for any location
- Weather forecasts and predictions
- Weather analysis and recommendations
- Travel weather advice
- Weather-related safety information

You have access to weather data through the weather_info tool. When users ask about weather:
1. Extract the location from their request
2. Determine if they want current conditions or forecast
3. Choose appropriate units (metric/imperial) based on location or user preference
4. Use the weather_info tool to get data
5. Provide clear, helpful responses with actionable information

If users don't specify a location, ask them to clarify. Be conversational and friendly while remaining professional."""

_WEATHER_INSTRUCTIONS: str = """Instructions:
1. Use the weather data provided to answer the user's question
2. Be conversational and helpful
3. Provide practical advice based on the weather conditions
4. If it's mock data, you can mention that but still provide useful insights
5. Include relevant details like temperature, conditions, and any recommendations
6. If the user asks about specific times or forecasts, reference the forecast data"""

WEATHER_KEYWORDS: tuple[str, ...] = (
    "weather", "temperature", "rain", "snow", "sunny", "cloudy", "forecast", "climate",
)
US_LOCATIONS: tuple[str, ...] = (
    "usa", "america", "united states", "new york", "los angeles", "chicago", "miami", "texas",
)

# Tried in order; the first capture wins.
_LOCATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"(?:weather|temperature|forecast).*?\b(?:in|for|at)\s+([a-z][a-z\s,]*?)\s*(?:\?|$|\.)",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?:in|for|at)\s+([a-z][a-z\s,]*?)\s+.*?(?:weather|temperature|forecast)",
        re.IGNORECASE,
    ),
    re.compile(r"([a-z][a-z'\s,]*?)\s+(?:weather|temperature|forecast)", re.IGNORECASE),
    # "Will it rain in London tomorrow?": a capitalised place after in/at/for.
    re.compile(r"\b(?:in|for|at)\s+([A-Z][a-zA-Z]*(?:\s+[A-Z][a-zA-Z]*)*)"),
)
_TRAILING_TIME_WORDS: re.Pattern[str] = re.compile(
    r"(?:\s+(?:today|tomorrow|tonight|now|right now|this week|this weekend))+$",
    re.IGNORECASE,
)
# Clauses that follow the place name ("Paris and what should I pack").
_LOCATION_TAIL: re.Pattern[str] = re.compile(
    r"\s+(?:and|in|for|with|but|or|what|should|please|using)\b.*$",
    re.IGNORECASE,
)
# Leading words that the third pattern can swallow ("What's the Tokyo weather").
_LEADING_FILLER: re.Pattern[str] = re.compile(
    r"^(?:(?:what(?:'s| is)?|how(?:'s| is)?|the|is|tell me|show me|give me|current)(?:\s+|$))+",
    re.IGNORECASE,
)

DEFAULT_LOCATION: str = "New York"


@dataclasses.dataclass(slots=True)
class WeatherRequest:
    """Parameters extracted from a weather question."""

    needs_weather_data: bool
    location: str = DEFAULT_LOCATION
    units: str = "metric"
    forecast: bool = False
    needs_time: bool = False


def analyze_weather_request(message: str) -> WeatherRequest:
    """Extract location, units, forecast and timing needs from ``message``."""
    lowered = message.lower()
    if not mentions(lowered, *WEATHER_KEYWORDS):
        return WeatherRequest(needs_weather_data=False)

    location = DEFAULT_LOCATION
    for pattern in _LOCATION_PATTERNS:
        match = pattern.search(message)
        if not match:
            continue
        candidate = _LOCATION_TAIL.sub("", match.group(1).strip(" ,"))
        candidate = _TRAILING_TIME_WORDS.sub("", candidate)
        candidate = _LEADING_FILLER.sub("", candidate).strip(" ,")
        if candidate:
            location = candidate
            break

    if mentions(lowered, "fahrenheit", "imperial") or "°f" in lowered:
        units = "imperial"
    elif mentions(lowered, "kelvin"):
        units = "kelvin"
    elif mentions(lowered, "celsius", "metric") or "°c" in lowered:
        units = "metric"
    elif any(us_location in location.lower() for us_location in US_LOCATIONS):
        units = "imperial"
    else:
        units = "metric"

    return WeatherRequest(
        needs_weather_data=True,
        location=location,
        units=units,
        forecast=mentions(lowered, "forecast", "tomorrow", "week", "days", "will"),
        needs_time=mentions(lowered, "now", "current", "today"),
    )


class WeatherAgent(BaseAgent):
    """Answers weather questions using the weather_info tool."""

    def __init__(self, gateway: OllamaGateway, invoker: ToolInvoker, **kwargs: Any) -> None:
        super().__init__(
            name="WeatherAgent",
            description=(
                "Specialized agent for weather information, forecasts, "
                "and weather-related advice"
            ),
            system_prompt=WEATHER_SYSTEM_PROMPT,
            allowed_tools=("weather_info", "get_datetime"),
            gateway=gateway,
            invoker=invoker,
            **kwargs,
        )

    async def process_request(
        self,
        message: str,
        conversation_id: str = DEFAULT_CONVERSATION_ID,
        context: dict[str, Any] | None = None,
    ) -> AgentResult:
        agent_context = self.get_or_create_context(conversation_id)
        self.add_message(conversation_id, Role.USER, message)
        if context:
            agent_context.metadata.update(context)

        tools_used: list[str] = []
        tool_results = ""
        try:
            params = analyze_weather_request(message)
            if params.needs_weather_data:
                logger.info("[WeatherAgent] getting weather for %s", params.location)
                weather = await self.execute_tool(
                    "weather_info",
                    {
                        "location": params.location,
                        "units": params.units,
                        "forecast": params.forecast,
                    },
                )
                tools_used.append("weather_info")
                tool_results += f"Weather Data:\n{weather}\n\n"

                if params.needs_time:
                    current_time = await self.execute_tool("get_datetime", {"format": "local"})
                    tools_used.append("get_datetime")
                    tool_results += f"Current Time Info:\n{current_time}\n\n"

            prompt = self.create_weather_prompt(message, agent_context, tool_results)
            response = await self.gateway.chat(prompt)
        except BridgeError as exc:
            logger.error("[WeatherAgent] request failed: %s", exc)
            response = (
                "I apologize, but I encountered an error while getting weather "
                f"information: {exc}. Please try again with a specific location."
            )

        self.add_message(conversation_id, Role.ASSISTANT, response, tools_used or None)
        return AgentResult(response=response, tools_used=tools_used, context=agent_context)

    def create_weather_prompt(
        self, user_message: str, context: ConversationContext, tool_results: str
    ) -> str:
        """Standard agent prompt with retrieved weather data and instructions appended."""
        prompt = self.create_enhanced_prompt(user_message, context)
        if tool_results:
            prompt += f"\n\nWeather Information Retrieved:\n{tool_results}"
        prompt += f"\n\n{_WEATHER_INSTRUCTIONS}\n\nPlease provide a helpful response:"
        return prompt

    async def get_weather(
        self,
        location: str,
        units: str = "metric",
        forecast: bool = False,
        conversation_id: str = "direct",
    ) -> str:
        """Fetch raw weather data for ``location`` and log it as a conversation.

        Raises:
            ToolExecutionError: If the weather tool fails.
        """
        result = await self.execute_tool(
            "weather_info", {"location": location, "units": units, "forecast": forecast}
        )
        self.add_message(conversation_id, Role.USER, f"Get weather for {location}")
        self.add_message(conversation_id, Role.ASSISTANT, result, ["weather_info"])
        return result

    async def get_travel_weather_advice(
        self, location: str, conversation_id: str = "travel"
    ) -> AgentResult:
        message = f"What's the weather like in {location} and what should I pack for travel?"
        return await self.process_request(message, conversation_id)

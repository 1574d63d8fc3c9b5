"""ollama_agents/core/pipeline.py

Tool-selection pipeline used for general (un-routed) requests.

Architecture:
  - Analysis: the model receives the tool catalog and the user message and
    must answer with one JSON object:
        {"needsTools": bool, "toolCalls": [{"name", "args", "reason"}]}
    If the model is unreachable or its output cannot be parsed, a
    deterministic keyword/regex selector takes over.
  - Execution: tool calls run one after another in analysis order.  A
    failing call is recorded inline and never aborts the remaining calls.
  - Synthesis: the request plus the accumulated tool output goes back to
    the model, whose reply is returned verbatim.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from typing import Any

from ollama_agents.core.errors import (
    AnalysisParseError,
    GatewayError,
    ToolExecutionError,
)
from ollama_agents.core.gateway import OllamaGateway
from ollama_agents.core.tool_invoker import ToolInvoker, ToolSpec

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class ToolCall:
    """One tool invocation chosen by the analysis step.

    Attributes:
        name: Tool name from the catalog.
        args: Keyword arguments for the tool.
        reason: Why the tool was selected.
    """

    name: str
    args: dict[str, Any]
    reason: str = ""


@dataclasses.dataclass(slots=True)
class ToolAnalysis:
    """Structured output of the analysis step.

    Attributes:
        needs_tools: Whether any tool should run.
        tool_calls: Calls to execute, in order.
        source: ``"llm"`` when parsed from the model, ``"fallback"`` when
            produced by keyword matching.
    """

    needs_tools: bool
    tool_calls: list[ToolCall] = dataclasses.field(default_factory=list)
    source: str = "llm"


@dataclasses.dataclass(slots=True)
class PipelineResult:
    """Outcome of one :meth:`ToolSelectionPipeline.run` call."""

    response: str
    tools_used: list[str] = dataclasses.field(default_factory=list)
    failed_tools: list[str] = dataclasses.field(default_factory=list)
    analysis: ToolAnalysis | None = None


# ---------------------------------------------------------------------------
# Analysis prompt + JSON extraction
# ---------------------------------------------------------------------------

_ANALYSIS_SCHEMA: str = """{
  "needsTools": true/false,
  "toolCalls": [
    {
      "name": "tool_name",
      "args": {"param1": "value1"},
      "reason": "why this tool is needed"
    }
  ]
}"""

_ANALYSIS_RULES: str = (
    "Rules:\n"
    "1. Only use tools that are directly relevant to the user's request\n"
    "2. If asking for current time/date, use get_datetime tool\n"
    "3. If asking about health/status, use service_health tool\n"
    "4. If asking about database queries, use execute_query tool\n"
    "5. If asking about API calls, use query_custom_service tool\n"
    "6. If asking for math calculations, factorial, fibonacci, or prime numbers, "
    "use calculator tool\n"
    "7. If asking about weather information, use weather_info tool\n"
    "8. If asking about URL operations (shorten, validate, QR codes), "
    "use url_utilities tool\n"
    "9. If no tools are needed, set needsTools to false and toolCalls to empty array\n"
    "10. Provide specific parameters based on the user's request\n"
    "11. Always respond with valid JSON only"
)

_FENCE_PATTERN: re.Pattern[str] = re.compile(r"```(?:json)?", re.IGNORECASE)


def build_analysis_prompt(user_message: str, catalog: list[ToolSpec]) -> str:
    """Build the tool-selection prompt listing every catalog tool."""
    tool_descriptions = "\n".join(
        f"- {tool.name}: {tool.description}\n"
        f"  Parameters: {json.dumps(tool.input_schema.get('properties', {}), indent=2)}"
        for tool in catalog
    )
    return (
        "You are a tool selection assistant. Analyze the user's message and "
        "determine which tools should be used.\n\n"
        f"Available tools:\n{tool_descriptions}\n\n"
        f'User message: "{user_message}"\n\n'
        f"Respond with a JSON object in this exact format:\n{_ANALYSIS_SCHEMA}\n\n"
        f"{_ANALYSIS_RULES}"
    )


def build_synthesis_prompt(catalog: list[ToolSpec]) -> str:
    """System prompt for the final answer, naming the tools that exist."""
    tool_lines = "\n".join(f"- {tool.name}: {tool.description}" for tool in catalog)
    return (
        "You are an AI assistant with access to custom service tools. "
        f"Available tools:\n{tool_lines}\n\n"
        "Tool results, when present, are listed under 'Relevant Information'. "
        "Use them to answer and do not invent data that is not in them."
    )


def extract_analysis_object(raw: str) -> dict[str, Any]:
    """Return the first JSON object in ``raw`` shaped like a tool analysis.

    Markdown code fences are ignored.  Nested objects that do not carry a
    ``needsTools`` or ``toolCalls`` key are skipped.

    Raises:
        AnalysisParseError: If no such object exists.
    """
    text = _FENCE_PATTERN.sub("", raw)
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text):
        try:
            candidate, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, dict) and (
            "needsTools" in candidate or "toolCalls" in candidate
        ):
            return candidate
    raise AnalysisParseError("No valid JSON found in response")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def parse_tool_analysis(payload: dict[str, Any]) -> ToolAnalysis:
    """Normalise a decoded analysis object into a :class:`ToolAnalysis`.

    Entries without a usable ``name`` are dropped; non-dict ``args`` become
    an empty dict.
    """
    raw_calls = payload.get("toolCalls") or []
    if not isinstance(raw_calls, list):
        raise AnalysisParseError("toolCalls must be a list")

    calls: list[ToolCall] = []
    for entry in raw_calls:
        name = entry.get("name") if isinstance(entry, dict) else None
        if not isinstance(name, str) or not name.strip():
            logger.warning("[pipeline] dropping malformed tool call: %r", entry)
            continue
        args = entry.get("args")
        calls.append(
            ToolCall(
                name=name.strip(),
                args=args if isinstance(args, dict) else {},
                reason=str(entry.get("reason") or ""),
            )
        )

    needs_tools = _as_bool(payload.get("needsTools", bool(calls)))
    return ToolAnalysis(needs_tools=needs_tools, tool_calls=calls, source="llm")


# ---------------------------------------------------------------------------
# Deterministic fallback selection
# ---------------------------------------------------------------------------

_ARITHMETIC_PATTERN: re.Pattern[str] = re.compile(r"\d\s*[-+*/^%]\s*\d")
_EXPRESSION_PATTERN: re.Pattern[str] = re.compile(r"[0-9+\-*/().\s]+")
_URL_PATTERN: re.Pattern[str] = re.compile(r"https?://[^\s]+", re.IGNORECASE)
_LOCATION_PATTERN: re.Pattern[str] = re.compile(
    r"(?:weather|temperature|forecast|rain|sunny|cloudy)\b.*?\b(?:in|for|at)\s+"
    r"([a-z][a-z\s,]*)",
    re.IGNORECASE,
)
_WORD_OPERATORS: tuple[tuple[str, str], ...] = (
    (r"\bmultiplied by\b", "*"),
    (r"\bdivided by\b", "/"),
    (r"\bplus\b", "+"),
    (r"\bminus\b", "-"),
    (r"\btimes\b", "*"),
)
_LOCATION_STOPWORDS: frozenset[str] = frozenset(
    {"today", "tomorrow", "tonight", "now", "right", "this", "week", "weekend", "please"}
)
_LOCATION_CLAUSE: re.Pattern[str] = re.compile(
    r"\s+(?:and|in|for|with|but|or|what|should|please)\b.*$", re.IGNORECASE
)

DEFAULT_LOCATION: str = "New York"
DEFAULT_URL: str = "https://www.example.com"


def mentions(text: str, *words: str) -> bool:
    """True if any of ``words`` occurs in ``text`` as a whole word."""
    return any(re.search(rf"\b{re.escape(word)}\b", text) for word in words)


def _first_number(text: str, *patterns: str) -> int | None:
    for pattern in patterns:
        match = re.search(pattern, text)
        if match:
            return int(match.group(1))
    return None


def _extract_expression(text: str) -> str:
    """Pull the longest arithmetic-looking run out of ``text``."""
    normalised = text
    for pattern, symbol in _WORD_OPERATORS:
        normalised = re.sub(pattern, symbol, normalised)
    candidates = [
        chunk.strip()
        for chunk in _EXPRESSION_PATTERN.findall(normalised)
        if any(ch.isdigit() for ch in chunk)
    ]
    return max(candidates, key=len, default="")


def _clean_location(raw: str) -> str:
    raw = _LOCATION_CLAUSE.sub("", raw)
    words = raw.replace(",", " , ").split()
    while words and (words[-1].lower() in _LOCATION_STOPWORDS or words[-1] == ","):
        words.pop()
    return " ".join(words).replace(" , ", ", ").strip(" ,")


def calculator_call(lowered: str) -> ToolCall:
    """Build a calculator call from a lower-cased request.

    Named operations (factorial, fibonacci, prime) take the first matching
    integer; anything else becomes an ``evaluate`` of the longest
    arithmetic run.  A missing operand is left out of ``args``.
    """
    operation = "evaluate"
    number: int | None = None
    expression = ""

    if "factorial" in lowered:
        operation = "factorial"
        number = _first_number(lowered, r"(\d+)\s*factorial", r"factorial\D*(\d+)")
    elif "fibonacci" in lowered:
        operation = "fibonacci"
        number = _first_number(lowered, r"fibonacci\D*(\d+)", r"(\d+)\D*fibonacci")
    elif "prime" in lowered:
        operation = "prime_check"
        number = _first_number(lowered, r"(\d+)\D*prime", r"prime\D*(\d+)")
    else:
        expression = _extract_expression(lowered)

    args: dict[str, Any] = {"expression": expression, "operation": operation}
    if number is not None:
        args["number"] = number
    return ToolCall(
        name="calculator", args=args, reason="User asked for mathematical calculation"
    )


def _weather_call(message: str, lowered: str) -> ToolCall:
    match = _LOCATION_PATTERN.search(message)
    location = _clean_location(match.group(1)) if match else ""

    if mentions(lowered, "fahrenheit", "imperial"):
        units = "imperial"
    elif mentions(lowered, "kelvin"):
        units = "kelvin"
    else:
        units = "metric"

    return ToolCall(
        name="weather_info",
        args={
            "location": location or DEFAULT_LOCATION,
            "units": units,
            "forecast": mentions(lowered, "forecast", "tomorrow", "week"),
        },
        reason="User asked for weather information",
    )


def _url_call(message: str, lowered: str) -> ToolCall:
    if "shorten" in lowered:
        operation = "shorten"
    elif "expand" in lowered:
        operation = "expand"
    elif mentions(lowered, "qr"):
        operation = "qr_code"
    else:
        operation = "validate"
    match = _URL_PATTERN.search(message)
    return ToolCall(
        name="url_utilities",
        args={"operation": operation, "url": match.group(0) if match else DEFAULT_URL},
        reason="User asked for URL operation",
    )


def fallback_tool_selection(
    user_message: str, available: set[str] | None = None
) -> ToolAnalysis:
    """Pick tools with keyword and regex rules when the model cannot.

    Every extraction has a safe default, so the result is always
    structurally valid even when its arguments are low quality.

    Args:
        user_message: The raw user request.
        available: Tool names in the current catalog.  When given, calls to
            other tools are dropped.

    Returns:
        A :class:`ToolAnalysis` with ``source="fallback"``.
    """
    lowered = user_message.lower()
    calls: list[ToolCall] = []

    if mentions(lowered, "time", "date", "now", "current"):
        calls.append(
            ToolCall(
                name="get_datetime",
                args={"format": "local"},
                reason="User asked for current time/date",
            )
        )

    if mentions(lowered, "health", "status"):
        calls.append(
            ToolCall(
                name="service_health",
                args={},
                reason="User asked for health/status information",
            )
        )

    if mentions(lowered, "query", "database", "users"):
        calls.append(
            ToolCall(
                name="execute_query",
                args={"query": "SELECT * FROM users LIMIT 5", "parameters": []},
                reason="User asked for database information",
            )
        )

    if mentions(lowered, "service", "api"):
        calls.append(
            ToolCall(
                name="query_custom_service",
                args={"endpoint": "/api/status", "method": "GET"},
                reason="User asked for service/API information",
            )
        )

    if mentions(
        lowered,
        "calculate", "math", "factorial", "fibonacci", "prime",
        "plus", "minus", "times", "divide", "divided",
    ) or _ARITHMETIC_PATTERN.search(lowered):
        calls.append(calculator_call(lowered))

    if mentions(lowered, "weather", "temperature", "forecast", "rain", "sunny", "cloudy"):
        calls.append(_weather_call(user_message, lowered))

    if mentions(lowered, "url", "link", "shorten", "validate", "qr", "expand") or (
        _URL_PATTERN.search(user_message)
    ):
        calls.append(_url_call(user_message, lowered))

    if available is not None:
        calls = [call for call in calls if call.name in available]

    return ToolAnalysis(needs_tools=bool(calls), tool_calls=calls, source="fallback")


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ToolSelectionPipeline:
    """Analyse → execute → synthesise, tolerant of partial failure."""

    def __init__(self, gateway: OllamaGateway, invoker: ToolInvoker) -> None:
        self.gateway = gateway
        self.invoker = invoker

    async def analyze_tool_needs(
        self, user_message: str, catalog: list[ToolSpec]
    ) -> ToolAnalysis:
        """Ask the model which tools the request needs.

        Falls back to :func:`fallback_tool_selection` when the model is
        unreachable or its answer is not a valid analysis object.
        """
        prompt = build_analysis_prompt(user_message, catalog)
        try:
            raw = await self.gateway.chat(prompt)
            logger.info("[pipeline] analysis raw=%r", raw[:300])
            analysis = parse_tool_analysis(extract_analysis_object(raw))
        except (AnalysisParseError, GatewayError) as exc:
            logger.warning("[pipeline] LLM tool selection failed, using fallback: %s", exc)
            return fallback_tool_selection(
                user_message, {tool.name for tool in catalog} if catalog else None
            )

        logger.info(
            "[pipeline] needs_tools=%s calls=%s",
            analysis.needs_tools,
            [call.name for call in analysis.tool_calls],
        )
        return analysis

    def fallback_tool_selection(
        self, user_message: str, available: set[str] | None = None
    ) -> ToolAnalysis:
        return fallback_tool_selection(user_message, available)

    async def _execute(
        self, analysis: ToolAnalysis, catalog: list[ToolSpec]
    ) -> tuple[str, list[str], list[str]]:
        """Run tool calls sequentially, recording results and errors inline."""
        known = {tool.name for tool in catalog}
        accumulated = ""
        used: list[str] = []
        failed: list[str] = []

        for call in analysis.tool_calls:
            logger.info("[pipeline] calling %s: %s", call.name, call.reason)
            try:
                if call.name not in known:
                    raise ToolExecutionError(call.name, f"Unknown tool: {call.name}")
                result = await self.invoker.call_tool(call.name, call.args)
            except ToolExecutionError as exc:
                logger.error("[pipeline] tool %s failed: %s", call.name, exc)
                accumulated += f"{call.name} Error: {exc}\n\n"
                failed.append(call.name)
                continue
            accumulated += f"{call.name} Result:\n{result}\n\n"
            used.append(call.name)

        return accumulated, used, failed

    async def run(self, user_message: str, model: str | None = None) -> PipelineResult:
        """Process a request end to end and report which tools ran.

        Raises:
            GatewayError: If the final synthesis call (or the plain-chat
                bypass) cannot reach the model.
        """
        try:
            catalog = await self.invoker.list_tools()
            analysis = await self.analyze_tool_needs(user_message, catalog)
        except Exception as exc:
            logger.error(
                "[pipeline] analysis step failed, answering without tools: %s",
                exc,
                exc_info=True,
            )
            response = await self.gateway.chat(user_message, model)
            return PipelineResult(response=response)

        tool_results = ""
        used: list[str] = []
        failed: list[str] = []
        if analysis.needs_tools and analysis.tool_calls:
            logger.info(
                "[pipeline] using %d tools (%s analysis)",
                len(analysis.tool_calls),
                analysis.source,
            )
            tool_results, used, failed = await self._execute(analysis, catalog)
        else:
            logger.info("[pipeline] no tools needed for this request")

        enriched = (
            f"{user_message}\n\nRelevant Information:\n{tool_results}"
            if tool_results
            else user_message
        )
        response = await self.gateway.chat(
            enriched, model, system_prompt=build_synthesis_prompt(catalog)
        )
        return PipelineResult(
            response=response, tools_used=used, failed_tools=failed, analysis=analysis
        )

    async def process_with_tools(self, user_message: str, model: str | None = None) -> str:
        """Return only the synthesised answer for ``user_message``."""
        return (await self.run(user_message, model)).response

"""ollama_agents/servers/tool_server.py

FastMCP server exposing the tools the agents and the general pipeline call.

Local tools (date/time, calculator, mock weather, URL utilities) run in
process; the service tools forward to the HTTP service at
``SERVICE_BASE_URL``.  Every tool reports failures as text rather than
raising, so a failed call still yields readable content for the model.
"""

from __future__ import annotations

# Standard Library
import ast
import datetime
import email.utils
import hashlib
import json
import logging
import math
import operator
import urllib.parse
from typing import Any, Literal
from zoneinfo import ZoneInfo

# Third-Party Libraries
import httpx
from fastmcp import FastMCP

# Local Modules
from ollama_agents.core.settings import AgentSettings

logger = logging.getLogger(__name__)

mcp: FastMCP = FastMCP(
    "ollama-agents-tools",
    instructions=(
        "Provides date/time, calculator, weather, URL utilities and access to "
        "the custom HTTP service."
    ),
)

SERVICE_TIMEOUT: float = 10.0
MAX_OPERAND: int = 1000
MAX_EXPONENT: int = 1000
MAX_PRIME_OPERAND: int = 10**12
# Integer powers whose result would exceed this many bits are rejected.
MAX_RESULT_BITS: int = 10_000

_SAFE_BIN_OPS: dict[type[ast.operator], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_SAFE_UNARY_OPS: dict[type[ast.unaryop], Any] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}
_EXPRESSION_CHARS: frozenset[str] = frozenset("0123456789+-*/%(). \t")
_SHORTENER_HOSTS: tuple[str, ...] = ("short.ly", "bit.ly", "tinyurl")


# ---------------------------------------------------------------------------
# Date and time
# ---------------------------------------------------------------------------


@mcp.tool()
def get_datetime(
    format: Literal["iso", "local", "utc", "timestamp"] = "iso",
    timezone: str | None = None,
) -> str:
    """Get the current date and time in various formats.

    Args:
        format: One of ``iso``, ``local``, ``utc`` or ``timestamp``.
        timezone: Optional IANA timezone (e.g. ``America/New_York``).
    """
    return _get_datetime(format=format, timezone=timezone)


def _get_datetime(
    format: str = "iso",
    timezone: str | None = None,
    now: datetime.datetime | None = None,
) -> str:
    """Implementation: render the current time in the requested format."""
    try:
        now_utc = now or datetime.datetime.now(datetime.UTC)
        tz = ZoneInfo(timezone) if timezone else None
        if format == "local":
            local = now_utc.astimezone(tz)
            result = local.strftime("%m/%d/%Y, %I:%M:%S %p")
        elif format == "utc":
            result = email.utils.format_datetime(now_utc, usegmt=True)
        elif format == "timestamp":
            result = str(int(now_utc.timestamp() * 1000))
        else:
            result = now_utc.astimezone(tz or datetime.UTC).isoformat()
    except Exception as exc:
        logger.error("[get_datetime] %s", exc)
        return f"Error getting date/time: {exc}"

    if timezone:
        return f"Current date and time ({timezone}): {result}"
    return f"Current date and time: {result}"


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


def safe_eval(expression: str) -> int | float:
    """Evaluate an arithmetic expression without ``eval``.

    Only numeric literals, ``+ - * / // % **`` and unary signs are accepted.

    Raises:
        ValueError: On any other syntax or an oversized exponent.
    """
    if not expression.strip():
        raise ValueError("Empty expression")
    if not set(expression) <= _EXPRESSION_CHARS:
        raise ValueError(
            "Invalid characters in expression. "
            "Only numbers, operators, and parentheses are allowed."
        )
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"Invalid expression: {expression}") from exc

    def _eval(node: ast.AST) -> int | float:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
            return node.value
        if isinstance(node, ast.BinOp) and type(node.op) in _SAFE_BIN_OPS:
            left, right = _eval(node.left), _eval(node.right)
            if isinstance(node.op, ast.Pow):
                _check_power(left, right)
            return _SAFE_BIN_OPS[type(node.op)](left, right)
        if isinstance(node, ast.UnaryOp) and type(node.op) in _SAFE_UNARY_OPS:
            return _SAFE_UNARY_OPS[type(node.op)](_eval(node.operand))
        raise ValueError("Disallowed expression")

    return _eval(tree)


def _check_power(base: int | float, exponent: int | float) -> None:
    if abs(exponent) > MAX_EXPONENT:
        raise ValueError("Exponent too large")
    if (
        isinstance(base, int)
        and isinstance(exponent, int)
        and exponent > 0
        and abs(base).bit_length() * exponent > MAX_RESULT_BITS
    ):
        raise ValueError("Result too large")


def _format_number(value: int | float | bool) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _require_operand(number: int | None, operation: str) -> int:
    if number is None or number < 0:
        raise ValueError(f"{operation.capitalize()} requires a non-negative integer")
    if number > MAX_OPERAND:
        raise ValueError(f"{operation.capitalize()} is limited to numbers up to {MAX_OPERAND}")
    return number


def _fibonacci(n: int) -> int:
    a, b = 0, 1
    for _ in range(n):
        a, b = b, a + b
    return a


def _is_prime(n: int | None) -> bool:
    if n is None or n < 2:
        return False
    if n % 2 == 0:
        return n == 2
    return all(n % i for i in range(3, math.isqrt(n) + 1, 2))


@mcp.tool()
def calculator(
    expression: str = "",
    operation: Literal["evaluate", "factorial", "fibonacci", "prime_check"] = "evaluate",
    number: int | None = None,
) -> str:
    """Perform mathematical calculations and operations.

    Args:
        expression: Expression to evaluate, e.g. ``2 + 3 * 4``.
        operation: ``evaluate``, ``factorial``, ``fibonacci`` or ``prime_check``.
        number: Operand for factorial, fibonacci and prime_check.
    """
    return _calculator(expression=expression, operation=operation, number=number)


def _calculator(expression: str = "", operation: str = "evaluate", number: int | None = None) -> str:
    """Implementation: run one calculator operation and describe the result."""
    try:
        if operation == "evaluate":
            result: int | float | bool = safe_eval(expression)
        elif operation == "factorial":
            result = math.factorial(_require_operand(number, "factorial"))
        elif operation == "fibonacci":
            result = _fibonacci(_require_operand(number, "fibonacci"))
        elif operation == "prime_check":
            if number is not None and number > MAX_PRIME_OPERAND:
                raise ValueError(f"Prime check is limited to numbers up to {MAX_PRIME_OPERAND}")
            result = _is_prime(number)
        else:
            raise ValueError(f"Invalid operation: {operation}")
        formatted = _format_number(result)
    except (ValueError, ArithmeticError) as exc:
        logger.warning("[calculator] %s failed: %s", operation, exc)
        return f"Calculation Error: {exc}"

    subject = f"Expression: {expression}" if operation == "evaluate" else f"Number: {number}"
    return (
        "Calculation Result:\n"
        f"Operation: {operation}\n"
        f"{subject}\n"
        f"Result: {formatted}"
    )


# ---------------------------------------------------------------------------
# Weather (mock)
# ---------------------------------------------------------------------------

# units -> (current, [(day, high, low, condition), ...])
_MOCK_TEMPERATURES: dict[str, tuple[float, list[tuple[str, float, float, str]]]] = {
    "metric": (22, [("Tomorrow", 25, 18, "Sunny"), ("Day after", 23, 16, "Rainy")]),
    "imperial": (72, [("Tomorrow", 77, 64, "Sunny"), ("Day after", 73, 61, "Rainy")]),
    "kelvin": (295, [("Tomorrow", 298, 291, "Sunny"), ("Day after", 296, 289, "Rainy")]),
}
_TEMPERATURE_UNITS: dict[str, str] = {"metric": "°C", "imperial": "°F", "kelvin": "K"}


@mcp.tool()
def weather_info(
    location: str,
    units: Literal["metric", "imperial", "kelvin"] = "metric",
    forecast: bool = False,
) -> str:
    """Get weather information for a location.

    Args:
        location: City name or coordinates.
        units: ``metric``, ``imperial`` or ``kelvin``.
        forecast: Include a two-day forecast.
    """
    return _weather_info(location=location, units=units, forecast=forecast)


def _weather_info(location: str, units: str = "metric", forecast: bool = False) -> str:
    """Implementation: render mock weather for ``location``."""
    if units not in _MOCK_TEMPERATURES:
        return f"Weather Error: Unsupported units: {units}"

    current, days = _MOCK_TEMPERATURES[units]
    temp_unit = _TEMPERATURE_UNITS[units]
    wind = "15 km/h" if units == "metric" else "9.3 mph"

    lines = [
        f"Weather for {location}:",
        "Current Conditions:",
        f"- Temperature: {current}{temp_unit}",
        "- Humidity: 65%",
        f"- Wind Speed: {wind}",
        "- Conditions: Partly cloudy",
        "- Pressure: 1013.2 mb",
    ]
    if forecast:
        lines += ["", "Forecast:"]
        lines += [
            f"- {day}: High {high}{temp_unit}, Low {low}{temp_unit} - {condition}"
            for day, high, low, condition in days
        ]
    lines += ["", "(Note: This is mock data. Replace with real weather API integration)"]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# URL utilities (mock)
# ---------------------------------------------------------------------------


@mcp.tool()
def url_utilities(
    operation: Literal["validate", "shorten", "expand", "qr_code", "analyze"],
    url: str,
    size: int = 200,
) -> str:
    """Perform URL operations like validation, shortening, QR codes and expansion.

    Args:
        operation: ``validate``, ``shorten``, ``expand``, ``qr_code`` or ``analyze``.
        url: URL to process.
        size: QR code edge length in pixels.
    """
    return _url_utilities(operation=operation, url=url, size=size)


def _url_utilities(operation: str, url: str, size: int = 200) -> str:
    """Implementation: deterministic mock URL operations."""
    parsed = urllib.parse.urlsplit(url)
    is_web = parsed.scheme in ("http", "https") and bool(parsed.netloc)

    if operation == "validate":
        if not is_web:
            return f"URL Validation:\nURL: {url}\nValid: false\nReason: Invalid URL format"
        return (
            f"URL Validation:\nURL: {url}\nValid: true\nProtocol: {parsed.scheme}:\n"
            f"Host: {parsed.netloc}\nPath: {parsed.path or '/'}"
        )
    if operation == "shorten":
        code = hashlib.sha1(url.encode("utf-8")).hexdigest()[:6]
        return (
            f"URL Shortening:\nOriginal: {url}\nShortened: https://short.ly/{code}\n"
            "(Note: This is a mock shortened URL)"
        )
    if operation == "expand":
        if any(host in url for host in _SHORTENER_HOSTS):
            return (
                f"URL Expansion:\nShort URL: {url}\nExpanded: https://www.example.com/full-url\n"
                "(Note: This is a mock expansion)"
            )
        return f"URL Expansion:\nURL: {url}\nResult: This appears to be a full URL already"
    if operation == "qr_code":
        return (
            f"QR Code Generation:\nURL: {url}\nQR Code: [Generated QR code would be here]\n"
            f"Size: {size}x{size}px\nFormat: PNG\n"
            "(Note: In a real implementation, this would return actual QR code data)"
        )
    if operation == "analyze":
        if not is_web:
            return "URL Analysis failed: Invalid URL format"
        return (
            f"URL Analysis:\nURL: {url}\nProtocol: {parsed.scheme}:\n"
            f"Domain: {parsed.hostname}\nPort: {parsed.port or 'default'}\n"
            f"Path: {parsed.path or '/'}\nQuery Parameters: {parsed.query or 'none'}\n"
            f"Fragment: {parsed.fragment or 'none'}\nIs HTTPS: {str(parsed.scheme == 'https').lower()}"
        )
    return f"URL Utilities Error: Unsupported operation: {operation}"


# ---------------------------------------------------------------------------
# Custom HTTP service
# ---------------------------------------------------------------------------


def _service_base_url() -> str:
    return AgentSettings().service_base_url.rstrip("/")


async def _service_request(
    method: str,
    path: str,
    payload: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any] | None:
    """Call the service and decode its JSON body.

    Returns:
        The decoded body, or ``None`` on any transport, status or decode
        failure (logged).
    """
    url = f"{base_url or _service_base_url()}{path}"
    request_headers = {"Content-Type": "application/json", "User-Agent": "ollama-agents/1.0"}
    request_headers.update(headers or {})
    try:
        async with httpx.AsyncClient(timeout=SERVICE_TIMEOUT, transport=transport) as client:
            response = await client.request(method, url, json=payload, headers=request_headers)
            response.raise_for_status()
            body = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("[service] %s %s failed: %s", method, url, exc)
        return None
    return body if isinstance(body, dict) else {"data": body}


@mcp.tool()
async def query_custom_service(
    endpoint: str,
    method: Literal["GET", "POST", "PUT", "DELETE"] = "GET",
    data: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> str:
    """Query the custom service with parameters.

    Args:
        endpoint: API path to call, e.g. ``/api/status``.
        method: HTTP method.
        data: JSON body for POST and PUT requests.
        headers: Extra request headers.
    """
    return await _query_custom_service(endpoint, method, data, headers)


async def _query_custom_service(
    endpoint: str,
    method: str = "GET",
    data: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    base_url: str | None = None,
) -> str:
    """Implementation: forward one request and summarise the response."""
    base = base_url or _service_base_url()
    payload = data if method in ("POST", "PUT") else None
    result = await _service_request(method, endpoint, payload, headers, base_url=base)
    if result is None:
        return f"Failed to connect to service at {base}{endpoint}"

    text = (
        "Service Response:\n"
        f"Status: {result.get('status')}\n"
        f"Data: {json.dumps(result.get('data'), indent=2)}"
    )
    if result.get("message"):
        text += f"\nMessage: {result['message']}"
    return text


@mcp.tool()
async def execute_query(query: str, parameters: list[Any] | None = None) -> str:
    """Execute a database query through the custom service.

    Args:
        query: SQL query to execute.
        parameters: Positional query parameters.
    """
    return await _execute_query(query, parameters)


async def _execute_query(
    query: str, parameters: list[Any] | None = None, base_url: str | None = None
) -> str:
    """Implementation: POST the query to ``/api/query``."""
    result = await _service_request(
        "POST",
        "/api/query",
        {"query": query, "parameters": parameters or []},
        base_url=base_url,
    )
    if result is None:
        return "Failed to execute database query"
    return (
        "Query Results:\n"
        f"Query: {result.get('query', query)}\n"
        f"Row Count: {result.get('count', 0)}\n"
        f"Data:\n{json.dumps(result.get('rows', []), indent=2)}"
    )


@mcp.tool()
async def service_health() -> str:
    """Check the health and status of the custom service."""
    return await _service_health()


async def _service_health(base_url: str | None = None) -> str:
    """Implementation: GET ``/health``."""
    result = await _service_request("GET", "/health", base_url=base_url)
    if result is None:
        return "Service is not responding or unreachable"
    return (
        "Service Health:\n"
        f"Status: {result.get('status')}\n"
        f"Uptime: {result.get('uptime')}s\n"
        f"Version: {result.get('version')}"
    )


def main() -> None:
    """Run the server over stdio."""
    # stdout carries the protocol; logs go to stderr.
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    mcp.run()


if __name__ == "__main__":
    main()

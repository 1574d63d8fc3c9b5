"""tests/test_tool_server.py

Unit tests for the tool implementations in ollama_agents/servers/tool_server.py.

The private ``_impl`` functions are tested directly; the HTTP-backed tools
use a patched ``_service_request`` or an ``httpx.MockTransport``.
"""

from __future__ import annotations

# Standard Library
import datetime
import hashlib
from unittest.mock import AsyncMock, patch

# Third-Party Libraries
import httpx
import pytest

# Local Modules
from ollama_agents.servers import tool_server
from ollama_agents.servers.tool_server import (
    _calculator,
    _execute_query,
    _get_datetime,
    _query_custom_service,
    _service_health,
    _service_request,
    _url_utilities,
    _weather_info,
    safe_eval,
)

FIXED_NOW = datetime.datetime(2024, 1, 15, 14, 30, 0, tzinfo=datetime.UTC)
BASE = "http://service.test"


# ---------------------------------------------------------------------------
# get_datetime
# ---------------------------------------------------------------------------


class TestGetDatetime:
    """Test suite for _get_datetime."""

    def test_iso(self) -> None:
        """Test the default ISO format."""
        assert _get_datetime(now=FIXED_NOW) == "Current date and time: 2024-01-15T14:30:00+00:00"

    def test_utc(self) -> None:
        """Test the RFC 1123 UTC rendering."""
        assert _get_datetime("utc", now=FIXED_NOW) == (
            "Current date and time: Mon, 15 Jan 2024 14:30:00 GMT"
        )

    def test_timestamp(self) -> None:
        """Test epoch milliseconds."""
        assert _get_datetime("timestamp", now=FIXED_NOW) == "Current date and time: 1705329000000"

    def test_local_with_timezone(self) -> None:
        """Test local rendering in a named zone mentions the zone."""
        assert _get_datetime("local", "America/New_York", now=FIXED_NOW) == (
            "Current date and time (America/New_York): 01/15/2024, 09:30:00 AM"
        )

    def test_unknown_timezone(self) -> None:
        """Test an invalid zone yields an error string, not an exception."""
        assert _get_datetime("local", "Mars/Olympus_Mons", now=FIXED_NOW).startswith(
            "Error getting date/time:"
        )


# ---------------------------------------------------------------------------
# calculator
# ---------------------------------------------------------------------------


class TestSafeEval:
    """Test suite for safe_eval."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("2 + 3 * 4", 14),
            ("(2 + 3) * 4", 20),
            ("10 / 4", 2.5),
            ("7 // 2", 3),
            ("-(3 + 2) % 4", 3),
            ("2 ** 10", 1024),
        ],
    )
    def test_arithmetic(self, expression: str, expected: float) -> None:
        """Test supported operators evaluate correctly."""
        assert safe_eval(expression) == expected

    @pytest.mark.parametrize(
        "expression",
        [
            "__import__('os').system('ls')",
            "abs(-1)",
            "2 ** 5000",
            "(9 ** 999) ** 5",
            "((9 ** 999) ** 999) ** 999",
            "",
            "()",
            "1 +",
        ],
    )
    def test_rejected(self, expression: str) -> None:
        """Test anything beyond plain arithmetic raises ValueError."""
        with pytest.raises(ValueError):
            safe_eval(expression)


class TestCalculator:
    """Test suite for _calculator."""

    def test_evaluate(self) -> None:
        """Test the result block for an expression."""
        assert _calculator("2 + 3 * 4") == (
            "Calculation Result:\nOperation: evaluate\nExpression: 2 + 3 * 4\nResult: 14"
        )

    def test_whole_float_printed_as_int(self) -> None:
        """Test integral division results drop the trailing .0."""
        assert _calculator("8 / 2").endswith("Result: 4")

    @pytest.mark.parametrize(
        "operation,number,expected",
        [
            ("factorial", 5, "120"),
            ("factorial", 0, "1"),
            ("fibonacci", 10, "55"),
            ("prime_check", 17, "true"),
            ("prime_check", 15, "false"),
            ("prime_check", 2, "true"),
        ],
    )
    def test_named_operations(self, operation: str, number: int, expected: str) -> None:
        """Test factorial, fibonacci and prime checks."""
        result = _calculator(operation=operation, number=number)
        assert f"Operation: {operation}\nNumber: {number}\nResult: {expected}" in result

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"expression": "1/0"}, "division by zero"),
            ({"expression": "import os"}, "Invalid characters"),
            ({"operation": "factorial"}, "Factorial requires a non-negative integer"),
            ({"operation": "factorial", "number": -3}, "non-negative"),
            ({"operation": "fibonacci", "number": 5000}, "limited to numbers up to 1000"),
            ({"operation": "sqrt", "number": 4}, "Invalid operation: sqrt"),
            ({"expression": "(9**999)**5"}, "Result too large"),
            ({"operation": "prime_check", "number": 10**30 + 57}, "Prime check is limited"),
        ],
    )
    def test_errors_are_text(self, kwargs: dict, message: str) -> None:
        """Test failures are reported in the returned text."""
        result = _calculator(**kwargs)
        assert result.startswith("Calculation Error:")
        assert message in result

    def test_unprintable_result_is_text(self) -> None:
        """Test a product too long to render is reported instead of raised."""
        expression = " * ".join(["9**999"] * 5)
        assert _calculator(expression).startswith("Calculation Error:")


# ---------------------------------------------------------------------------
# weather_info
# ---------------------------------------------------------------------------


class TestWeatherInfo:
    """Test suite for _weather_info."""

    def test_metric(self) -> None:
        """Test metric output lines."""
        text = _weather_info("Tokyo")
        assert text.splitlines()[:3] == [
            "Weather for Tokyo:",
            "Current Conditions:",
            "- Temperature: 22°C",
        ]
        assert "- Wind Speed: 15 km/h" in text
        assert "Forecast:" not in text
        assert text.endswith("(Note: This is mock data. Replace with real weather API integration)")

    def test_imperial(self) -> None:
        """Test imperial temperature and wind units."""
        text = _weather_info("Chicago", "imperial")
        assert "- Temperature: 72°F" in text
        assert "- Wind Speed: 9.3 mph" in text

    def test_kelvin_forecast(self) -> None:
        """Test the forecast section uses the requested units."""
        text = _weather_info("Oslo", "kelvin", forecast=True)
        assert "- Temperature: 295K" in text
        assert "- Tomorrow: High 298K, Low 291K - Sunny" in text
        assert "- Day after: High 296K, Low 289K - Rainy" in text

    def test_unsupported_units(self) -> None:
        """Test unknown units are rejected in text."""
        assert _weather_info("Oslo", "rankine") == "Weather Error: Unsupported units: rankine"


# ---------------------------------------------------------------------------
# url_utilities
# ---------------------------------------------------------------------------


class TestUrlUtilities:
    """Test suite for _url_utilities."""

    def test_validate(self) -> None:
        """Test valid and invalid URLs."""
        valid = _url_utilities("validate", "https://example.com/docs")
        assert "Valid: true" in valid
        assert "Host: example.com" in valid
        assert "Valid: false" in _url_utilities("validate", "not a url")

    def test_shorten_is_deterministic(self) -> None:
        """Test the same URL always shortens to the same code."""
        url = "https://example.com/a/very/long/path"
        code = hashlib.sha1(url.encode("utf-8")).hexdigest()[:6]
        assert f"Shortened: https://short.ly/{code}" in _url_utilities("shorten", url)
        assert _url_utilities("shorten", url) == _url_utilities("shorten", url)

    def test_expand(self) -> None:
        """Test only known shortener hosts are expanded."""
        assert "Expanded:" in _url_utilities("expand", "https://bit.ly/abc")
        assert "full URL already" in _url_utilities("expand", "https://example.com/page")

    def test_qr_code_size(self) -> None:
        """Test the QR size is echoed."""
        assert "Size: 300x300px" in _url_utilities("qr_code", "https://example.com", 300)

    def test_analyze(self) -> None:
        """Test URL components are listed."""
        text = _url_utilities("analyze", "https://example.com:8443/a?x=1#top")
        assert "Domain: example.com" in text
        assert "Port: 8443" in text
        assert "Query Parameters: x=1" in text
        assert "Fragment: top" in text
        assert "Is HTTPS: true" in text

    def test_unsupported_operation(self) -> None:
        """Test unknown operations are rejected in text."""
        assert _url_utilities("encrypt", "https://example.com") == (
            "URL Utilities Error: Unsupported operation: encrypt"
        )


# ---------------------------------------------------------------------------
# Service tools
# ---------------------------------------------------------------------------


class TestServiceTools:
    """Test suite for the HTTP-backed tools with the transport patched out."""

    @pytest.mark.asyncio
    async def test_query_custom_service(self) -> None:
        """Test a successful GET is summarised."""
        fake = AsyncMock(return_value={"status": "ok", "data": {"users": 3}, "message": "fine"})
        with patch.object(tool_server, "_service_request", fake):
            text = await _query_custom_service("/api/status", base_url=BASE)

        fake.assert_awaited_once_with("GET", "/api/status", None, None, base_url=BASE)
        assert text.startswith("Service Response:\nStatus: ok\nData: {")
        assert '"users": 3' in text
        assert text.endswith("Message: fine")

    @pytest.mark.asyncio
    async def test_query_custom_service_post_sends_body(self) -> None:
        """Test POST forwards the JSON body."""
        fake = AsyncMock(return_value={"status": "created", "data": None})
        with patch.object(tool_server, "_service_request", fake):
            await _query_custom_service("/api/items", "POST", {"name": "x"}, base_url=BASE)

        assert fake.await_args.args[2] == {"name": "x"}

    @pytest.mark.asyncio
    async def test_query_custom_service_unreachable(self) -> None:
        """Test an unreachable service is reported with its URL."""
        with patch.object(tool_server, "_service_request", AsyncMock(return_value=None)):
            text = await _query_custom_service("/api/status", base_url=BASE)
        assert text == f"Failed to connect to service at {BASE}/api/status"

    @pytest.mark.asyncio
    async def test_execute_query(self) -> None:
        """Test query results are rendered."""
        fake = AsyncMock(
            return_value={"query": "SELECT * FROM users", "count": 1, "rows": [{"id": 1}]}
        )
        with patch.object(tool_server, "_service_request", fake):
            text = await _execute_query("SELECT * FROM users", base_url=BASE)

        assert fake.await_args.args[:3] == (
            "POST",
            "/api/query",
            {"query": "SELECT * FROM users", "parameters": []},
        )
        assert "Row Count: 1" in text
        assert '"id": 1' in text

    @pytest.mark.asyncio
    async def test_execute_query_failure(self) -> None:
        """Test a failed query is reported."""
        with patch.object(tool_server, "_service_request", AsyncMock(return_value=None)):
            assert await _execute_query("SELECT 1", base_url=BASE) == (
                "Failed to execute database query"
            )

    @pytest.mark.asyncio
    async def test_service_health(self) -> None:
        """Test the health summary."""
        fake = AsyncMock(return_value={"status": "healthy", "uptime": 12.5, "version": "1.2.0"})
        with patch.object(tool_server, "_service_request", fake):
            text = await _service_health(base_url=BASE)
        assert text == "Service Health:\nStatus: healthy\nUptime: 12.5s\nVersion: 1.2.0"

    @pytest.mark.asyncio
    async def test_service_health_unreachable(self) -> None:
        """Test an unreachable service."""
        with patch.object(tool_server, "_service_request", AsyncMock(return_value=None)):
            assert await _service_health(base_url=BASE) == (
                "Service is not responding or unreachable"
            )


class TestServiceRequest:
    """Test suite for _service_request over an httpx.MockTransport."""

    @pytest.mark.asyncio
    async def test_decodes_json(self) -> None:
        """Test method, URL and headers are sent and the body decoded."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "ok"})

        body = await _service_request(
            "GET",
            "/health",
            headers={"X-Trace": "1"},
            base_url=BASE,
            transport=httpx.MockTransport(handler),
        )

        assert body == {"status": "ok"}
        assert seen[0].method == "GET"
        assert str(seen[0].url) == f"{BASE}/health"
        assert seen[0].headers["X-Trace"] == "1"
        assert seen[0].headers["User-Agent"] == "ollama-agents/1.0"

    @pytest.mark.asyncio
    async def test_wraps_non_object_body(self) -> None:
        """Test list bodies are wrapped under ``data``."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[1, 2]))
        assert await _service_request("GET", "/x", base_url=BASE, transport=transport) == {
            "data": [1, 2]
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, json={"error": "boom"}),
            httpx.Response(200, text="not json"),
        ],
    )
    async def test_failures_return_none(self, response: httpx.Response) -> None:
        """Test error statuses and undecodable bodies yield None."""
        transport = httpx.MockTransport(lambda request: response)
        assert await _service_request("GET", "/x", base_url=BASE, transport=transport) is None

    @pytest.mark.asyncio
    async def test_connection_error_returns_none(self) -> None:
        """Test transport errors yield None."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        transport = httpx.MockTransport(handler)
        assert await _service_request("GET", "/x", base_url=BASE, transport=transport) is None

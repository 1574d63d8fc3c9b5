"""ollama_agents/core/gateway.py

Language-model gateway backed by a local Ollama instance.

Two operations only: free-form chat completion and model discovery.
Every transport or HTTP failure is re-raised as :class:`GatewayError` so
callers can pick their own fallback.
"""

from __future__ import annotations

# Standard Library
import logging
from typing import Any

# Third-Party Libraries
import httpx
from ollama import AsyncClient, ResponseError

# Local Modules
from ollama_agents.core.errors import GatewayError
from ollama_agents.core.settings import AgentSettings

logger = logging.getLogger(__name__)


def _message_content(response: Any) -> str:
    """Pull the assistant text out of an Ollama chat response.

    Supports both the pydantic ``ChatResponse`` returned by the client and
    the plain dicts used by mocks.
    """
    message = getattr(response, "message", None)
    if message is None and isinstance(response, dict):
        message = response.get("message")
    if message is None:
        return ""
    content = getattr(message, "content", None)
    if content is None and isinstance(message, dict):
        content = message.get("content")
    return content or ""


def _model_entry(model: Any) -> dict[str, Any]:
    """Normalise one entry of ``Client.list()`` to a dict with a ``name`` key."""
    if hasattr(model, "model_dump"):
        data: dict[str, Any] = model.model_dump(mode="json")
    else:
        data = dict(model)
    data.setdefault("name", data.get("model", ""))
    return data


class OllamaGateway:
    """Sends prompts to Ollama and returns plain text."""

    def __init__(
        self,
        host: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        client: AsyncClient | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            host: Ollama base URL. Defaults to the ``OLLAMA_BASE_URL`` setting.
            model: Default model tag. Defaults to the ``OLLAMA_MODEL`` setting.
            timeout: Request timeout in seconds.
            client: Pre-built client (used by tests).
        """
        settings = AgentSettings()
        self.host = host or settings.ollama_base_url
        self.model = model or settings.ollama_model
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.client = client or AsyncClient(host=self.host, timeout=self.timeout)

    async def chat(
        self,
        message: str,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> str:
        """Run a single-turn chat completion.

        Args:
            message: The user prompt.
            model: Override the default model for this call.
            system_prompt: Optional system message sent ahead of the prompt.

        Returns:
            The assistant's reply text.

        Raises:
            GatewayError: If Ollama is unreachable, times out, or returns a
                non-success status.
        """
        selected_model = model or self.model
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": message})

        logger.info("[gateway] chat model=%r host=%s", selected_model, self.host)
        try:
            response = await self.client.chat(
                model=selected_model,
                messages=messages,
                stream=False,
            )
        except ResponseError as exc:
            logger.error("[gateway] Ollama API error %s: %s", exc.status_code, exc.error)
            raise GatewayError(
                f"Ollama API error: {exc.status_code} {exc.error}",
                status_code=exc.status_code,
            ) from exc
        except httpx.TimeoutException as exc:
            logger.error("[gateway] request timed out after %.1fs", self.timeout)
            raise GatewayError("Ollama request timed out") from exc
        except (httpx.HTTPError, ConnectionError) as exc:
            logger.error("[gateway] transport failure: %s", exc)
            raise GatewayError(f"Failed to communicate with Ollama: {exc}") from exc

        content = _message_content(response)
        if not content:
            logger.warning("[gateway] empty response from model %r", selected_model)
            return "No response from Ollama"
        logger.debug("[gateway] response length=%d chars", len(content))
        return content

    async def list_models(self) -> list[dict[str, Any]]:
        """Return the models installed on the Ollama host.

        Raises:
            GatewayError: If the tags endpoint cannot be reached.
        """
        try:
            response = await self.client.list()
        except ResponseError as exc:
            raise GatewayError(
                f"Failed to get models: {exc.status_code}", status_code=exc.status_code
            ) from exc
        except httpx.TimeoutException as exc:
            raise GatewayError("Models request timed out") from exc
        except (httpx.HTTPError, ConnectionError) as exc:
            raise GatewayError(f"Failed to get models: {exc}") from exc

        models = getattr(response, "models", None)
        if models is None and isinstance(response, dict):
            models = response.get("models")
        return [_model_entry(model) for model in models or []]

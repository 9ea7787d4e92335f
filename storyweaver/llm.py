"""LLM client: HTTP connection to a structured-output chat backend.

The turn pipeline injects an LLM callable matching the protocol:

    async def __call__(self, stage, packet, response_format, on_text=None) -> str: ...

`stage` identifies which call is being made ("turn", "memory_overview" or
"template_blueprint").
`response_format` is {"name": ..., "schema": ...}: a JSON Schema the reply
must follow. When `on_text` is given the reply is streamed and `on_text` is
called with the full accumulated text after every delta. The return value
is always the complete reply text.

HttpLLM speaks two OpenAI-compatible wire formats, selected by
provider_format:

  "responses"  : POST /v1/responses          SSE: response.output_text.delta
  "chat"       : POST /v1/chat/completions   SSE: choices[0].delta.content

Production code constructs an HttpLLM from config and passes it to run_turn().
Tests pass a stub with the same call signature instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, Literal, Protocol

import httpx

from storyweaver.models import PromptPacket

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], None]


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(
        self,
        stage: str,
        packet: PromptPacket,
        response_format: dict[str, Any],
        on_text: TextCallback | None = None,
    ) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["responses", "chat"]


class HttpLLM:
    """Async HTTP client for OpenAI-compatible structured-output backends.

    Args:
        provider_url:    Base URL of the backend, e.g. "https://api.openai.com".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "responses".
        model:           Model identifier sent with every request.
        timeout:         HTTP timeout in seconds. Defaults to 120.
        transport:       Optional httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "responses",
        model: str = "",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _build_request(
        self, packet: PromptPacket, response_format: dict[str, Any], stream: bool
    ) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "chat":
            url = f"{self._base_url}/v1/chat/completions"
            body: dict = {
                "messages": [
                    {"role": "system", "content": packet.system},
                    {"role": "user", "content": packet.user},
                ],
                "response_format": {
                    "type": "json_schema",
                    "json_schema": {
                        "name": response_format["name"],
                        "schema": response_format["schema"],
                        "strict": True,
                    },
                },
            }
        else:
            url = f"{self._base_url}/v1/responses"
            body = {
                "input": [
                    {"role": "system", "content": packet.system},
                    {"role": "user", "content": packet.user},
                ],
                "text": {
                    "format": {
                        "type": "json_schema",
                        "name": response_format["name"],
                        "schema": response_format["schema"],
                        "strict": True,
                    },
                },
            }
        if self._model:
            body["model"] = self._model
        if stream:
            body["stream"] = True
        return url, body

    def _parse_response(self, data: Any) -> str:
        """Extract the reply text from a non-streamed response body."""
        if not isinstance(data, dict):
            raise ProviderError("LLM backend returned a non-object response body")

        if self._format == "chat":
            choices = data.get("choices")
            first = choices[0] if isinstance(choices, list) and choices else None
            message = first.get("message") if isinstance(first, dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            if not isinstance(content, str):
                raise ProviderError("Unexpected response format from chat completions backend")
            return content

        # responses
        if isinstance(data.get("output_text"), str) and data["output_text"]:
            return data["output_text"]
        output = data.get("output")
        for block in output if isinstance(output, list) else []:
            content = block.get("content") if isinstance(block, dict) else None
            for segment in content if isinstance(content, list) else []:
                text = segment.get("text") if isinstance(segment, dict) else None
                if isinstance(text, str):
                    return text
        raise ProviderError("Unexpected response format from responses backend")

    def _stream_delta(self, event: Any) -> str:
        """Return the text carried by one SSE event (empty if none)."""
        if not isinstance(event, dict):
            raise ProviderError(f"Unexpected stream event from LLM backend: {event!r}")

        if self._format == "chat":
            if "error" in event:
                raise ProviderError(f"LLM backend stream error: {event['error']}")
            choices = event.get("choices")
            first = choices[0] if isinstance(choices, list) and choices else None
            delta = first.get("delta") if isinstance(first, dict) else None
            content = delta.get("content") if isinstance(delta, dict) else None
            return content if isinstance(content, str) else ""

        event_type = event.get("type", "")
        if event_type == "response.output_text.delta":
            delta = event.get("delta")
            return delta if isinstance(delta, str) else ""
        if event_type in ("error", "response.failed", "response.incomplete"):
            response = event.get("response")
            detail = (
                event.get("error")
                or (response.get("error") if isinstance(response, dict) else None)
                or event_type
            )
            raise ProviderError(f"LLM backend stream error: {detail}")
        return ""

    async def __call__(
        self,
        stage: str,
        packet: PromptPacket,
        response_format: dict[str, Any],
        on_text: TextCallback | None = None,
    ) -> str:
        stream = on_text is not None
        url, body = self._build_request(packet, response_format, stream)
        logger.debug(
            "llm call stage=%s url=%s stream=%s prompt_len=%d",
            stage, url, stream, len(packet.system) + len(packet.user),
        )

        try:
            if stream:
                text = await self._stream(url, body, on_text)
            else:
                async with self._client() as client:
                    resp = await client.post(url, json=body, headers=self._headers())
                    resp.raise_for_status()
                try:
                    data = resp.json()
                except ValueError as e:
                    raise ProviderError("LLM backend returned a body that is not JSON") from e
                text = self._parse_response(data)
        except httpx.ConnectError as e:
            raise ProviderError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise ProviderError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"LLM backend request failed: {e}") from e

        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text

    async def _stream(self, url: str, body: dict, on_text: TextCallback) -> str:
        accumulated = ""
        async with self._client() as client:
            async with client.stream("POST", url, json=body, headers=self._headers()) as resp:
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    payload = line[len("data:"):].strip()
                    if payload == "[DONE]":
                        break
                    try:
                        event = json.loads(payload)
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed stream event: %r", payload[:200])
                        continue
                    delta = self._stream_delta(event)
                    if delta:
                        accumulated += delta
                        on_text(accumulated)
        return accumulated


# ---------------------------------------------------------------------------
# ProviderError: raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class ProviderError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""

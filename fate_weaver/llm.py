"""LLM client — HTTP connection to a chat backend.

The narrator gateway injects an LLM callable matching the protocol:

    async def __call__(self, stage: str, messages: list[ChatTurn]) -> str: ...

`messages` is the whole conversation as {"role": "system"|"user"|"assistant",
"content": ...} dicts; the backend is stateless between calls. `stage` names
the caller ("intro", "turn") and is only used for logging.

Two implementations are provided:

    HttpLLM   — real HTTP client for OpenAI-compatible, Ollama and KoboldCpp
                backends. Selected by provider_format.
    EchoLLM   — returns the last user message unchanged. Useful for checking
                the game loop without a running model.

Tests use StubLLM (defined in the test helpers) instead.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)

ChatTurn = dict[str, str]


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, messages: list[ChatTurn]) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["openai", "ollama", "koboldcpp"]


def flatten_transcript(messages: list[ChatTurn]) -> str:
    """Render a chat transcript as a single completion prompt."""
    labels = {"system": "", "user": "Player: ", "assistant": "Game Master: "}
    parts = [f"{labels.get(m['role'], '')}{m['content']}" for m in messages]
    return "\n\n".join(parts) + "\n\nGame Master:"


def _get(data, *path):
    """Walk nested dicts/lists, returning None at the first missing or mistyped step."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(data, list) or len(data) <= key:
                return None
        elif not isinstance(data, dict):
            return None
        else:
            data = data.get(key)
            continue
        data = data[key]
    return data


class HttpLLM:
    """Async HTTP client for chat backends.

    Supported formats:
      "openai"     — POST /v1/chat/completions  {"model": ..., "messages": [...]}
                     Response: {"choices": [{"message": {"content": "..."}}]}
      "ollama"     — POST /api/chat  {"model": ..., "messages": [...], "stream": false}
                     Response: {"message": {"content": "..."}}
      "koboldcpp"  — POST /api/v1/generate  {"prompt": <flattened transcript>}
                     Response: {"results": [{"text": "..."}]}

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:11434".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "openai".
        model:           Model identifier (openai and ollama formats).
        temperature:     Sampling temperature sent with every request.
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "openai",
        model: str = "",
        temperature: float = 0.8,
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._temperature = temperature
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, messages: list[ChatTurn]) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "ollama":
            url = f"{self._base_url}/api/chat"
            body: dict = {
                "messages": messages,
                "stream": False,
                "options": {"temperature": self._temperature},
            }
            if self._model:
                body["model"] = self._model
            return url, body

        if self._format == "koboldcpp":
            url = f"{self._base_url}/api/v1/generate"
            return url, {
                "prompt": flatten_transcript(messages),
                "temperature": self._temperature,
            }

        # openai (default)
        url = f"{self._base_url}/v1/chat/completions"
        body = {"messages": messages, "temperature": self._temperature}
        if self._model:
            body["model"] = self._model
        return url, body

    def _parse_response(self, data: dict) -> str:
        """Extract the reply text from the response body."""
        if self._format == "ollama":
            content = _get(data, "message", "content")
            if not isinstance(content, str):
                raise LLMError("Unexpected response format from Ollama backend")
            return content

        if self._format == "koboldcpp":
            text = _get(data, "results", 0, "text")
            if not isinstance(text, str):
                raise LLMError("Unexpected response format from KoboldCpp backend")
            return text

        content = _get(data, "choices", 0, "message", "content")
        if not isinstance(content, str):
            raise LLMError("Unexpected response format from OpenAI-compatible backend")
        return content

    async def __call__(self, stage: str, messages: list[ChatTurn]) -> str:
        url, body = self._build_request(messages)
        logger.debug("llm call stage=%s url=%s turns=%d", stage, url, len(messages))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request to {self._base_url} failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise LLMError("LLM backend returned an unexpected body")
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM — echoes the player; useful for wiring checks
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the last user message as the narrator's reply. No network calls.

    The reply carries no <game_state> block, so the game stays Idle.
    """

    async def __call__(self, stage: str, messages: list[ChatTurn]) -> str:
        logger.debug("EchoLLM stage=%s turns=%d", stage, len(messages))
        for message in reversed(messages):
            if message["role"] == "user":
                return message["content"]
        return ""


# ---------------------------------------------------------------------------
# LLMError — raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""

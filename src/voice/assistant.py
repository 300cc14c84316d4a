"""
Assistant query clients.

The controller only needs `submit(history) -> stream of text chunks`. Two
implementations:

- `dashboard`: the dashboard's own chat endpoint (POST {"messages": [...]}) which
  streams plain text or AI-SDK style `0:"chunk"` lines
- `openai`: OpenAI-compatible chat completions streaming
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog
from openai import AsyncOpenAI

from src.voice.config import get_config
from src.voice.errors import AssistantQueryFailed

logger = structlog.get_logger(__name__)


class AssistantClient(ABC):
    name: str = "assistant"

    @abstractmethod
    def submit(self, history: List[Dict[str, str]]) -> AsyncIterator[str]:
        """
        Stream the assistant's reply to `history`.

        Raises:
            AssistantQueryFailed: network/backend failure (before or mid-stream)
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None


def decode_stream_line(line: str) -> Optional[str]:
    """
    Decode one line of the dashboard chat stream.

    - `0:"text"` / `0:text`: AI SDK text part (JSON string or raw)
    - `0"text`: legacy JSON-ish prefix
    - `data:` / `event:` lines are SSE framing and carry no text
    - anything else non-blank is direct text
    """
    if not line or not line.strip():
        return None
    if line.startswith("data:") or line.startswith("event:"):
        return None
    if line.startswith("0:"):
        payload = line[2:]
        if payload.startswith('"'):
            try:
                decoded = json.loads(payload)
            except json.JSONDecodeError:
                return payload
            return decoded if isinstance(decoded, str) else payload
        return payload
    if line.startswith('0"'):
        return line[2:]
    return line


class DashboardAssistantClient(AssistantClient):
    name = "dashboard"

    def __init__(
        self,
        config: Optional[Any] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config()
        self._url = self.config.assistant_url
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.assistant_timeout_seconds, connect=10.0),
            )
        return self._client

    async def submit(self, history: List[Dict[str, str]]) -> AsyncIterator[str]:
        client = self._get_client()
        chunks = 0
        plain_lines = 0
        try:
            async with client.stream("POST", self._url, json={"messages": history}) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        "Assistant endpoint returned error",
                        status_code=response.status_code,
                        response=body[:200],
                    )
                    raise AssistantQueryFailed(f"HTTP error! status: {response.status_code}")

                async for line in response.aiter_lines():
                    text = decode_stream_line(line)
                    if not text:
                        continue
                    is_plain = not (line.startswith("0:") or line.startswith('0"'))
                    if is_plain:
                        # aiter_lines() strips newlines between direct-text lines.
                        if plain_lines:
                            text = "\n" + text
                        plain_lines += 1
                    chunks += 1
                    yield text
        except httpx.HTTPError as e:
            logger.error("Assistant request failed", error_type=type(e).__name__, error=str(e))
            raise AssistantQueryFailed(f"Assistant request failed: {e}") from e

        logger.debug("Assistant stream completed", chunks=chunks)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None


def get_system_prompt() -> str:
    """System prompt for the dashboard assistant when it runs on a raw LLM."""
    return """You are a personal productivity assistant embedded in the user's dashboard.
You help with habits, goals, fitness, trading, relationships and rewards.

CORE BEHAVIORS:
- Be conversational and concise - replies are often read aloud
- Help plan the day and prioritize tasks based on the user's goals
- Suggest concrete next steps
- If you don't understand something, ask for clarification

RESPONSE STYLE:
- Start responses directly - no "Sure!" or "Of course!"
- Prefer short paragraphs over long lists
- Keep technical terms simple"""


class OpenAIAssistantClient(AssistantClient):
    """
    OpenAI chat completions with streaming.

    History comes from the conversation log; only the system prompt is added here.
    """

    name = "openai"

    def __init__(self, config: Optional[Any] = None, *, client: Optional[AsyncOpenAI] = None):
        self.config = config or get_config()
        self.model = self.config.openai_model
        self._client = client or AsyncOpenAI(api_key=self.config.openai_api_key)

    async def submit(self, history: List[Dict[str, str]]) -> AsyncIterator[str]:
        messages = [{"role": "system", "content": get_system_prompt()}]
        messages.extend(history)

        try:
            stream = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=True,
                temperature=0.7,
            )
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except AssistantQueryFailed:
            raise
        except Exception as e:
            logger.error("LLM generation failed", model=self.model, error=str(e))
            raise AssistantQueryFailed(f"LLM generation failed: {e}") from e

    async def close(self) -> None:
        await self._client.close()


def create_assistant(config: Optional[Any] = None) -> AssistantClient:
    config = config or get_config()
    provider = (config.assistant_provider or "dashboard").strip().lower()
    if provider == "dashboard":
        return DashboardAssistantClient(config)
    if provider == "openai":
        return OpenAIAssistantClient(config)
    raise ValueError(f"Unsupported ASSISTANT_PROVIDER: {config.assistant_provider}")

"""ChatCompletionsClient - streaming HTTP client for OpenAI-compatible chat endpoints."""

import asyncio
import json
import logging
from typing import AsyncIterator

import aiohttp
from agent.exceptions import ModelStreamError

logger = logging.getLogger(__name__)


class ChatStream:
    """An open streaming response. Iterate for delta dicts, then ``aclose()``."""

    def __init__(self, session: aiohttp.ClientSession, response: aiohttp.ClientResponse):
        self._session = session
        self._response = response
        self._closed = False

    def __aiter__(self) -> AsyncIterator[dict]:
        return self._iter_deltas()

    async def _iter_deltas(self) -> AsyncIterator[dict]:
        try:
            async for raw_line in self._response.content:
                delta, done = self.parse_sse_line(raw_line)
                if done:
                    return
                if delta is not None:
                    yield delta
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ModelStreamError(f"Model stream interrupted: {e}") from e

    @staticmethod
    def parse_sse_line(raw_line: bytes | str) -> tuple[dict | None, bool]:
        """
        Parse one server-sent-event line.
        Returns (delta, done): delta is None for blank lines, comments and
        chunks without choices; done is True on the [DONE] sentinel.
        """
        line = raw_line.decode("utf-8", errors="replace") if isinstance(raw_line, bytes) else raw_line
        line = line.strip()
        if not line or not line.startswith("data:"):
            return None, False
        payload = line[len("data:"):].strip()
        if payload == "[DONE]":
            return None, True
        try:
            chunk = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed stream chunk: %s", payload[:200])
            return None, False
        choices = chunk.get("choices") or []
        if not choices:
            return None, False
        return choices[0].get("delta") or {}, False

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response.release()
        await self._session.close()


class ChatCompletionsClient:
    """Direct async HTTP client for a /chat/completions endpoint."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434/v1",
        api_key: str = "",
        connect_timeout: float = 5.0,
        read_timeout: float = 120.0,
        temperature: float = 0.7,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.temperature = temperature

    @classmethod
    def from_config(cls, config) -> "ChatCompletionsClient":
        return cls(
            base_url=config.chat_model.base_url,
            api_key=config.chat_model.api_key,
            connect_timeout=config.provider.connect_timeout,
            read_timeout=config.provider.read_timeout,
            temperature=config.chat_model.temperature,
        )

    async def open_stream(
        self,
        messages: list[dict],
        model: str,
        tools: list[dict] | None = None,
    ) -> ChatStream:
        """
        POST /chat/completions with stream=true.
        Returns once response headers arrive; raises ModelStreamError on any
        connection failure or non-200 status.
        """
        payload = self.build_payload(messages, model, tools)
        session = aiohttp.ClientSession(timeout=self._timeout(), headers=self._headers())
        try:
            response = await session.post(f"{self.base_url}/chat/completions", json=payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await session.close()
            raise ModelStreamError(f"Cannot connect to model at {self.base_url}: {e}") from e

        if response.status != 200:
            body = await response.text()
            response.release()
            await session.close()
            raise ModelStreamError(f"Model request failed (HTTP {response.status}): {body[:500]}")

        return ChatStream(session, response)

    def build_payload(self, messages: list[dict], model: str, tools: list[dict] | None) -> dict:
        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
            "temperature": self.temperature,
        }
        if tools:
            payload["tools"] = [{"type": "function", "function": schema} for schema in tools]
        return payload

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _timeout(self) -> aiohttp.ClientTimeout:
        """Build a client timeout configuration from settings."""
        return aiohttp.ClientTimeout(
            total=None,
            connect=self.connect_timeout,
            sock_connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )

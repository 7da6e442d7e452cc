"""
OpenAI-compatible chat-completion backend.

Works with any endpoint that speaks ``POST {api_url}/chat/completions``
(OpenAI, OpenRouter, vLLM, Ollama's OpenAI shim, ...).
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientTimeout

from papertable.application.ports.completion_port import StreamCallbacks
from papertable.domain.errors import ConfigurationError, GenerationError
from papertable.domain.model_config import ModelConfig

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def build_messages(system: str, user: str) -> List[Dict[str, str]]:
    messages: List[Dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": user})
    return messages


def parse_sse_line(line: str) -> Optional[str]:
    """
    Return the content delta carried by one SSE line.

    ``None`` for lines without a token (comments, keep-alives, role-only
    deltas); ``DONE_SENTINEL`` at the end of the stream.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if payload == DONE_SENTINEL:
        return DONE_SENTINEL
    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed SSE chunk: {payload[:80]}")
        return None
    choices = chunk.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    return delta.get("content") or None


class OpenAICompatibleBackend:
    """CompletionBackendPort over aiohttp."""

    def __init__(self, *, timeout: int = 120, session: Optional[aiohttp.ClientSession] = None):
        self.timeout = ClientTimeout(total=timeout)
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    @staticmethod
    def _headers(model: ModelConfig) -> Dict[str, str]:
        if not model.api_key:
            raise ConfigurationError(f"API key is missing for model '{model.name}'")
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {model.api_key}",
        }

    async def complete(self, system: str, user: str, model: ModelConfig) -> str:
        headers = self._headers(model)
        body: Dict[str, Any] = {"model": model.model, "messages": build_messages(system, user)}
        session = await self._get_session()
        try:
            async with session.post(model.completions_endpoint, json=body, headers=headers) as response:
                if response.status != 200:
                    text = await response.text()
                    raise GenerationError(
                        f"Completion API error {response.status}: {text[:300]}"
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise GenerationError(f"Completion request failed: {exc}") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        return message.get("content") or ""

    async def complete_stream(
        self,
        system: str,
        user: str,
        model: ModelConfig,
        callbacks: StreamCallbacks,
    ) -> str:
        parts: List[str] = []
        try:
            headers = self._headers(model)
            body: Dict[str, Any] = {
                "model": model.model,
                "messages": build_messages(system, user),
                "stream": True,
            }
            session = await self._get_session()
            async with session.post(model.completions_endpoint, json=body, headers=headers) as response:
                if response.status != 200:
                    text = await response.text()
                    raise GenerationError(
                        f"Completion API error {response.status}: {text[:300]}"
                    )
                async for raw in response.content:
                    token = parse_sse_line(raw.decode("utf-8", errors="replace"))
                    if token is None:
                        continue
                    if token == DONE_SENTINEL:
                        break
                    parts.append(token)
                    if callbacks.on_token:
                        callbacks.on_token(token)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            error = GenerationError(f"Streaming request failed: {exc}")
            if callbacks.on_error:
                callbacks.on_error(error)
            raise error from exc
        except (GenerationError, ConfigurationError) as exc:
            if callbacks.on_error:
                callbacks.on_error(exc)
            raise

        full_text = "".join(parts)
        if callbacks.on_complete:
            callbacks.on_complete(full_text)
        return full_text

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

"""HTTP client for the Anthropic Messages API."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Sequence

import aiohttp

from parley.config import DEFAULT_MODEL
from parley.core.models import ConversationMessage
from parley.errors import GenerationError, GenerationHTTPError
from parley.generation.prompt import ASSISTANT_NAME, build_messages, build_system_prompt

log = logging.getLogger("generation")

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
REQUEST_TIMEOUT_S = 30
TEMPERATURE = 0.7


class AnthropicGenerator:
    """Turns a context window into a single assistant reply."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
        assistant_name: str = ASSISTANT_NAME,
        api_url: str = API_URL,
        timeout_s: float = REQUEST_TIMEOUT_S,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.assistant_name = assistant_name
        self.api_url = api_url
        self.timeout_s = timeout_s

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

    def build_payload(self, context: Sequence[ConversationMessage]) -> dict[str, object]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": TEMPERATURE,
            "system": build_system_prompt(context, assistant_name=self.assistant_name),
            "messages": build_messages(context, assistant_name=self.assistant_name),
        }

    async def request_json(
        self, session: aiohttp.ClientSession, method: str, url: str, **kwargs
    ) -> object | None:
        async with session.request(method, url, **kwargs) as resp:
            text = await resp.text()
            if resp.status >= 400:
                detail = text.strip() or resp.reason
                raise GenerationHTTPError(
                    resp.status, method=method, url=url, detail=detail
                )
            if not text:
                return None
            try:
                return json.loads(text)
            except json.JSONDecodeError as e:
                raise GenerationError(f"invalid JSON from backend: {e}") from e

    async def generate(self, context: Sequence[ConversationMessage]) -> str:
        payload = self.build_payload(context)
        if not payload["messages"]:
            raise GenerationError("no user message in context")

        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            async with aiohttp.ClientSession(
                timeout=timeout, headers=self._headers()
            ) as session:
                response = await self.request_json(
                    session, "POST", self.api_url, json=payload
                )
        except GenerationError:
            raise
        except asyncio.TimeoutError as e:
            raise GenerationError(
                f"backend request timed out after {self.timeout_s}s"
            ) from e
        except aiohttp.ClientError as e:
            raise GenerationError(f"backend request failed: {e}") from e

        return self.extract_text(response)

    @staticmethod
    def extract_text(response: object) -> str:
        if not isinstance(response, dict):
            raise GenerationError("unexpected backend response")
        blocks = response.get("content")
        parts: list[str] = []
        if isinstance(blocks, list):
            for block in blocks:
                if not isinstance(block, dict) or block.get("type") != "text":
                    continue
                text = block.get("text")
                if isinstance(text, str):
                    parts.append(text)
        reply = "".join(parts).strip()
        if not reply:
            raise GenerationError("no content in backend response")
        return reply

"""
Chat Proxy — the thin `/api/chat` route's provider call.

Forwards a single student message to OpenAI behind a fixed tutor
instruction. The credential is read from the process environment on
every request, so fixing the configuration makes the next request work
without a restart. One client is kept per credential and replaced when
the credential changes.
"""
from __future__ import annotations

import os
import structlog
from typing import Optional

import httpx
import openai
from openai import AsyncOpenAI

from config.settings import ProxyConfig, get_settings

logger = structlog.get_logger()


class ChatProxyError(Exception):
    """Carries the HTTP status and client-facing message for a failed proxy call."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(message)


class ChatProxy:

    def __init__(self, config: ProxyConfig = None, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config or get_settings().proxy
        self._http_client = http_client
        self._client: Optional[AsyncOpenAI] = None
        self._client_key = ""

    def _api_key(self) -> str:
        return os.environ.get(self.config.api_key_env, "")

    async def _get_client(self, api_key: str) -> AsyncOpenAI:
        if self._client is not None and self._client_key == api_key:
            return self._client
        if self._client is not None and self._http_client is None:
            # an injected http client outlives the key
            await self._client.close()
        self._client = AsyncOpenAI(api_key=api_key, http_client=self._http_client, max_retries=0)
        self._client_key = api_key
        logger.debug("chat_proxy_client_created", model=self.config.model)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._client_key = ""

    async def complete(self, message: str) -> str:
        api_key = self._api_key()
        if not api_key:
            logger.error("chat_proxy_api_key_missing", env=self.config.api_key_env)
            raise ChatProxyError(
                500,
                f"OpenAI API key is not configured. Please set {self.config.api_key_env} "
                "in your environment variables.",
            )

        client = await self._get_client(api_key)
        try:
            completion = await client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": self.config.system_prompt},
                    {"role": "user", "content": message},
                ],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.APIStatusError as e:
            logger.error("chat_proxy_provider_error", status=e.status_code, error=e.message)
            raise ChatProxyError(e.status_code or 500, f"OpenAI API error: {e.message}") from e
        except openai.APIError as e:
            logger.error("chat_proxy_provider_unreachable", error=e.message)
            raise ChatProxyError(500, f"OpenAI API error: {e.message}") from e

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            logger.error("chat_proxy_empty_completion", model=self.config.model)
            raise ChatProxyError(500, "No response from AI")
        return content

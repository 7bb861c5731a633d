"""
Tutor Request Client — one chat-completion request per turn.

Serializes the session history behind a language-specific system
instruction, posts it to an OpenAI-compatible endpoint, and returns a
`TutorResponse`. A payload that is not the expected JSON shape is not an
error: the raw text becomes the answer.

Retries are the orchestrator's call, never this client's.
"""
from __future__ import annotations

import json
import structlog
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from config.settings import LLMConfig, get_settings
from models.schemas import Language, Message, TutorResponse
from tutor.prompts import system_prompt
from voice.errors import NetworkError, RemoteServiceError

logger = structlog.get_logger()


def format_messages(history: list[Message], language: Language) -> list[dict[str, str]]:
    """Oldest-first history → chat messages with the system instruction prepended."""
    return [{"role": "system", "content": system_prompt(language)}] + [
        {"role": m.chat_role, "content": m.content} for m in history
    ]


def parse_tutor_payload(text: str) -> TutorResponse:
    """
    Parse the model's answer. Anything that is not a JSON object with a
    non-empty `answer` degrades to the raw text with no follow-ups.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        logger.warning("malformed_tutor_response", reason="not_json", chars=len(text))
        return TutorResponse(answer=text)

    if not isinstance(data, dict):
        logger.warning("malformed_tutor_response", reason="not_object", chars=len(text))
        return TutorResponse(answer=text)

    try:
        return TutorResponse.model_validate(data)
    except ValidationError as e:
        logger.warning("malformed_tutor_response", reason="missing_answer",
                       errors=e.error_count())
        return TutorResponse(answer=text)


def _provider_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or ""
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return response.reason_phrase or ""


def _completion_text(body_text: str) -> Optional[str]:
    """
    Pull the model's text out of a response body. Understands the
    chat-completions envelope and the local proxy's `{response}`; any
    other body is taken as the payload itself.
    """
    try:
        body = json.loads(body_text)
    except (json.JSONDecodeError, TypeError):
        return body_text

    if isinstance(body, dict):
        if "choices" in body:
            try:
                return body["choices"][0]["message"]["content"]
            except (IndexError, KeyError, TypeError):
                return None
        if isinstance(body.get("response"), str) and "answer" not in body:
            return body["response"]
    return body_text


class TutorRequestClient:
    """
    Usage:
        client = TutorRequestClient()
        reply = await client.send_turn(session.history(), Language.ENGLISH)
    """

    def __init__(
        self,
        config: LLMConfig = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or get_settings().llm
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url.rstrip("/"),
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=httpx.Timeout(self.config.timeout_seconds, connect=10.0),
                transport=self._transport,
            )
        return self._client

    def build_payload(self, history: list[Message], language: Language) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": format_messages(history, language),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
        }

    async def send_turn(self, history: list[Message], language: Language) -> TutorResponse:
        if not self.config.api_key:
            logger.error("tutor_api_key_missing")
            raise RemoteServiceError(None, "API key not configured")

        client = await self._get_client()
        payload = self.build_payload(history, language)
        try:
            response = await client.post("/chat/completions", json=payload)
        except httpx.TransportError as e:
            logger.error("tutor_request_unreachable", error=str(e), kind=type(e).__name__)
            raise NetworkError(str(e) or "Failed to reach the tutor service") from e
        except httpx.HTTPError as e:
            # body undecodable, redirect loop and the like: no usable answer came back
            logger.error("tutor_request_failed", error=str(e), kind=type(e).__name__)
            raise NetworkError(str(e) or "Tutor service returned an unusable response") from e

        if not response.is_success:
            message = _provider_error_message(response)
            logger.error("tutor_request_rejected", status=response.status_code, error=message)
            raise RemoteServiceError(response.status_code, message)

        text = _completion_text(response.text)
        if not text:
            logger.error("tutor_response_empty", status=response.status_code)
            raise RemoteServiceError(response.status_code, "No response from tutor service")

        reply = parse_tutor_payload(text)
        logger.info("tutor_response_received", language=language.value,
                    follow_ups=len(reply.follow_up_questions))
        return reply

    async def close(self):
        if self._client:
            await self._client.aclose()

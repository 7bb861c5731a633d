"""
Tests for Tutor Request Client — payload shape, structured answers,
malformed-payload fallback and error classification.
"""
import json
import pytest

import httpx

from conftest import completion_body, json_handler, llm_config, mock_transport
from models.schemas import Language, Message, Sender, TutorResponse
from tutor.client import TutorRequestClient, format_messages, parse_tutor_payload
from tutor.prompts import SYSTEM_PROMPTS, system_prompt
from voice.errors import NetworkError, RemoteServiceError


def history():
    return [
        Message(content="What is osmosis?", sender=Sender.USER),
        Message(content="Diffusion of water.", sender=Sender.ASSISTANT),
        Message(content="Give an example", sender=Sender.USER),
    ]


class TestFormatMessages:
    def test_system_prompt_first(self):
        msgs = format_messages(history(), Language.ENGLISH)
        assert msgs[0] == {"role": "system", "content": system_prompt(Language.ENGLISH)}
        assert [m["role"] for m in msgs[1:]] == ["user", "assistant", "user"]
        assert msgs[-1]["content"] == "Give an example"

    def test_prompt_per_language(self):
        for language in Language:
            assert format_messages([], language)[0]["content"] == SYSTEM_PROMPTS[language]
        assert SYSTEM_PROMPTS[Language.ARABIC] != SYSTEM_PROMPTS[Language.ENGLISH]


class TestParseTutorPayload:
    def test_structured(self):
        reply = parse_tutor_payload(json.dumps({
            "answer": "X", "followUpQuestions": ["A", "B"], "explanation": "why",
        }))
        assert reply.answer == "X"
        assert reply.follow_up_questions == ["A", "B"]
        assert reply.explanation == "why"

    def test_plain_text_fallback(self):
        reply = parse_tutor_payload("Hello student")
        assert reply.answer == "Hello student"
        assert reply.follow_up_questions == []

    def test_object_without_answer_falls_back(self):
        text = json.dumps({"reply": "hi"})
        assert parse_tutor_payload(text).answer == text

    def test_non_list_follow_ups_dropped(self):
        reply = parse_tutor_payload(json.dumps({"answer": "X", "followUpQuestions": "A"}))
        assert reply.follow_up_questions == []

    def test_json_array_falls_back(self):
        assert parse_tutor_payload("[1, 2]").answer == "[1, 2]"


class TestTutorRequestClient:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = []
        body = completion_body(json.dumps({"answer": "X", "followUpQuestions": ["A", "B"]}))
        client = TutorRequestClient(llm_config(), transport=mock_transport(json_handler(200, body, seen)))

        reply = await client.send_turn(history(), Language.ARABIC)
        await client.close()

        assert isinstance(reply, TutorResponse)
        assert reply.answer == "X"
        assert reply.follow_up_questions == ["A", "B"]

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://llm.test/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        payload = json.loads(request.content)
        assert payload["model"] == "gpt-4o"
        assert payload["temperature"] == 0.7
        assert payload["max_tokens"] == 1000
        assert payload["response_format"] == {"type": "json_object"}
        assert payload["messages"][0]["content"] == SYSTEM_PROMPTS[Language.ARABIC]
        assert len(payload["messages"]) == 4

    @pytest.mark.asyncio
    async def test_non_json_content_becomes_answer(self):
        client = TutorRequestClient(
            llm_config(), transport=mock_transport(json_handler(200, completion_body("Hello student"))),
        )
        reply = await client.send_turn(history(), Language.ENGLISH)
        assert reply.answer == "Hello student"
        assert reply.follow_up_questions == []

    @pytest.mark.asyncio
    async def test_proxy_shaped_body(self):
        client = TutorRequestClient(
            llm_config(), transport=mock_transport(json_handler(200, {"response": "Hi there"})),
        )
        reply = await client.send_turn(history(), Language.ENGLISH)
        assert reply.answer == "Hi there"

    @pytest.mark.asyncio
    async def test_server_error_retryable(self):
        body = {"error": {"message": "upstream overloaded"}}
        client = TutorRequestClient(llm_config(), transport=mock_transport(json_handler(500, body)))
        with pytest.raises(RemoteServiceError) as exc:
            await client.send_turn(history(), Language.ENGLISH)
        assert exc.value.status == 500
        assert exc.value.retryable
        assert exc.value.provider_message == "upstream overloaded"

    @pytest.mark.asyncio
    async def test_client_error_terminal(self):
        body = {"error": {"message": "Invalid model"}}
        client = TutorRequestClient(llm_config(), transport=mock_transport(json_handler(400, body)))
        with pytest.raises(RemoteServiceError) as exc:
            await client.send_turn(history(), Language.ENGLISH)
        assert exc.value.status == 400
        assert not exc.value.retryable
        assert "Invalid model" in str(exc.value)

    @pytest.mark.asyncio
    async def test_rate_limited_upstream_retryable(self):
        client = TutorRequestClient(llm_config(), transport=mock_transport(json_handler(429, {})))
        with pytest.raises(RemoteServiceError) as exc:
            await client.send_turn(history(), Language.ENGLISH)
        assert exc.value.retryable

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = TutorRequestClient(llm_config(), transport=mock_transport(handler))
        with pytest.raises(NetworkError) as exc:
            await client.send_turn(history(), Language.ENGLISH)
        assert exc.value.retryable

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure", [httpx.DecodingError, httpx.TooManyRedirects])
    async def test_unusable_response_is_network_error(self, failure):
        def handler(request):
            raise failure("bad body", request=request)

        client = TutorRequestClient(llm_config(), transport=mock_transport(handler))
        with pytest.raises(NetworkError):
            await client.send_turn(history(), Language.ENGLISH)

    @pytest.mark.asyncio
    async def test_empty_content_is_error(self):
        client = TutorRequestClient(
            llm_config(), transport=mock_transport(json_handler(200, completion_body(None))),
        )
        with pytest.raises(RemoteServiceError):
            await client.send_turn(history(), Language.ENGLISH)

    @pytest.mark.asyncio
    async def test_missing_api_key_never_calls_out(self):
        seen = []
        client = TutorRequestClient(
            llm_config(api_key=""), transport=mock_transport(json_handler(200, {}, seen)),
        )
        with pytest.raises(RemoteServiceError) as exc:
            await client.send_turn(history(), Language.ENGLISH)
        assert exc.value.is_configuration_error
        assert seen == []

"""Tests for the Groq model capability and its wire conversion."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from conftest import VALID_KEY
from flowgate.capabilities.groq import GroqModel, build_messages, parse_message, tool_schema
from flowgate.core.credential_gate import CredentialGate
from flowgate.core.errors import MissingCredentialError, TransportFault
from flowgate.models.turns import (
    DirectAnswer,
    ModelPrompt,
    ToolCallRequest,
    ToolInvocation,
    ToolResultMessage,
    ToolSpec,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tool_call(call_id: str, name: str, arguments: str) -> SimpleNamespace:
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _message(content: str | None = None, tool_calls=None) -> SimpleNamespace:
    return SimpleNamespace(content=content, tool_calls=tool_calls)


class FakeCompletions:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[dict] = []

    async def create(self, **request):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


def _install(model: GroqModel, gate: CredentialGate, completions: FakeCompletions) -> None:
    model._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    model._client_key = gate.credential


def _completion(*messages) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=m) for m in messages])


# ---------------------------------------------------------------------------
# Test: wire conversion
# ---------------------------------------------------------------------------


class TestBuildMessages:
    def test_plain_prompt(self):
        messages = build_messages(ModelPrompt(user_message="hi", system_prompt="Be nice."))
        assert messages == [
            {"role": "system", "content": "Be nice."},
            {"role": "user", "content": "hi"},
        ]

    def test_no_system_prompt(self):
        assert build_messages(ModelPrompt(user_message="hi"))[0]["role"] == "user"

    def test_tool_rounds_are_replayed(self):
        request = ToolCallRequest(
            invocations=(ToolInvocation(call_id="c1", tool_name="web_search", arguments={"q": "x"}),)
        )
        prompt = ModelPrompt(user_message="hi").with_round(
            request, [ToolResultMessage(call_id="c1", tool_name="web_search", content="found")]
        )
        messages = build_messages(prompt)
        assistant, tool = messages[1], messages[2]
        assert assistant["role"] == "assistant"
        assert assistant["tool_calls"][0]["id"] == "c1"
        assert json.loads(assistant["tool_calls"][0]["function"]["arguments"]) == {"q": "x"}
        assert tool == {"role": "tool", "tool_call_id": "c1", "content": "found"}

    def test_tool_schema(self):
        schema = tool_schema(ToolSpec(name="read_file", description="Read"))
        assert schema["type"] == "function"
        assert schema["function"]["name"] == "read_file"
        assert schema["function"]["parameters"]["type"] == "object"


class TestParseMessage:
    def test_direct_answer(self):
        assert parse_message(_message("Hello")) == DirectAnswer(text="Hello")

    def test_empty_content(self):
        assert parse_message(_message(None)) == DirectAnswer(text="")

    def test_tool_calls(self):
        result = parse_message(
            _message(tool_calls=[_tool_call("c1", "web_search", '{"query": "rain"}')])
        )
        assert isinstance(result, ToolCallRequest)
        invocation = result.invocations[0]
        assert (invocation.call_id, invocation.tool_name) == ("c1", "web_search")
        assert invocation.arguments == {"query": "rain"}

    def test_non_object_arguments_are_wrapped(self):
        result = parse_message(_message(tool_calls=[_tool_call("c1", "echo", '"text"')]))
        assert result.invocations[0].arguments == {"input": "text"}

    def test_malformed_arguments(self):
        with pytest.raises(TransportFault, match="malformed arguments"):
            parse_message(_message(tool_calls=[_tool_call("c1", "echo", "{not json")]))


# ---------------------------------------------------------------------------
# Test: completions
# ---------------------------------------------------------------------------


class TestGroqModel:
    @pytest.mark.asyncio
    async def test_complete_offers_tools(self, gate):
        model = GroqModel(gate, model="test-model")
        completions = FakeCompletions(_completion(_message("ok")))
        _install(model, gate, completions)

        result = await model.complete(
            ModelPrompt(user_message="hi"), [ToolSpec(name="web_search")]
        )

        assert result == DirectAnswer(text="ok")
        request = completions.requests[0]
        assert request["model"] == "test-model"
        assert request["tool_choice"] == "auto"
        assert request["tools"][0]["function"]["name"] == "web_search"

    @pytest.mark.asyncio
    async def test_no_tools_omits_tool_choice(self, gate):
        model = GroqModel(gate, temperature=0.2)
        completions = FakeCompletions(_completion(_message("ok")))
        _install(model, gate, completions)

        await model.complete(ModelPrompt(user_message="hi"), [])

        assert "tools" not in completions.requests[0]
        assert completions.requests[0]["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_api_error_is_transport_fault(self, gate):
        model = GroqModel(gate)
        _install(model, gate, FakeCompletions(OpenAIError("rate limited")))
        with pytest.raises(TransportFault, match="rate limited"):
            await model.complete(ModelPrompt(user_message="hi"), [])

    @pytest.mark.asyncio
    async def test_no_choices(self, gate):
        model = GroqModel(gate)
        _install(model, gate, FakeCompletions(_completion()))
        with pytest.raises(TransportFault, match="no choices"):
            await model.complete(ModelPrompt(user_message="hi"), [])

    @pytest.mark.asyncio
    async def test_missing_credential(self, empty_gate):
        model = GroqModel(empty_gate)
        with pytest.raises(MissingCredentialError):
            await model.complete(ModelPrompt(user_message="hi"), [])

    def test_client_follows_credential(self, gate):
        model = GroqModel(gate)
        first = model._get_client()
        assert model._get_client() is first
        gate.set("gsk_rotatedKey456")
        assert model._get_client() is not first
        assert model._client_key == "gsk_rotatedKey456"
        assert VALID_KEY not in repr(gate)

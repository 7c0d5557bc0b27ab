import json

import httpx
import pytest
import respx

from q_cli.backends.anthropic import AnthropicBackend
from q_cli.backends.base import GenerateRequest
from q_cli.backends.ollama import OllamaBackend
from q_cli.backends.openai_compat import OpenAICompatBackend
from q_cli.types import ToolCall

OPENAI_URL = "http://localhost:8080/v1/chat/completions"
OLLAMA_URL = "http://localhost:11434/api/chat"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


@pytest.fixture
def generate_request():
    return GenerateRequest(
        system="System prompt",
        messages=[{"role": "user", "content": "Hello"}],
        model="test-model",
    )


@pytest.fixture
def tools():
    return [{
        "type": "function",
        "function": {
            "name": "weather_get_forecast",
            "description": "Get current weather",
            "parameters": {
                "type": "object",
                "properties": {
                    "location": {"type": "string"}
                }
            }
        }
    }]


class TestOpenAICompatBackend:
    @pytest.fixture
    def backend(self):
        return OpenAICompatBackend(base_url="http://localhost:8080/v1/", api_key="sk-test")

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_with_tools_content(self, backend, generate_request, tools):
        route = respx.post(OPENAI_URL).mock(
            return_value=httpx.Response(200, json={
                "choices": [{
                    "message": {"role": "assistant", "content": "Hello!"},
                    "finish_reason": "stop"
                }],
                "usage": {"prompt_tokens": 10, "completion_tokens": 5},
                "model": "test-model"
            })
        )

        response = await backend.generate_with_tools(generate_request, tools)

        assert response.content == "Hello!"
        assert response.tool_calls == []
        assert response.tokens_prompt == 10
        assert response.tokens_completion == 5

        sent = json.loads(route.calls.last.request.content)
        assert sent["messages"][0] == {"role": "system", "content": "System prompt"}
        assert sent["tools"] == tools
        assert sent["tool_choice"] == "auto"
        assert sent["stream"] is False
        assert route.calls.last.request.headers["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_with_tools_normalizes_calls(self, backend, generate_request, tools):
        respx.post(OPENAI_URL).mock(
            return_value=httpx.Response(200, json={
                "choices": [{
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [{
                            "id": "call_123",
                            "type": "function",
                            "function": {
                                "name": "weather_get_forecast",
                                "arguments": '{"location": "San Francisco"}'
                            }
                        }]
                    },
                    "finish_reason": "tool_calls"
                }],
                "model": "test-model"
            })
        )

        response = await backend.generate_with_tools(generate_request, tools)

        assert response.content == ""
        assert response.finish_reason == "tool_calls"
        assert response.tool_calls == [
            ToolCall(
                name="weather_get_forecast",
                arguments={"location": "San Francisco"},
                id="call_123",
            )
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test_unparseable_arguments_are_flagged(self, backend, generate_request, tools):
        respx.post(OPENAI_URL).mock(
            return_value=httpx.Response(200, json={
                "choices": [{
                    "message": {
                        "content": None,
                        "tool_calls": [{
                            "id": "call_9",
                            "type": "function",
                            "function": {"name": "weather_get_forecast", "arguments": "{loc"}
                        }]
                    },
                    "finish_reason": "tool_calls"
                }]
            })
        )

        response = await backend.generate_with_tools(generate_request, tools)

        call = response.tool_calls[0]
        assert call.id == "call_9"
        assert call.arguments == {}
        assert call.arguments_error is not None

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_omits_tools(self, backend, generate_request):
        route = respx.post(OPENAI_URL).mock(
            return_value=httpx.Response(200, json={
                "choices": [{"message": {"content": "hi"}, "finish_reason": "stop"}]
            })
        )

        response = await backend.generate(generate_request)

        assert response.content == "hi"
        assert "tools" not in json.loads(route.calls.last.request.content)

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_stream_yields_deltas(self, backend, generate_request):
        body = "\n\n".join([
            'data: {"choices": [{"delta": {"role": "assistant"}}]}',
            'data: {"choices": [{"delta": {"content": "Hel"}}]}',
            ": keep-alive",
            'data: {"choices": [{"delta": {"content": "lo"}}]}',
            'data: {"choices": []}',
            "data: [DONE]",
            'data: {"choices": [{"delta": {"content": "ignored"}}]}',
        ])
        respx.post(OPENAI_URL).mock(return_value=httpx.Response(200, text=body))

        fragments = [f async for f in backend.generate_stream(generate_request)]

        assert fragments == ["Hel", "lo"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_errors_propagate(self, backend, generate_request):
        respx.post(OPENAI_URL).mock(return_value=httpx.Response(401))

        with pytest.raises(httpx.HTTPStatusError):
            await backend.generate(generate_request)

        with pytest.raises(httpx.HTTPStatusError):
            async for _ in backend.generate_stream(generate_request):
                pass


class TestOllamaBackend:
    @pytest.fixture
    def backend(self):
        return OllamaBackend()

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_stream_reads_ndjson(self, backend, generate_request):
        lines = [
            {"message": {"role": "assistant", "content": "one "}, "done": False},
            {"message": {"role": "assistant", "content": "two"}, "done": False},
            {"message": {"role": "assistant", "content": ""}, "done": True},
        ]
        route = respx.post(OLLAMA_URL).mock(
            return_value=httpx.Response(200, text="\n".join(json.dumps(x) for x in lines))
        )

        fragments = [f async for f in backend.generate_stream(generate_request)]

        assert fragments == ["one ", "two"]
        assert json.loads(route.calls.last.request.content)["stream"] is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_stream_raises_on_error_line(self, backend, generate_request):
        respx.post(OLLAMA_URL).mock(
            return_value=httpx.Response(200, text=json.dumps({"error": "model not found"}))
        )

        with pytest.raises(RuntimeError, match="model not found"):
            async for _ in backend.generate_stream(generate_request):
                pass

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_with_tools(self, backend, generate_request, tools):
        respx.post(OLLAMA_URL).mock(
            return_value=httpx.Response(200, json={
                "model": "test-model",
                "message": {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [{
                        "function": {
                            "name": "weather_get_forecast",
                            "arguments": {"location": "Oslo"}
                        }
                    }]
                },
                "done": True,
                "prompt_eval_count": 7,
                "eval_count": 3,
            })
        )

        response = await backend.generate_with_tools(generate_request, tools)

        assert response.finish_reason == "tool_calls"
        assert response.tool_calls[0].name == "weather_get_forecast"
        assert response.tool_calls[0].arguments == {"location": "Oslo"}
        assert response.tokens_prompt == 7

    @pytest.mark.asyncio
    @respx.mock
    async def test_tool_call_history_uses_object_arguments(self, backend, tools):
        route = respx.post(OLLAMA_URL).mock(
            return_value=httpx.Response(200, json={"message": {"content": "done"}, "done": True})
        )
        request = GenerateRequest(
            system="sys",
            model="m",
            messages=[
                {"role": "user", "content": "weather?"},
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [{
                        "id": "call_1_0",
                        "type": "function",
                        "function": {
                            "name": "weather_get_forecast",
                            "arguments": '{"location": "Oslo"}'
                        }
                    }],
                },
                {"role": "tool", "tool_call_id": "call_1_0", "content": "sunny"},
            ],
        )

        await backend.generate_with_tools(request, tools)

        sent = json.loads(route.calls.last.request.content)["messages"]
        assert sent[0] == {"role": "system", "content": "sys"}
        assert sent[2]["content"] == ""
        assert sent[2]["tool_calls"][0]["function"]["arguments"] == {"location": "Oslo"}
        assert sent[3]["content"] == "sunny"


class TestAnthropicBackend:
    @pytest.fixture
    def backend(self):
        return AnthropicBackend(api_key="sk-ant-test")

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_stream_reads_text_deltas(self, backend, generate_request):
        events = [
            {"type": "message_start", "message": {"id": "msg_1"}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "lo"}},
            {"type": "content_block_stop", "index": 0},
            {"type": "message_stop"},
        ]
        body = "".join(f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events)
        route = respx.post(ANTHROPIC_URL).mock(return_value=httpx.Response(200, text=body))

        fragments = [f async for f in backend.generate_stream(generate_request)]

        assert fragments == ["Hel", "lo"]
        sent = route.calls.last.request
        assert sent.headers["x-api-key"] == "sk-ant-test"
        assert sent.headers["anthropic-version"] == "2023-06-01"
        payload = json.loads(sent.content)
        assert payload["system"] == "System prompt"
        assert payload["messages"] == [{"role": "user", "content": "Hello"}]
        assert payload["max_tokens"] == 4096
        assert payload["stream"] is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_error_event_raises(self, backend, generate_request):
        body = 'event: error\ndata: {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}\n\n'
        respx.post(ANTHROPIC_URL).mock(return_value=httpx.Response(200, text=body))

        with pytest.raises(RuntimeError, match="Overloaded"):
            async for _ in backend.generate_stream(generate_request):
                pass

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_with_tools_translates_both_ways(self, backend, tools):
        route = respx.post(ANTHROPIC_URL).mock(
            return_value=httpx.Response(200, json={
                "content": [
                    {"type": "text", "text": "Checking."},
                    {
                        "type": "tool_use",
                        "id": "toolu_2",
                        "name": "weather_get_forecast",
                        "input": {"location": "Bergen"},
                    },
                ],
                "model": "claude-test",
                "stop_reason": "tool_use",
                "usage": {"input_tokens": 20, "output_tokens": 8},
            })
        )
        request = GenerateRequest(
            system="sys",
            model="claude-test",
            messages=[
                {"role": "user", "content": "weather?"},
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "toolu_1",
                            "type": "function",
                            "function": {
                                "name": "weather_get_forecast",
                                "arguments": '{"location": "Oslo"}',
                            },
                        },
                        {
                            "id": "toolu_1b",
                            "type": "function",
                            "function": {"name": "weather_get_forecast", "arguments": "{}"},
                        },
                    ],
                },
                {"role": "tool", "tool_call_id": "toolu_1", "content": "sunny"},
                {"role": "tool", "tool_call_id": "toolu_1b", "content": "rain"},
            ],
        )

        response = await backend.generate_with_tools(request, tools)

        assert response.content == "Checking."
        assert response.finish_reason == "tool_calls"
        assert response.tool_calls == [
            ToolCall(name="weather_get_forecast", arguments={"location": "Bergen"}, id="toolu_2")
        ]
        assert response.tokens_prompt == 20

        payload = json.loads(route.calls.last.request.content)
        assert payload["tools"] == [{
            "name": "weather_get_forecast",
            "description": "Get current weather",
            "input_schema": {"type": "object", "properties": {"location": {"type": "string"}}},
        }]
        assert payload["tool_choice"] == {"type": "auto"}
        messages = payload["messages"]
        assert len(messages) == 3
        assert messages[1]["content"][0] == {
            "type": "tool_use",
            "id": "toolu_1",
            "name": "weather_get_forecast",
            "input": {"location": "Oslo"},
        }
        assert messages[2] == {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "toolu_1", "content": "sunny"},
                {"type": "tool_result", "tool_use_id": "toolu_1b", "content": "rain"},
            ],
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_errors_propagate(self, backend, generate_request):
        respx.post(ANTHROPIC_URL).mock(return_value=httpx.Response(529))

        with pytest.raises(httpx.HTTPStatusError):
            await backend.generate(generate_request)

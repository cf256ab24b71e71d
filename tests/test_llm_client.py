"""
Tests for the streaming model client.
"""

import pytest
from unittest.mock import patch

from langchain_core.messages import AIMessageChunk
from langchain_openai import ChatOpenAI

from pi_browser.config import AgentConfig
from pi_browser.conversation import Conversation
from pi_browser.errors import ModelClientError
from pi_browser.llm_client import ModelClient, ModelStream, create_chat_model

from fakes import ScriptedChatModel, text_turn, tool_turn


async def chunks(items):
    for item in items:
        if isinstance(item, Exception):
            raise item
        yield item


class TestModelStream:
    """Tests for partial events and assembly."""

    @pytest.mark.asyncio
    async def test_text_deltas(self):
        stream = ModelStream(chunks(text_turn("Hel", "lo")))

        events = [event async for event in stream]
        message = await stream.result()

        assert [(e.type, e.delta) for e in events] == [("text_delta", "Hel"), ("text_delta", "lo")]
        assert message.content == "Hello"
        assert message.tool_calls == []

    @pytest.mark.asyncio
    async def test_tool_call_events_and_assembly(self):
        stream = ModelStream(chunks(tool_turn(
            ("browser_navigate", {"url": "https://example.com"}),
            ("browser_snapshot", {}),
        )))

        events = [event async for event in stream]
        message = await stream.result()

        assert [(e.type, e.name) for e in events] == [
            ("tool_call_start", "browser_navigate"),
            ("tool_call_start", "browser_snapshot"),
        ]
        assert [(c["name"], c["args"], c["id"]) for c in message.tool_calls] == [
            ("browser_navigate", {"url": "https://example.com"}, "call_1"),
            ("browser_snapshot", {}, "call_2"),
        ]

    @pytest.mark.asyncio
    async def test_split_argument_chunks_merge(self):
        parts = [
            AIMessageChunk(content="", tool_call_chunks=[
                {"name": "browser_fill", "args": '{"selector": "#q", ', "id": "call_a", "index": 0},
            ]),
            AIMessageChunk(content="", tool_call_chunks=[
                {"name": None, "args": '"text": "cats"}', "id": None, "index": 0},
            ]),
        ]
        stream = ModelStream(chunks(parts))

        message = await stream.result()

        assert message.tool_calls[0]["args"] == {"selector": "#q", "text": "cats"}
        assert message.tool_calls[0]["id"] == "call_a"

    @pytest.mark.asyncio
    async def test_missing_ids_generated(self):
        stream = ModelStream(chunks(tool_turn(("browser_snapshot", {}), ids=False)))

        message = await stream.result()

        assert message.tool_calls[0]["id"].startswith("call_")

    @pytest.mark.asyncio
    async def test_unparseable_arguments_kept_as_invalid_calls(self):
        parts = [AIMessageChunk(content="", tool_call_chunks=[
            {"name": "browser_navigate", "args": "url=example.com", "id": None, "index": 0},
        ])]

        message = await ModelStream(chunks(parts)).result()

        assert message.tool_calls == []
        invalid = message.invalid_tool_calls[0]
        assert invalid["name"] == "browser_navigate"
        assert invalid["args"] == "url=example.com"
        assert invalid["id"].startswith("call_")

    @pytest.mark.asyncio
    async def test_result_drains_untouched_stream(self):
        stream = ModelStream(chunks(text_turn("done")))

        message = await stream.result()

        assert message.content == "done"

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        message = await ModelStream(chunks([])).result()

        assert message.content == ""
        assert message.tool_calls == []

    @pytest.mark.asyncio
    async def test_consumed_once(self):
        stream = ModelStream(chunks(text_turn("a")))
        [event async for event in stream]

        with pytest.raises(RuntimeError):
            stream.__aiter__()

    @pytest.mark.asyncio
    async def test_errors_wrapped(self):
        stream = ModelStream(chunks([AIMessageChunk(content="par"), ConnectionError("reset")]))

        with pytest.raises(ModelClientError, match="reset") as exc_info:
            [event async for event in stream]

        assert isinstance(exc_info.value.__cause__, ConnectionError)


class TestModelClient:
    """Tests for binding tools and calling the model."""

    @pytest.mark.asyncio
    async def test_stream_binds_conversation_tools(self):
        model = ScriptedChatModel([text_turn("hi")])
        conversation = Conversation("system")
        conversation.add_user("hello")

        message = await ModelClient(model).stream(conversation).result()

        assert message.content == "hi"
        assert [t["function"]["name"] for t in model.bound_tools][0] == "browser_navigate"
        assert model.calls[0][1].content == "hello"

    def test_bind_failure_wrapped(self):
        class Broken:
            def bind_tools(self, tools):
                raise NotImplementedError("no tool support")

        with pytest.raises(ModelClientError, match="no tool support"):
            ModelClient(Broken()).stream(Conversation("system"))


class TestCreateChatModel:
    """Tests for provider detection."""

    def test_local_endpoint_uses_openai_client(self):
        config = AgentConfig(model_endpoint="http://127.0.0.1:1234/v1", model="claude-local", api_key=None)

        model = create_chat_model(config)

        assert isinstance(model, ChatOpenAI)

    def test_anthropic_requires_optional_package(self):
        config = AgentConfig(model_endpoint="https://api.anthropic.com", model="claude-3-5-sonnet")

        with patch("pi_browser.llm_client._get_anthropic_client", return_value=None):
            with pytest.raises(ImportError, match="langchain-anthropic"):
                create_chat_model(config)

    def test_google_requires_optional_package(self):
        config = AgentConfig(model_endpoint="https://generativelanguage.googleapis.com", model="gemini-2.5-flash")

        with patch("pi_browser.llm_client._get_google_client", return_value=None):
            with pytest.raises(ImportError, match="langchain-google-genai"):
                create_chat_model(config)

"""
Tests for the agent loop.
"""

import asyncio
from io import StringIO

import pytest
from langchain_core.messages import AIMessageChunk, HumanMessage, SystemMessage, ToolMessage
from rich.console import Console

from pi_browser.agent import (
    MAX_TURNS_ERROR,
    NUDGE_MESSAGE,
    AgentLoop,
    AgentStatus,
    build_dispatcher,
    run_task,
)
from pi_browser.conversation import ImageContent, ToolOutput
from pi_browser.errors import ActionFailed, ModelClientError
from pi_browser.extension_tools import RemoteBackend
from pi_browser.llm_client import ModelClient
from pi_browser.logger import REDACTED, RunLogger
from pi_browser.remote import CommandChannel
from pi_browser.tool_router import ActionDispatcher

from fakes import RecordingBackend, ScriptedChatModel, text_turn, tool_turn


def make_loop(turns, backend=None, **kwargs):
    model = ScriptedChatModel(turns)
    backend = backend or RecordingBackend()
    loop = AgentLoop(ModelClient(model), ActionDispatcher(backend), **kwargs)
    return loop, model, backend


class TestAgentLoopTermination:
    """Tests for how a run ends."""

    @pytest.mark.asyncio
    async def test_navigate_then_report(self):
        loop, model, backend = make_loop([
            tool_turn(("browser_navigate", {"url": "https://example.com"})),
            text_turn("The title is ", "Example Domain."),
        ])

        result = await loop.run("Open example.com and report the title", max_turns=10)

        assert result.status is AgentStatus.SUCCESS
        assert result.final_answer == "The title is Example Domain."
        assert result.turns == 2
        assert result.tool_calls == 1
        assert len(model.calls) == 2
        conversation = result.conversation
        assert len(conversation.user_messages) == 1
        assert len(conversation.assistant_messages) == 2
        assert len(conversation.tool_results) == 1
        assert backend.calls == [("browser_navigate", {"url": "https://example.com"})]

    @pytest.mark.asyncio
    async def test_zero_turns_makes_no_model_call(self):
        loop, model, _ = make_loop([text_turn("never")])

        result = await loop.run("anything", max_turns=0)

        assert result.status is AgentStatus.MAX_TURNS
        assert result.error == MAX_TURNS_ERROR
        assert result.turns == 0
        assert model.calls == []

    @pytest.mark.parametrize("bad", [-1, 1.5, "3", None, True])
    @pytest.mark.asyncio
    async def test_invalid_max_turns(self, bad):
        loop, _, _ = make_loop([])

        with pytest.raises(ValueError):
            await loop.run("anything", max_turns=bad)

    @pytest.mark.asyncio
    async def test_turn_limit(self):
        loop, model, _ = make_loop([
            tool_turn(("browser_snapshot", {})),
            tool_turn(("browser_snapshot", {})),
            tool_turn(("browser_snapshot", {})),
        ])

        result = await loop.run("loop forever", max_turns=2)

        assert result.status is AgentStatus.MAX_TURNS
        assert result.error == "max turns exceeded"
        assert result.turns == 2
        assert len(model.calls) == 2

    @pytest.mark.asyncio
    async def test_stop_before_first_turn(self):
        stop = asyncio.Event()
        stop.set()
        loop, model, _ = make_loop([text_turn("never")], stop_event=stop)

        result = await loop.run("anything", max_turns=5)

        assert result.status is AgentStatus.STOPPED
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_stop_between_turns(self):
        stop = asyncio.Event()
        backend = RecordingBackend()

        async def execute_and_stop(name, args):
            stop.set()
            return ToolOutput("ok")

        backend.execute = execute_and_stop
        loop, model, _ = make_loop(
            [tool_turn(("browser_snapshot", {})), text_turn("never")],
            backend=backend,
            stop_event=stop,
        )

        result = await loop.run("anything", max_turns=5)

        assert result.status is AgentStatus.STOPPED
        assert result.turns == 1
        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self):
        loop, _, _ = make_loop([[RuntimeError("connection refused")]])

        with pytest.raises(ModelClientError, match="connection refused"):
            await loop.run("anything", max_turns=3)


class TestAgentLoopTurns:
    """Tests for what happens inside a turn."""

    @pytest.mark.asyncio
    async def test_nudge_on_empty_reply(self):
        loop, model, _ = make_loop([
            text_turn(""),
            text_turn("Done."),
        ])

        result = await loop.run("mission", max_turns=5)

        assert result.status is AgentStatus.SUCCESS
        assert result.turns == 2
        users = result.conversation.user_messages
        assert [m.content for m in users] == ["mission", NUDGE_MESSAGE]
        # The nudge is visible to the second model call
        assert model.calls[1][-1].content == NUDGE_MESSAGE

    @pytest.mark.asyncio
    async def test_nudge_counts_toward_budget(self):
        loop, model, _ = make_loop([text_turn(""), text_turn(""), text_turn("late")])

        result = await loop.run("mission", max_turns=2)

        assert result.status is AgentStatus.MAX_TURNS
        assert len(model.calls) == 2

    @pytest.mark.asyncio
    async def test_tool_calls_run_in_order(self):
        loop, _, backend = make_loop([
            tool_turn(
                ("browser_navigate", {"url": "https://example.com"}),
                ("browser_snapshot", {}),
                ("browser_click", {"selector": 'link:"More"'}),
            ),
            text_turn("done"),
        ])

        result = await loop.run("mission", max_turns=5)

        assert [name for name, _ in backend.calls] == [
            "browser_navigate", "browser_snapshot", "browser_click",
        ]
        ids = [r.tool_call_id for r in result.conversation.tool_results]
        assert ids == ["call_1", "call_2", "call_3"]
        assert result.tool_calls == 3

    @pytest.mark.asyncio
    async def test_tool_error_becomes_error_result(self):
        backend = RecordingBackend(errors={"browser_click": ActionFailed("Element not found")})
        loop, model, _ = make_loop([
            tool_turn(("browser_click", {"selector": "#missing"}), ("browser_snapshot", {})),
            text_turn("gave up"),
        ], backend=backend)

        result = await loop.run("mission", max_turns=5)

        first, second = result.conversation.tool_results
        assert first.is_error
        assert first.text == "Error: Element not found"
        assert not second.is_error
        tool_messages = [m for m in model.calls[1] if isinstance(m, ToolMessage)]
        assert tool_messages[0].content == "Error: Element not found"
        assert tool_messages[0].status == "error"

    @pytest.mark.asyncio
    async def test_unknown_tool_becomes_error_result(self):
        loop, _, backend = make_loop([
            tool_turn(("browser_teleport", {})),
            text_turn("ok"),
        ])

        result = await loop.run("mission", max_turns=5)

        assert result.conversation.tool_results[0].text == "Error: Unknown tool: browser_teleport"
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_unparseable_arguments_reported_to_model(self):
        bad_turn = [AIMessageChunk(content="", tool_call_chunks=[
            {"name": "browser_navigate", "args": "url=example.com", "id": "call_bad", "index": 0},
        ])]
        loop, model, backend = make_loop([bad_turn, text_turn("retrying failed")])

        result = await loop.run("mission", max_turns=5)

        assert result.status is AgentStatus.SUCCESS
        assert backend.calls == []
        error = result.conversation.tool_results[0]
        assert error.tool_call_id == "call_bad"
        assert error.is_error
        assert "Could not parse arguments for browser_navigate" in error.text
        tool_messages = [m for m in model.calls[1] if isinstance(m, ToolMessage)]
        assert [m.tool_call_id for m in tool_messages] == ["call_bad"]
        assert NUDGE_MESSAGE not in [m.content for m in model.calls[1]]

    @pytest.mark.asyncio
    async def test_missing_call_ids_are_generated(self):
        loop, _, _ = make_loop([
            tool_turn(("browser_snapshot", {}), ids=False),
            text_turn("ok"),
        ])

        result = await loop.run("mission", max_turns=5)

        call = result.conversation.assistant_messages[0].tool_calls[0]
        assert call["id"]
        assert result.conversation.tool_results[0].tool_call_id == call["id"]

    @pytest.mark.asyncio
    async def test_remote_not_connected_continues(self):
        """An unavailable extension is reported to the model, not raised."""
        channel = CommandChannel()
        model = ScriptedChatModel([
            tool_turn(("browser_navigate", {"url": "https://example.com"})),
            text_turn("The extension is not connected."),
        ])
        loop = AgentLoop(ModelClient(model), ActionDispatcher(RemoteBackend(channel)))

        result = await loop.run("mission", max_turns=5)

        assert result.status is AgentStatus.SUCCESS
        tool_result = result.conversation.tool_results[0]
        assert tool_result.is_error
        assert "not connected" in tool_result.text
        assert channel.pending_count == 0

    @pytest.mark.asyncio
    async def test_first_call_sees_system_prompt_and_mission(self):
        loop, model, _ = make_loop([text_turn("ok")])

        await loop.run("find cats", max_turns=1)

        first_call = model.calls[0]
        assert isinstance(first_call[0], SystemMessage)
        assert "browser_navigate" in first_call[0].content
        assert isinstance(first_call[1], HumanMessage)
        assert first_call[1].content == "find cats"
        assert len(model.bound_tools) == 10


class TestAgentLoopLogging:
    """Tests for run artifacts."""

    @pytest.mark.asyncio
    async def test_run_logger_records_turns_and_screenshots(self, tmp_path):
        backend = RecordingBackend(responses={
            "browser_screenshot": ToolOutput(
                "Screenshot captured", image=ImageContent("aGVsbG8=", "image/jpeg")
            ),
        })
        run_logger = RunLogger("take a picture", enable_console=False, runs_dir=tmp_path)
        loop, _, _ = make_loop([
            tool_turn(("browser_screenshot", {})),
            text_turn("done"),
        ], backend=backend, run_logger=run_logger)

        result = await loop.run("take a picture", max_turns=5)

        assert result.run_dir == run_logger.run_dir
        lines = run_logger.turns_file.read_text().splitlines()
        assert len(lines) == 2
        shots = list(run_logger.screenshots_dir.iterdir())
        assert len(shots) == 1
        assert shots[0].read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_password_never_reaches_console_or_log(self, tmp_path):
        backend = RecordingBackend(responses={
            "browser_fill": ToolOutput('Filled "hunter2" into input[name=password]'),
        })
        output = StringIO()
        run_logger = RunLogger(
            "log in", runs_dir=tmp_path, console=Console(file=output, width=200)
        )
        loop, _, _ = make_loop([
            tool_turn(("browser_fill", {"selector": "input[name=password]", "text": "hunter2"})),
            text_turn("logged in"),
        ], backend=backend, run_logger=run_logger)

        await loop.run("log in", max_turns=5)

        assert "hunter2" not in output.getvalue()
        assert REDACTED in output.getvalue()
        assert "hunter2" not in run_logger.turns_file.read_text()


class TestRunTask:
    """Tests for the external entry point."""

    def test_build_dispatcher_from_channel(self):
        dispatcher = build_dispatcher(CommandChannel())

        assert isinstance(dispatcher.backend, RemoteBackend)

    def test_build_dispatcher_passthrough(self):
        dispatcher = ActionDispatcher(RecordingBackend())

        assert build_dispatcher(dispatcher) is dispatcher

    def test_build_dispatcher_rejects_unknown_target(self):
        with pytest.raises(TypeError):
            build_dispatcher("not a session")

    @pytest.mark.asyncio
    async def test_run_task_with_dispatcher(self):
        backend = RecordingBackend()
        model = ScriptedChatModel([
            tool_turn(("browser_navigate", {"url": "https://example.com"})),
            text_turn("Example Domain"),
        ])

        result = await run_task(
            ActionDispatcher(backend), "title?", ModelClient(model), max_turns=4
        )

        assert result.success
        assert result.final_answer == "Example Domain"

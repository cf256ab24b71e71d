"""
Agent core for Pi Browser.

Provides the agent loop: the model sees the conversation, emits tool calls,
the dispatcher executes them and the results go back into the conversation
until the model answers with plain text or the turn budget runs out.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from .browser_manager import BrowserSession
from .conversation import Conversation, ToolResult, message_text
from .errors import ActionFailed, ModelClientError
from .extension_tools import RemoteBackend
from .llm_client import ModelClient
from .logger import RunLogger, redacted_secret
from .remote import CommandChannel
from .tool_router import ActionDispatcher
from .tools import DirectBackend

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a browser automation agent. Complete the user's mission using browser tools.

TOOLS:
- browser_navigate: {"url": "https://..."} - Go to URL
- browser_snapshot: {} - Get interactive elements with selectors
- browser_fill: {"selector": "...", "text": "..."} - Type text
- browser_click: {"selector": "..."} - Click element
- browser_press: {"key": "Enter"} - Press key
- browser_scroll: {"direction": "down"} - Scroll the page
- browser_screenshot: {} - Capture screen
- browser_get_text: {"selector": ""} - Get page text
- browser_wait: {"timeMs": "5000"} - Wait for time (ms)
- browser_wait: {"text": "Complete"} - Wait for text to appear
- browser_wait: {"textGone": "Loading..."} - Wait for text to disappear
- browser_download: {"selector": "...", "filename": "file.mp3"} - Download file

WORKFLOW:
1. browser_navigate to the website
2. browser_snapshot to find element selectors
3. browser_fill/browser_click using EXACT selector from snapshot
4. browser_wait for loading/processing to complete
5. browser_download if file needs to be saved
6. Report results

SELECTOR FORMAT (from snapshot):
- role:"name" format: textbox:"Search", button:"Submit"
- Use EXACT value from snapshot output

AUTOMATION TIPS:
- Wait for "Loading" text to disappear before next action
- Wait for "Download" or "Complete" text before downloading
- Use browser_wait with textGone for loading states

Be concise. Complete the full task autonomously."""

NUDGE_MESSAGE = (
    "Use the browser tools to carry out the mission. "
    "Start with browser_navigate to open the website."
)

MAX_TURNS_ERROR = "max turns exceeded"


class AgentStatus(str, Enum):
    """How an agent run ended."""
    SUCCESS = "success"
    MAX_TURNS = "max_turns"
    STOPPED = "stopped"


@dataclass
class AgentResult:
    """Result of running the agent."""
    status: AgentStatus
    final_answer: Optional[str]
    turns: int
    tool_calls: int
    conversation: Conversation
    error: Optional[str] = None
    run_dir: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.status is AgentStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "status": self.status.value,
            "final_answer": self.final_answer,
            "turns": self.turns,
            "tool_calls": self.tool_calls,
            "error": self.error,
            "run_dir": str(self.run_dir) if self.run_dir else None,
        }


class AgentLoop:
    """Drives one conversation between the model and the browser."""

    def __init__(
        self,
        client: ModelClient,
        dispatcher: ActionDispatcher,
        run_logger: Optional[RunLogger] = None,
        stop_event: Optional[asyncio.Event] = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        """Initialize the agent loop.

        Args:
            client: Model client used for every turn
            dispatcher: Executes the model's tool calls
            run_logger: Optional console output and run artifacts
            stop_event: Checked before each turn; set it to stop the run
            system_prompt: System prompt of the conversation
        """
        self.client = client
        self.dispatcher = dispatcher
        self.run_logger = run_logger
        self.stop_event = stop_event or asyncio.Event()
        self.system_prompt = system_prompt

    def stop(self) -> None:
        """Request the run to stop before its next turn."""
        self.stop_event.set()

    async def run(self, mission: str, max_turns: int) -> AgentResult:
        """Run the mission to completion.

        Args:
            mission: Natural-language mission for the model
            max_turns: Maximum number of model calls (0 makes none)

        Returns:
            AgentResult with the outcome

        Raises:
            ValueError: If max_turns is not a non-negative integer
            ModelClientError: If a model call fails
        """
        if not isinstance(max_turns, int) or isinstance(max_turns, bool) or max_turns < 0:
            raise ValueError(f"max_turns must be a non-negative integer, got {max_turns!r}")

        conversation = Conversation(self.system_prompt)
        conversation.add_user(mission)
        turns = 0
        tool_calls = 0

        if self.run_logger:
            self.run_logger.print_header()

        def finish(status: AgentStatus, answer: Optional[str] = None, error: Optional[str] = None) -> AgentResult:
            result = AgentResult(
                status=status,
                final_answer=answer,
                turns=turns,
                tool_calls=tool_calls,
                conversation=conversation,
                error=error,
                run_dir=self.run_logger.run_dir if self.run_logger else None,
            )
            logger.info("Mission finished: %s after %d turns", status.value, turns)
            if self.run_logger:
                if answer:
                    self.run_logger.print_final_answer(answer)
                elif error:
                    self.run_logger.print_error(error)
                self.run_logger.print_summary(result)
            return result

        while turns < max_turns:
            if self.stop_event.is_set():
                return finish(AgentStatus.STOPPED, error="stopped")

            turns += 1
            if self.run_logger:
                self.run_logger.print_turn(turns, max_turns)

            try:
                message = await self._call_model(conversation)
            except ModelClientError as e:
                if self.run_logger:
                    self.run_logger.print_error(f"Model call failed: {e}")
                raise
            conversation.add_assistant(message)

            if not message.tool_calls and not message.invalid_tool_calls:
                if self.run_logger:
                    self.run_logger.log_turn(turns, message, [])
                answer = message_text(message)
                if answer:
                    return finish(AgentStatus.SUCCESS, answer=answer)
                # Text-free, tool-free reply: push the model back to the tools
                conversation.add_user(NUDGE_MESSAGE)
                continue

            results = []
            screenshots = []
            for call in message.tool_calls:
                tool_calls += 1
                result = await self._execute(call)
                conversation.add_tool_result(result)
                results.append(result)
                if self.run_logger and result.image is not None:
                    screenshots.append(self.run_logger.save_screenshot(result.image))

            for call in message.invalid_tool_calls:
                tool_calls += 1
                error = ActionFailed(
                    f"Could not parse arguments for {call['name']}: {call.get('args')!r}. "
                    "Send the arguments as a JSON object."
                )
                result = ToolResult.from_error(call["id"], call["name"], error)
                conversation.add_tool_result(result)
                results.append(result)
                if self.run_logger:
                    self.run_logger.print_result(result)

            if self.run_logger:
                self.run_logger.log_turn(turns, message, results, screenshots)

        return finish(AgentStatus.MAX_TURNS, error=MAX_TURNS_ERROR)

    async def _call_model(self, conversation: Conversation):
        stream = self.client.stream(conversation)
        async for event in stream:
            if self.run_logger:
                self.run_logger.on_stream_event(event)
        if self.run_logger:
            self.run_logger.end_stream()
        return await stream.result()

    async def _execute(self, call: dict[str, Any]) -> ToolResult:
        """Run one tool call; failures become error results."""
        name = call["name"]
        args = call.get("args") or {}
        if self.run_logger:
            self.run_logger.print_tool_call(name, args)

        try:
            output = await self.dispatcher.execute(name, args)
            result = ToolResult.from_output(call["id"], name, output)
        except Exception as e:
            logger.debug("Tool %s failed: %s", name, e)
            result = ToolResult.from_error(call["id"], name, e)

        if self.run_logger:
            self.run_logger.print_result(result, secret=redacted_secret(name, args))
        return result


Target = Union[BrowserSession, CommandChannel, ActionDispatcher]


def build_dispatcher(target: Target, download_dir: Optional[Path] = None) -> ActionDispatcher:
    """Pick the backend for a target.

    Raises:
        TypeError: If the target is none of the supported kinds
    """
    if isinstance(target, ActionDispatcher):
        return target
    if isinstance(target, CommandChannel):
        return ActionDispatcher(RemoteBackend(target))
    if isinstance(target, BrowserSession):
        return ActionDispatcher(DirectBackend(target, download_dir))
    raise TypeError(f"Cannot run a mission on {type(target).__name__}")


async def run_task(
    target: Target,
    mission: str,
    client: ModelClient,
    max_turns: int,
    run_logger: Optional[RunLogger] = None,
    stop_event: Optional[asyncio.Event] = None,
    download_dir: Optional[Path] = None,
) -> AgentResult:
    """Run one mission on a browser session, the extension, or a dispatcher.

    Args:
        target: BrowserSession (Direct), CommandChannel (Remote) or a ready
            ActionDispatcher
        mission: Mission text
        client: Model client
        max_turns: Turn budget
        run_logger: Optional run logger
        stop_event: Optional stop flag
        download_dir: Where Direct downloads are saved

    Returns:
        AgentResult with the outcome
    """
    loop = AgentLoop(
        client,
        build_dispatcher(target, download_dir),
        run_logger=run_logger,
        stop_event=stop_event,
    )
    return await loop.run(mission, max_turns)

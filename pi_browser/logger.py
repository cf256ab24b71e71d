"""
Logging and artifact management for Pi Browser.

Handles JSONL turn logging, screenshot saving, and rich console output.
"""

import base64
import json
import re
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from langchain_core.messages import AIMessage
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import get_runs_dir
from .conversation import ImageContent, ToolResult, message_text

if TYPE_CHECKING:
    from .agent import AgentResult
    from .llm_client import StreamEvent


REDACTED = "[REDACTED]"
SENSITIVE_SELECTOR = re.compile(r"password|passwd|secret", re.IGNORECASE)


def slugify(text: str, max_length: int = 30) -> str:
    """Convert text to a filesystem-safe slug."""
    # Convert to lowercase and replace spaces/special chars with underscores
    slug = re.sub(r'[^\w\s-]', '', text.lower())
    slug = re.sub(r'[-\s]+', '_', slug).strip('_')
    return slug[:max_length]


def redact_tool_args(name: str, args: dict[str, Any]) -> dict[str, Any]:
    """Hide text typed into password-like fields."""
    if name == "browser_fill" and SENSITIVE_SELECTOR.search(str(args.get("selector", ""))):
        redacted = dict(args)
        redacted["text"] = REDACTED
        return redacted
    return args


def redacted_secret(name: str, args: dict[str, Any]) -> Optional[str]:
    """The typed text that redact_tool_args hides, if any."""
    if redact_tool_args(name, args) is args or not args.get("text"):
        return None
    return str(args["text"])


class RunLogger:
    """Manages logging and artifacts for a single agent run."""

    def __init__(
        self,
        mission: str,
        label: Optional[str] = None,
        enable_console: bool = True,
        runs_dir: Optional[Path] = None,
        console: Optional[Console] = None,
    ):
        """Initialize the run logger.

        Args:
            mission: The mission being executed (used for directory naming)
            label: Session label prefixed to console lines in parallel runs
            enable_console: Whether to print to console
            runs_dir: Parent directory for run folders (default ~/.pi_browser/runs)
            console: Console to share between several loggers
        """
        self.mission = mission
        self.label = label
        self.console = (console or Console()) if enable_console else None

        # Create run directory
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        name = f"{timestamp}_{slugify(mission)}"
        if label:
            name += f"_{slugify(label)}"
        self.run_dir = (runs_dir or get_runs_dir()) / name
        self.run_dir.mkdir(parents=True, exist_ok=True)

        self.screenshots_dir = self.run_dir / "screenshots"
        self.screenshots_dir.mkdir(exist_ok=True)

        # Initialize JSONL log file
        self.turns_file = self.run_dir / "turns.jsonl"
        self.turns_file.touch()

        self.turn = 0
        self._streaming = False

    def _prefix(self) -> str:
        return f"[bold magenta]\\[{self.label}][/bold magenta] " if self.label else ""

    def log_turn(
        self,
        turn: int,
        message: AIMessage,
        results: list[ToolResult],
        screenshots: Optional[list[Path]] = None,
    ) -> None:
        """Append one turn to the JSONL file.

        Args:
            turn: 1-based turn number
            message: The assistant message of this turn
            results: Tool results produced in this turn
            screenshots: Paths of screenshots saved in this turn
        """
        calls = []
        secrets = {}
        for call in message.tool_calls:
            args = call.get("args") or {}
            secret = redacted_secret(call["name"], args)
            if secret:
                secrets[call["id"]] = secret
            calls.append({
                "id": call["id"],
                "name": call["name"],
                "args": redact_tool_args(call["name"], args),
            })

        logged_results = []
        for result in results:
            data = result.to_dict()
            if result.tool_call_id in secrets:
                data["text"] = data["text"].replace(secrets[result.tool_call_id], REDACTED)
            logged_results.append(data)

        record = {
            "turn": turn,
            "timestamp": datetime.now().isoformat(),
            "text": message_text(message),
            "tool_calls": calls,
            "results": logged_results,
            "screenshots": [str(path) for path in screenshots or []],
        }

        with open(self.turns_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")

    def save_screenshot(self, image: ImageContent) -> Path:
        """Save a tool screenshot to the screenshots directory.

        Returns:
            Path to the saved screenshot
        """
        extension = "jpg" if image.mime_type == "image/jpeg" else "png"
        existing = len(list(self.screenshots_dir.iterdir()))
        path = self.screenshots_dir / f"turn_{self.turn:03d}_{existing + 1:02d}.{extension}"
        path.write_bytes(base64.b64decode(image.data))
        return path

    def print_header(self) -> None:
        """Print the run header to console."""
        if not self.console:
            return

        title = "Pi Browser" + (f" ({self.label})" if self.label else "")
        self.console.print()
        self.console.print(Panel(
            f"[bold cyan]Mission:[/bold cyan] {self.mission}",
            title=title,
            border_style="cyan",
        ))
        self.console.print()

    def print_turn(self, turn: int, max_turns: int) -> None:
        self.turn = turn
        if not self.console:
            return
        self.console.print(f"{self._prefix()}[blue]Turn {turn}/{max_turns}[/blue]")

    def on_stream_event(self, event: "StreamEvent") -> None:
        """Show partial model output as it arrives.

        Deltas are printed inline only for single-session runs; interleaved
        output from several sessions would be unreadable.
        """
        if not self.console:
            return

        if event.type == "text_delta" and not self.label:
            if not self._streaming:
                self.console.print("[magenta]AI:[/magenta] ", end="")
                self._streaming = True
            self.console.print(event.delta, end="", markup=False, highlight=False)
        elif event.type == "tool_call_start":
            self.end_stream()
            self.console.print(f"{self._prefix()}[dim]\\[tool: {event.name}][/dim]")

    def end_stream(self) -> None:
        if self._streaming and self.console:
            self.console.print()
        self._streaming = False

    def print_tool_call(self, name: str, args: dict[str, Any]) -> None:
        if not self.console:
            return

        step_text = Text()
        if self.label:
            step_text.append(f"[{self.label}] ", style="bold magenta")
        step_text.append(name, style="bold cyan")
        args_str = ", ".join(
            f"{k}={v!r}" for k, v in redact_tool_args(name, args).items()
        )
        if args_str:
            step_text.append(f"({args_str})", style="dim")
        self.console.print(step_text)

    def print_result(self, result: ToolResult, secret: Optional[str] = None) -> None:
        """Print the first line of a tool result, hiding `secret` if given."""
        if not self.console:
            return

        first_line = result.text.splitlines()[0] if result.text else ""
        if secret:
            first_line = first_line.replace(secret, REDACTED)
        if result.is_error:
            self.console.print(f"  {self._prefix()}[red]✗[/red] ", end="")
        else:
            self.console.print(f"  {self._prefix()}[green]✓[/green] ", end="")
        self.console.print(first_line[:200], markup=False, highlight=False)

    def print_error(self, error: str) -> None:
        if not self.console:
            return
        self.end_stream()
        self.console.print(f"  {self._prefix()}[bold red]Error:[/bold red] {error}")

    def print_final_answer(self, answer: str) -> None:
        if not self.console:
            return

        self.end_stream()
        self.console.print()
        self.console.print(Panel(
            answer,
            title="Final Answer" + (f" ({self.label})" if self.label else ""),
            border_style="green",
        ))

    def print_summary(self, result: "AgentResult") -> None:
        """Print the run summary to console."""
        if not self.console:
            return

        table = Table(title="Run Summary", show_header=False)
        table.add_column("Property", style="dim")
        table.add_column("Value")

        table.add_row("Status", result.status.value)
        table.add_row("Turns", str(result.turns))
        table.add_row("Tool Calls", str(result.tool_calls))
        if result.error:
            table.add_row("Error", result.error)
        table.add_row("Logs Directory", str(self.run_dir))
        table.add_row("Screenshots", str(len(list(self.screenshots_dir.iterdir()))))

        self.console.print()
        self.console.print(table)

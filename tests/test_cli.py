"""
Tests for the command-line interface.
"""

from io import StringIO
from types import SimpleNamespace

import pytest
from rich.console import Console
from unittest.mock import AsyncMock, MagicMock, patch

from pi_browser.cli import create_parser, interactive_loop, main
from pi_browser.config import AgentConfig
from pi_browser.errors import ModelClientError


def scripted_console(*lines):
    output = StringIO()
    console = Console(file=output, width=200)
    console.input = MagicMock(side_effect=list(lines))
    return console, output


class TestParser:
    """Tests for argument parsing."""

    def test_run_mission_is_optional(self):
        args = create_parser().parse_args(["run"])

        assert args.command == "run"
        assert args.mission is None

    def test_parallel_missions(self):
        args = create_parser().parse_args(["parallel", "a", "b", "--sessions", "3"])

        assert args.missions == ["a", "b"]
        assert args.sessions == 3
        assert args.max_turns == 30


class TestInteractiveLoop:
    """Tests for missions typed at the prompt."""

    @pytest.mark.asyncio
    async def test_missions_share_target_and_survive_model_failure(self):
        console, output = scripted_console(
            "", "/help", "/config", "find cats", "/bogus", "find dogs", "/exit", "never read",
        )
        target = SimpleNamespace(label="session-0")
        client = MagicMock()
        config = AgentConfig(max_turns=12)
        run_task = AsyncMock(side_effect=[ModelClientError("endpoint down"), SimpleNamespace(success=True)])

        with patch("pi_browser.cli.run_task", run_task), patch("pi_browser.cli.RunLogger"):
            missions = await interactive_loop(target, client, config, console)

        assert missions == 2
        assert [c.args for c in run_task.await_args_list] == [
            (target, "find cats", client, 12),
            (target, "find dogs", client, 12),
        ]
        assert console.input.call_count == 7
        text = output.getvalue()
        assert "Model call failed: endpoint down" in text
        assert "Configuration" in text
        assert "Unknown command: /bogus" in text

    @pytest.mark.asyncio
    async def test_end_of_input_exits(self):
        console, _ = scripted_console("find cats", EOFError())
        run_task = AsyncMock()

        with patch("pi_browser.cli.run_task", run_task), patch("pi_browser.cli.RunLogger"):
            missions = await interactive_loop(object(), MagicMock(), AgentConfig(), console)

        assert missions == 1
        run_task.assert_awaited_once()

    @pytest.mark.parametrize("word", ["exit", "QUIT", "q"])
    @pytest.mark.asyncio
    async def test_exit_words(self, word):
        console, _ = scripted_console(word)
        run_task = AsyncMock()

        with patch("pi_browser.cli.run_task", run_task):
            missions = await interactive_loop(object(), MagicMock(), AgentConfig(), console)

        assert missions == 0
        run_task.assert_not_awaited()


class TestCommands:
    """Tests for exit codes of the commands."""

    @pytest.fixture(autouse=True)
    def no_side_effects(self):
        with patch("pi_browser.cli.setup_logging"), \
                patch.object(AgentConfig, "ensure_directories"):
            yield

    def test_run_without_mission_starts_interactive(self):
        run_interactive = AsyncMock(return_value=0)

        with patch("pi_browser.cli.run_interactive", run_interactive):
            assert main(["run"]) == 0

        run_interactive.assert_awaited_once()

    @pytest.mark.parametrize("argv", [["run", "find cats"], ["parallel", "a", "b"]])
    def test_missing_provider_package(self, argv, capsys):
        error = ImportError("langchain-anthropic is required for Claude models")

        with patch("pi_browser.cli.ModelClient.from_config", side_effect=error):
            assert main(argv) == 1

        assert "Missing dependency" in capsys.readouterr().out

    def test_invalid_option(self, capsys):
        assert main(["run", "x", "--max-turns", "-1"]) == 2
        assert "Invalid option" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "pi-browser" in capsys.readouterr().out

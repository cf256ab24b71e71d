"""
CLI for Pi Browser.

Provides the command-line interface using argparse.
"""

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .agent import AgentResult, run_task
from .browser_manager import BrowserSession, SessionProvider
from .config import DEFAULTS, AgentConfig
from .errors import ActuatorUnavailable, ModelClientError, PiBrowserError
from .llm_client import ModelClient
from .logger import RunLogger
from .orchestrator import ParallelOrchestrator, TaskAssignment, TaskOutcome, summarize
from .remote import CommandChannel, ExtensionServer


INTERACTIVE_PROMPT = "[bold cyan]>[/bold cyan] "
INTERACTIVE_HELP = """[bold]Pi Browser interactive mode[/bold]
Type a mission and press Enter. The browser stays open between missions.

  [green]/config[/green]  show the current settings
  [green]/help[/green]    show this help
  [green]/exit[/green]    quit (also: exit, quit, q)
"""
EXIT_WORDS = ("/exit", "exit", "quit", "q")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="pi-browser",
        description="Pi Browser - an LLM agent that drives a real Chrome browser.",
        epilog="""
Examples:
  # Get the title of a webpage
  pi-browser run "Open example.com and tell me the title"

  # Drive your own Chrome through the Pi-Browser extension
  pi-browser run "Find the weather in Seoul" --ext

  # Use a specific LLM endpoint
  pi-browser run "Search for Playwright docs" --model-endpoint http://localhost:11434/v1 --model llama3.1

  # Type missions one after another on the same browser
  pi-browser run

  # Run three missions on two browsers
  pi-browser parallel "Price of X on site A" "Price of X on site B" "Price of X on site C" --sessions 2
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Pi Browser {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run one mission, or start interactive mode without one",
    )
    run_parser.add_argument(
        "mission",
        type=str,
        nargs="?",
        default=None,
        help="The mission to accomplish in natural language (omit for interactive mode)",
    )
    run_parser.add_argument(
        "--ext",
        action="store_true",
        default=False,
        help="Drive the browser through the Pi-Browser extension",
    )
    run_parser.add_argument(
        "--profile",
        type=str,
        default=DEFAULTS["profile"],
        help=f"Browser profile name (default: {DEFAULTS['profile']})",
    )
    run_parser.add_argument(
        "--no-persist",
        action="store_true",
        default=False,
        help="Use a temporary profile (not persisted)",
    )
    _add_common_arguments(run_parser, DEFAULTS["max_turns"])

    # Parallel command
    parallel_parser = subparsers.add_parser(
        "parallel",
        help="Run several missions concurrently on separate browsers",
    )
    parallel_parser.add_argument(
        "missions",
        nargs="+",
        help="Missions to run",
    )
    parallel_parser.add_argument(
        "--sessions",
        type=int,
        default=DEFAULTS["sessions"],
        help=f"Number of browser sessions (default: {DEFAULTS['sessions']})",
    )
    _add_common_arguments(parallel_parser, DEFAULTS["parallel_max_turns"])

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser, max_turns: int) -> None:
    parser.add_argument(
        "--max-turns",
        type=int,
        default=max_turns,
        help=f"Maximum model calls per mission (default: {max_turns})",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        default=DEFAULTS["headless"],
        help="Run browsers in headless mode",
    )
    parser.add_argument(
        "--model-endpoint",
        type=str,
        default=None,
        help=f"LLM API endpoint (default: {DEFAULTS['model_endpoint']})",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help=f"LLM model name (default: {DEFAULTS['model']})",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print the outcome as JSON",
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        default=False,
        help="Enable debug logging",
    )


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=debug)],
        force=True,
    )
    # Third-party chatter stays at WARNING even in debug mode
    for name in ("httpx", "httpcore", "openai", "websockets", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)


@asynccontextmanager
async def open_target(
    config: AgentConfig,
    console: Console,
    quiet: bool = False,
) -> AsyncIterator[Union[BrowserSession, CommandChannel]]:
    """Open the browser the missions run on: the extension or one CDP session.

    Raises:
        ActuatorUnavailable: If the extension does not connect in time
        SessionProvisioningError: If Chrome cannot be started
    """
    if config.browser_mode == "extension":
        channel = CommandChannel(timeout=config.remote_timeout_s)
        async with ExtensionServer(channel, config.extension_host, config.extension_port):
            if not quiet:
                console.print(
                    f"[cyan]Waiting for the extension on ws://{config.extension_host}:"
                    f"{config.extension_port} ...[/cyan]"
                )
            connected = await channel.wait_for_connection(config.extension_connect_timeout_s)
            if not connected:
                raise ActuatorUnavailable(
                    f"Extension did not connect within {config.extension_connect_timeout_s:g}s"
                )
            yield channel
        return

    async with SessionProvider(config) as provider:
        sessions = await provider.provision(1)
        yield sessions[0]


async def run_mission(config: AgentConfig, console: Console, quiet: bool = False) -> AgentResult:
    """Run config.mission on a fresh browser or the extension."""
    client = ModelClient.from_config(config)
    run_logger = RunLogger(config.mission, enable_console=not quiet, console=console)

    async with open_target(config, console, quiet) as target:
        return await run_task(
            target,
            config.mission,
            client,
            config.max_turns,
            run_logger=run_logger,
            download_dir=config.download_dir,
        )


def print_config(console: Console, config: AgentConfig) -> None:
    table = Table(title="Configuration", show_header=False)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Browser", config.browser_mode)
    table.add_row("Endpoint", config.model_endpoint)
    table.add_row("Model", config.model)
    table.add_row("Max turns", str(config.max_turns))
    if config.browser_mode == "extension":
        table.add_row("Extension", f"ws://{config.extension_host}:{config.extension_port}")
    else:
        table.add_row("Profile", "(temporary)" if config.no_persist else config.profile_name)
    table.add_row("Downloads", str(config.download_dir))

    console.print(table)


async def interactive_loop(
    target: Union[BrowserSession, CommandChannel],
    client: ModelClient,
    config: AgentConfig,
    console: Console,
) -> int:
    """Read missions from the prompt and run each on the same browser.

    A failed model call ends that mission only.

    Returns:
        Number of missions run
    """
    console.print(INTERACTIVE_HELP)
    missions = 0

    while True:
        try:
            line = await asyncio.to_thread(console.input, INTERACTIVE_PROMPT)
        except EOFError:
            break

        line = line.strip()
        if not line:
            continue
        if line.lower() in EXIT_WORDS:
            break
        if line in ("/help", "?"):
            console.print(INTERACTIVE_HELP)
            continue
        if line == "/config":
            print_config(console, config)
            continue
        if line.startswith("/"):
            console.print(f"[yellow]Unknown command: {line}. Type /help.[/yellow]")
            continue

        missions += 1
        try:
            await run_task(
                target,
                line,
                client,
                config.max_turns,
                run_logger=RunLogger(line, console=console),
                download_dir=config.download_dir,
            )
        except ModelClientError as e:
            console.print(f"[bold red]Model call failed: {e}[/bold red]")

    console.print("[yellow]Goodbye[/yellow]")
    return missions


async def run_interactive(config: AgentConfig, console: Console) -> int:
    """Keep one browser open and run missions typed at the prompt."""
    client = ModelClient.from_config(config)
    async with open_target(config, console) as target:
        return await interactive_loop(target, client, config, console)


async def run_parallel(
    config: AgentConfig,
    missions: list[str],
    console: Console,
    quiet: bool = False,
) -> list[TaskOutcome]:
    """Provision sessions and run every mission across them."""
    client = ModelClient.from_config(config)

    def make_logger(assignment: TaskAssignment) -> RunLogger:
        return RunLogger(
            assignment.mission,
            label=getattr(assignment.session, "label", f"task-{assignment.index}"),
            enable_console=not quiet,
            console=console,
        )

    async with SessionProvider(config) as provider:
        sessions = await provider.provision(min(config.sessions, len(missions)))
        orchestrator = ParallelOrchestrator(client, config.parallel_max_turns, make_logger)
        return await orchestrator.run_all(sessions, missions)


def print_outcomes(console: Console, outcomes: list[TaskOutcome]) -> None:
    table = Table(title="Batch Summary")
    table.add_column("#", style="dim")
    table.add_column("Session")
    table.add_column("Mission")
    table.add_column("Status")
    table.add_column("Answer / Error")

    for outcome in outcomes:
        assignment = outcome.assignment
        if outcome.error is not None:
            status, detail = "[red]failed[/red]", str(outcome.error)
        elif outcome.succeeded:
            status, detail = "[green]success[/green]", outcome.result.final_answer or ""
        else:
            status, detail = f"[yellow]{outcome.result.status.value}[/yellow]", outcome.result.error or ""
        table.add_row(
            str(assignment.index),
            getattr(assignment.session, "label", "?"),
            assignment.mission[:40],
            status,
            detail[:80],
        )

    summary = summarize(outcomes)
    console.print()
    console.print(table)
    console.print(
        f"[bold]{summary.succeeded}[/bold] succeeded, "
        f"{summary.fulfilled} finished, {summary.rejected} failed"
    )


def run_command(args: argparse.Namespace) -> int:
    """Execute the run command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    console = Console()

    try:
        config = AgentConfig.from_cli_args(
            mission=args.mission or "",
            profile=args.profile,
            headless=args.headless,
            max_turns=args.max_turns,
            model_endpoint=args.model_endpoint,
            model=args.model,
            extension=args.ext,
            no_persist=args.no_persist,
            debug=args.debug,
        )
    except ValueError as e:
        console.print(f"[bold red]Invalid option: {e}[/bold red]")
        return 2

    setup_logging(config.debug)
    config.ensure_directories()

    try:
        if args.mission is None:
            asyncio.run(run_interactive(config, console))
            return 0
        result = asyncio.run(run_mission(config, console, quiet=args.json))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130
    except ImportError as e:
        console.print(f"[bold red]Missing dependency: {e}[/bold red]")
        return 1
    except PiBrowserError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        return 1

    if args.json:
        console.print_json(data=result.to_dict())
    return 0 if result.success else 1


def parallel_command(args: argparse.Namespace) -> int:
    """Execute the parallel command."""
    console = Console()

    try:
        config = AgentConfig.from_cli_args(
            headless=args.headless,
            max_turns=args.max_turns,
            sessions=args.sessions,
            model_endpoint=args.model_endpoint,
            model=args.model,
            no_persist=True,
            debug=args.debug,
        )
    except ValueError as e:
        console.print(f"[bold red]Invalid option: {e}[/bold red]")
        return 2
    # Parallel sessions never attach to the user's own browser
    config.attach_existing = False

    setup_logging(config.debug)
    config.ensure_directories()

    try:
        outcomes = asyncio.run(run_parallel(config, args.missions, console, quiet=args.json))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130
    except ImportError as e:
        console.print(f"[bold red]Missing dependency: {e}[/bold red]")
        return 1
    except PiBrowserError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        return 1

    if args.json:
        console.print_json(data=[outcome.to_dict() for outcome in outcomes])
    else:
        print_outcomes(console, outcomes)
    return 0 if summarize(outcomes).succeeded == len(outcomes) else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "run":
        return run_command(args)

    if args.command == "parallel":
        return parallel_command(args)

    # Unknown command
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())

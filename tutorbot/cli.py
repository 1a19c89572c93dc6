"""CLI commands for tutorbot.

Provides subcommands for trying the intent pipeline from a terminal.

Commands:
    tutorbot analyze TEXT   - Analyze one message and print the result
    tutorbot intents        - List supported intents with example messages
    tutorbot time TEXT      - Resolve a time phrase
    tutorbot chat           - Interactive multi-turn session (corrections work)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .config import AppConfig
from .core.courses import InMemoryCourseRepository
from .core.intent import (
    AnalysisResult,
    ConversationContextStore,
    DecisionOrchestrator,
    EntityExtractor,
    RuleBasedIntentClassifier,
    create_orchestrator,
)
from .core.time_service import ParseError, TimeService

console = Console()

EXIT_COMMANDS = frozenset({"exit", "quit", "q", "/quit", "/exit"})


def _setup_logging() -> logging.Logger:
    """Configure logging with rotation.

    Logs are written to ~/.tutorbot/logs/ with owner-only permissions.
    Uses INFO level by default; set TUTORBOT_DEBUG=1 for DEBUG level.
    """
    log_dir = Path.home() / ".tutorbot" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_dir.chmod(0o700)

    log_file = log_dir / "tutorbot.log"

    log_level = logging.DEBUG if os.environ.get("TUTORBOT_DEBUG") else logging.INFO

    # 5MB max, keep 3 backups
    handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    return logging.getLogger(__name__)


def load_config(args: argparse.Namespace) -> AppConfig:
    """Config for the project directory given on the command line."""
    return AppConfig.load(Path(args.project_path).resolve())


def build_orchestrator(args: argparse.Namespace) -> DecisionOrchestrator:
    """Orchestrator for CLI use.

    --offline keeps everything local: no LLM and an in-memory course store.
    """
    config = load_config(args)
    if not getattr(args, "offline", False):
        return create_orchestrator(config)

    repository = InMemoryCourseRepository()
    return DecisionOrchestrator(
        classifier=RuleBasedIntentClassifier(rules_path=config.pipeline.rules_path),
        extractor=EntityExtractor(TimeService(config.pipeline.timezone), repository=repository),
        context_store=ConversationContextStore(ttl_seconds=config.pipeline.context_ttl_seconds),
        repository=repository,
        trust_threshold=config.pipeline.trust_rules_threshold,
    )


def render_result(result: AnalysisResult) -> None:
    """Print an AnalysisResult as a table."""
    status = "[green]✓ understood[/green]" if result.success else "[red]✗ not handled[/red]"
    console.print(f"{status}  [dim]{result.method.value}[/dim]")

    table = Table(title="Analysis")
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("intent", result.intent.value)
    table.add_row("confidence", f"{result.confidence:.2f}")
    for name, value in result.entities.to_dict().items():
        if name == "original_text" or value is None:
            continue
        if name == "time_info":
            value = f"{value['display']}  ({value['date']})"
        table.add_row(name, str(value))
    if result.reasoning:
        table.add_row("reasoning", result.reasoning)

    console.print(table)

    if result.message:
        console.print(f"[yellow]{result.message}[/yellow]")
    if result.error and not result.success:
        console.print(f"[dim]error: {result.error}[/dim]")


async def _analyze_once(orchestrator: DecisionOrchestrator, text: str, user_id: str) -> AnalysisResult:
    try:
        return await orchestrator.analyze(text, user_id)
    finally:
        await orchestrator.aclose()


def analyze_text(args: argparse.Namespace) -> int:
    """Analyze one message.

    Args:
        args: Parsed arguments (text, user, offline)

    Returns:
        Exit code (0 if the message was understood)
    """
    orchestrator = build_orchestrator(args)
    result = asyncio.run(_analyze_once(orchestrator, args.text, args.user))
    render_result(result)
    return 0 if result.success else 2


def list_intents(args: argparse.Namespace) -> int:
    """Show the intents covered by the keyword rules."""
    config = load_config(args)
    classifier = RuleBasedIntentClassifier(rules_path=config.pipeline.rules_path)

    table = Table(title="Supported Intents")
    table.add_column("Intent", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Examples")

    for rule in classifier.rules:
        table.add_row(rule.intent.value, str(rule.priority), "\n".join(rule.examples) or "-")

    console.print(table)
    return 0


def resolve_time(args: argparse.Namespace) -> int:
    """Resolve a time phrase to its canonical form."""
    config = load_config(args)
    service = TimeService(config.pipeline.timezone)

    try:
        info = service.create_time_info(service.parse_time_string(args.text))
    except ParseError as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1

    if info is None:
        console.print("[red]Error:[/red] could not build a time record")
        return 1

    console.print(f"[bold]{info.display}[/bold]")
    console.print(f"  date: {info.date}")
    console.print(f"  raw:  {info.raw}")
    return 0


async def _chat_loop(orchestrator: DecisionOrchestrator, user_id: str) -> None:
    console.print("[bold]tutorbot chat[/bold] [dim](type 'quit' to exit)[/dim]")
    try:
        while True:
            text = (await asyncio.to_thread(input, "> ")).strip()
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                break
            render_result(await orchestrator.analyze(text, user_id))
            console.print()
    except EOFError:
        console.print()
    finally:
        await orchestrator.aclose()


def chat(args: argparse.Namespace) -> int:
    """Interactive session sharing one orchestrator, so corrections apply."""
    orchestrator = build_orchestrator(args)
    asyncio.run(_chat_loop(orchestrator, args.user))
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="tutorbot",
        description="tutorbot: natural-language course scheduling assistant",
    )
    parser.add_argument(
        "--project",
        "-p",
        dest="project_path",
        default=".",
        help="Path to project directory holding .tutorbot/config.yaml (default: current directory)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def add_session_args(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--user",
            "-u",
            default="cli-user",
            help="User id the messages belong to (default: cli-user)",
        )
        p.add_argument(
            "--offline",
            action="store_true",
            help="Do not call the LLM endpoint",
        )

    # =========================================================================
    # analyze command
    # =========================================================================
    analyze_parser = subparsers.add_parser("analyze", help="Analyze one message")
    analyze_parser.add_argument("text", help="Message to analyze")
    add_session_args(analyze_parser)
    analyze_parser.set_defaults(func=analyze_text)

    # =========================================================================
    # intents command
    # =========================================================================
    intents_parser = subparsers.add_parser("intents", help="List supported intents")
    intents_parser.set_defaults(func=list_intents)

    # =========================================================================
    # time command
    # =========================================================================
    time_parser = subparsers.add_parser("time", help="Resolve a time phrase")
    time_parser.add_argument("text", help="Time phrase, e.g. 明天晚上十點半")
    time_parser.set_defaults(func=resolve_time)

    # =========================================================================
    # chat command
    # =========================================================================
    chat_parser = subparsers.add_parser("chat", help="Interactive multi-turn session")
    add_session_args(chat_parser)
    chat_parser.set_defaults(func=chat)

    return parser


def run_cli(args: list[str] | None = None) -> int:
    """Run the CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    if hasattr(parsed, "func"):
        try:
            return parsed.func(parsed)
        except KeyboardInterrupt:
            console.print("\n[dim]Cancelled.[/dim]")
            return 130
        except Exception as e:
            console.print(f"[red]Error:[/red] {e}")
            return 1

    parser.print_help()
    return 0


def main() -> None:
    """Entry point for the tutorbot command."""
    _setup_logging()
    raise SystemExit(run_cli())


__all__ = [
    "analyze_text",
    "chat",
    "create_parser",
    "list_intents",
    "main",
    "render_result",
    "resolve_time",
    "run_cli",
]

"""CLI interface for knowledge-chat with streaming output."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from knowledge_chat import __version__
from knowledge_chat.config import KnowledgeChatConfig, load_config
from knowledge_chat.events.bus import EventBus
from knowledge_chat.llm.cancel import CancelToken
from knowledge_chat.llm.client import AsyncChatClient
from knowledge_chat.llm.errors import ChatError
from knowledge_chat.types import EventType, Segment, StreamEvent

console = Console()

_logger = logging.getLogger(__name__)

_HISTORY_PATH = Path.home() / ".knowledge_chat" / "history"


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

class StreamingDisplay:
    """Renders stream segments to the terminal as they arrive."""

    def __init__(self, con: Console, show_reasoning: bool = True):
        self.con = con
        self.show_reasoning = show_reasoning
        self._current: str | None = None

    def handle(self, segment: Segment):
        if segment.is_reasoning:
            if not self.show_reasoning:
                return
            if self._current != "reasoning":
                self._break()
                self.con.print("[dim]thinking:[/dim]")
            self._current = "reasoning"
            self.con.print(segment.text, style="dim italic", end="",
                           highlight=False, markup=False)
        else:
            if self._current != "answer":
                self._break()
            self._current = "answer"
            self.con.print(segment.text, end="", highlight=False, markup=False)

    def finish(self):
        self._break()
        self._current = None

    def _break(self):
        if self._current is not None:
            self.con.print()


def _log_dropped(event: StreamEvent):
    _logger.debug("Dropped stream line (%s)", event.data.get("reason"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_client(config: KnowledgeChatConfig) -> AsyncChatClient:
    bus = EventBus()
    bus.subscribe(EventType.STREAM_LINE_DROPPED, _log_dropped)
    return AsyncChatClient(config.server, event_bus=bus)


@contextmanager
def _cancel_on_sigint(token: CancelToken) -> Iterator[None]:
    """Route Ctrl-C to *token* while a response is streaming."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
    except (NotImplementedError, RuntimeError, ValueError):
        # Not on the main thread, or the platform has no loop signal support.
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _resolve_model(client: AsyncChatClient, model: str | None) -> str:
    if model:
        return model
    models = await client.list_models()
    if not models:
        raise click.ClickException("No models available; pass --model")
    return models[0]


async def stream_once(
    client: AsyncChatClient,
    model: str,
    message: str,
    rag_tag: str | None,
    display: StreamingDisplay,
) -> bool:
    """Stream one response to *display*.  Returns False on failure."""
    token = CancelToken()
    start = time.monotonic()
    try:
        with _cancel_on_sigint(token):
            stream = client.stream_chat(model, message, rag_tag, cancel=token)
            async for segment in stream:
                display.handle(segment)
    except ChatError as e:
        display.finish()
        if e.cancelled:
            console.print(f"[dim]{escape(e.message)}[/dim]")
            return True
        console.print(f"[red]{escape(e.message)}[/red]")
        return False
    display.finish()
    console.print(f"[dim]({time.monotonic() - start:.1f}s)[/dim]")
    return True


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to knowledge_chat.yaml (auto-detected from CWD or ~/.knowledge_chat/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(__version__, prog_name="knowledge-chat")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """knowledge-chat - stream answers from a knowledge-base chat backend."""
    try:
        config, config_file = load_config(config_path)
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e

    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level)
    if config_file:
        _logger.info("Config: %s", config_file)
    ctx.obj = config


@main.command()
@click.argument("message", required=False)
@click.option("--model", "-m", default=None, help="Model to chat with (default: config or first available)")
@click.option("--rag-tag", "-r", default=None, help="Knowledge base to ground the answer in")
@click.option("--hide-reasoning", is_flag=True, help="Do not print <think> reasoning")
@click.pass_obj
def chat(config: KnowledgeChatConfig, message: str | None, model: str | None,
         rag_tag: str | None, hide_reasoning: bool):
    """Send MESSAGE, or start an interactive session when omitted."""
    show = config.chat.show_reasoning and not hide_reasoning
    display = StreamingDisplay(console, show_reasoning=show)
    model = model or config.chat.default_model
    rag_tag = rag_tag or config.chat.default_rag_tag

    if message is not None:
        ok = asyncio.run(_one_shot(config, model, message, rag_tag, display))
        if not ok:
            sys.exit(1)
        return

    asyncio.run(_repl(config, model, rag_tag, display))


async def _one_shot(config: KnowledgeChatConfig, model: str | None, message: str,
                    rag_tag: str | None, display: StreamingDisplay) -> bool:
    async with _make_client(config) as client:
        try:
            resolved = await _resolve_model(client, model)
        except ChatError as e:
            console.print(f"[red]{escape(e.message)}[/red]")
            return False
        return await stream_once(client, resolved, message, rag_tag, display)


async def _repl(config: KnowledgeChatConfig, model: str | None, rag_tag: str | None,
                display: StreamingDisplay):
    _HISTORY_PATH.parent.mkdir(parents=True, exist_ok=True)
    session: PromptSession[str] = PromptSession(history=FileHistory(str(_HISTORY_PATH)))

    async with _make_client(config) as client:
        try:
            model = await _resolve_model(client, model)
        except ChatError as e:
            console.print(f"[red]{escape(e.message)}[/red]")
            return

        console.print(f"[bold cyan]knowledge-chat[/bold cyan] [dim]v{__version__}[/dim]")
        console.print(f"[dim]Model: {escape(model)}  Knowledge base: {escape(rag_tag or 'none')}[/dim]")
        console.print("[dim]/models /tags /model <name> /tag <name|off> /quit; Ctrl-C stops a response[/dim]\n")

        while True:
            try:
                user_input = (await session.prompt_async(HTML("<ansigreen><b>❯ </b></ansigreen>"))).strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye![/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                result = await handle_command(user_input, client, model, rag_tag)
                if result is None:
                    console.print("[dim]Goodbye![/dim]")
                    break
                model, rag_tag = result
                continue

            await stream_once(client, model, user_input, rag_tag, display)
            console.print()


async def handle_command(cmd: str, client: AsyncChatClient, model: str,
                         rag_tag: str | None) -> tuple[str, str | None] | None:
    """Handle /commands.  Returns the new (model, rag_tag), or None to quit."""
    parts = cmd.strip().split(maxsplit=1)
    command = parts[0].lower()
    arg = parts[1].strip() if len(parts) > 1 else ""

    if command in ("/quit", "/exit", "/q"):
        return None

    if command == "/models":
        try:
            _print_list("Models", await client.list_models(), current=model)
        except ChatError as e:
            console.print(f"[red]{escape(e.message)}[/red]")
    elif command == "/tags":
        _print_list("Knowledge bases", await client.list_rag_tags(), current=rag_tag)
    elif command == "/model":
        if arg:
            model = arg
        console.print(f"[dim]Model: {escape(model)}[/dim]")
    elif command == "/tag":
        if arg:
            rag_tag = None if arg.lower() in ("off", "none") else arg
        console.print(f"[dim]Knowledge base: {escape(rag_tag or 'none')}[/dim]")
    else:
        console.print(f"[yellow]Unknown command: {escape(command)}[/yellow]")
    return model, rag_tag


def _print_list(title: str, items: list[str], current: str | None = None):
    if not items:
        console.print(f"[dim]No {title.lower()} available.[/dim]")
        return
    table = Table(title=title, show_header=False, box=None)
    table.add_column("name")
    for item in items:
        mark = " [green]*[/green]" if item == current else ""
        table.add_row(f"{escape(item)}{mark}")
    console.print(table)


@main.command()
@click.pass_obj
def models(config: KnowledgeChatConfig):
    """List the models the backend offers."""

    async def _run() -> list[str]:
        async with _make_client(config) as client:
            return await client.list_models()

    try:
        items = asyncio.run(_run())
    except ChatError as e:
        raise click.ClickException(e.message) from e
    _print_list("Models", items, current=config.chat.default_model)


@main.command()
@click.pass_obj
def tags(config: KnowledgeChatConfig):
    """List the knowledge bases (RAG tags) the backend offers."""

    async def _run() -> list[str]:
        async with _make_client(config) as client:
            return await client.list_rag_tags()

    _print_list("Knowledge bases", asyncio.run(_run()), current=config.chat.default_rag_tag)


if __name__ == "__main__":
    main()

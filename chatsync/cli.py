"""Terminal chat front end.

Usage:
    chatsync                       # start a new conversation
    chatsync --session <id>        # reopen a conversation
    chatsync --list                # list your conversations
    chatsync --model qwen/qwen3-coder:free --store-dir ./data
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from chatsync.adapters.events import Notice, SessionUnavailable
from chatsync.engine.actor import SessionActor
from chatsync.engine.config import EngineConfig
from chatsync.engine.errors import ChatSyncError
from chatsync.engine.providers.registry import build_inference_service, get_model_option
from chatsync.engine.yaml_config import ChatSyncConfig, load_yaml_config
from chatsync.shared.models.message import Message
from chatsync.shared.models.session import Session
from chatsync.shared.services.preferences import UserPreferences
from chatsync.stores.file_store import JsonFileDocumentStore

logger = logging.getLogger(__name__)

HELP_TEXT = """\
/new                 start a new conversation
/open <id>           open a conversation
/list                list your conversations
/edit <n> <text>     rewrite your message #n and answer again
/regen               answer your last message again
/good, /bad          rate the last answer
/rename <title>      rename the conversation
/archive             archive the conversation
/delete              delete the conversation
/share <user>        add a member to the conversation
/quit                leave
Ctrl+C while waiting cancels the answer."""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatsync",
        description="Synchronized chat sessions with a generative model",
    )
    parser.add_argument(
        "--store-dir",
        default=None,
        help="Directory of the JSON document store (default: from config)",
    )
    parser.add_argument(
        "--principal",
        default=None,
        help="User id to act as (default: login name)",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model id for new turns (remembered in preferences)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML config file with engine and provider settings",
    )
    parser.add_argument(
        "--session",
        default=None,
        help="Conversation id to open",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List conversations and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )

    yaml_config: ChatSyncConfig | None = None
    if args.config:
        try:
            yaml_config = load_yaml_config(args.config)
        except (OSError, ValueError) as exc:
            print(f"Error: Cannot load config {args.config}: {exc}")
            sys.exit(1)
        config = yaml_config.engine
    else:
        config = EngineConfig.from_env()
    if not args.verbose:
        logging.getLogger().setLevel(config.log_level.upper())

    prefs = UserPreferences.load()
    if args.model:
        if get_model_option(args.model) is None:
            logger.warning("Model %s is not in the catalog", args.model)
        prefs.selected_model = args.model
        prefs.save()

    principal = args.principal or getpass.getuser()
    store = JsonFileDocumentStore(Path(args.store_dir or config.store_dir))
    inference = build_inference_service(config, yaml_config)
    console = Console()

    try:
        asyncio.run(_run(console, store, inference, principal, config, prefs, args))
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        sys.exit(1)


async def _run(console, store, inference, principal, config, prefs, args) -> None:
    try:
        await _session(console, store, inference, principal, config, prefs, args)
    finally:
        await inference.shutdown()


async def _session(console, store, inference, principal, config, prefs, args) -> None:
    async with SessionActor(
        store,
        inference,
        principal,
        config=config,
        model_id=prefs.selected_model,
        project_id=prefs.active_project_id,
    ) as actor:
        try:
            if args.list:
                _print_sessions(console, await actor.list_sessions(
                    include_archived=prefs.show_archived,
                ))
                return
            if args.session:
                await actor.open(args.session)
                _print_session(console, actor.session)
        except ChatSyncError as exc:
            console.print(f"[red]{_esc(str(exc))}[/red]")
            return

        console.print(
            f"[dim]Signed in as {_esc(principal)}, model "
            f"{_esc(actor.model_id or config.default_model)}. /help for commands.[/dim]"
        )
        await _repl(console, actor, prefs)


async def _repl(console: Console, actor: SessionActor, prefs: UserPreferences) -> None:
    loop = asyncio.get_running_loop()
    while True:
        try:
            line = await loop.run_in_executor(None, console.input, "[bold]> [/bold]")
        except (EOFError, KeyboardInterrupt):
            return
        line = line.strip()
        if not line:
            continue
        try:
            if line.startswith("/"):
                if not await _command(console, actor, prefs, line):
                    return
            else:
                await _turn(console, actor, actor.send_turn(line))
        except ChatSyncError as exc:
            console.print(f"[red]{_esc(str(exc))}[/red]")
        _print_events(console, actor)


async def _turn(console: Console, actor: SessionActor, awaitable) -> None:
    """Run a turn; Ctrl+C cancels it instead of exiting."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, actor.cancel_turn)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False
    try:
        with console.status("Thinking..."):
            outcome = await awaitable
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
    if outcome.model_message is not None:
        session = actor.session
        index = session.find_index(outcome.model_message.id) if session else -1
        _print_message(console, index, outcome.model_message)
    elif outcome.status == "ignored":
        console.print("[dim]Still answering the previous message.[/dim]")


async def _command(console: Console, actor: SessionActor, prefs: UserPreferences, line: str) -> bool:
    name, _, rest = line.partition(" ")
    rest = rest.strip()

    if name in ("/quit", "/exit"):
        return False
    if name == "/help":
        console.print(HELP_TEXT)
    elif name == "/new":
        if await actor.new_session() is not None:
            console.print(f"[dim]New conversation {actor.session.session_id}[/dim]")
    elif name == "/open":
        await actor.open(rest)
        _print_session(console, actor.session)
    elif name == "/list":
        _print_sessions(console, await actor.list_sessions(
            include_archived=prefs.show_archived,
        ))
    elif name == "/edit":
        ref, _, text = rest.partition(" ")
        message = _resolve_message(actor.session, ref)
        if message is None:
            console.print(f"[red]No message {_esc(ref)}[/red]")
        else:
            await _turn(console, actor, actor.edit_message(message.id, text))
    elif name == "/regen":
        message = _last_model_message(actor.session)
        if message is None:
            console.print("[red]Nothing to regenerate[/red]")
        else:
            await _turn(console, actor, actor.regenerate(message.id))
    elif name in ("/good", "/bad"):
        message = _last_model_message(actor.session)
        if message is None:
            console.print("[red]Nothing to rate[/red]")
        elif message.feedback is not None:
            console.print("[dim]Already rated.[/dim]")
        else:
            await actor.record_feedback(message.id, positive=name == "/good")
    elif name == "/rename":
        await actor.rename(rest)
    elif name == "/archive":
        await actor.set_archived(True)
    elif name == "/delete":
        await actor.delete()
    elif name == "/share":
        await actor.share(rest)
    else:
        console.print(f"[red]Unknown command {_esc(name)}[/red] (/help)")
    return True


# ── rendering ──────────────────────────────────────────────────

def _esc(text: str) -> str:
    """Escape Rich markup characters in dynamic content."""
    return text.replace("[", "\\[")


def _resolve_message(session: Session | None, ref: str) -> Message | None:
    """Find a message by 1-based position or by id (prefix)."""
    if session is None or not ref:
        return None
    if ref.isdigit():
        idx = int(ref) - 1
        return session.messages[idx] if 0 <= idx < len(session.messages) else None
    matches = [m for m in session.messages if m.id.startswith(ref)]
    return matches[0] if len(matches) == 1 else None


def _last_model_message(session: Session | None) -> Message | None:
    if session is None:
        return None
    for message in reversed(session.messages):
        if message.is_model:
            return message
    return None


def _print_message(console: Console, index: int, message: Message) -> None:
    label = f"#{index + 1} " if index >= 0 else ""
    if message.is_user:
        console.print(Text(f"{label}you: ", style="bold cyan") + Text(message.content))
        return
    console.print(Text(f"{label}model", style="bold magenta"))
    console.print(Markdown(message.content or ""))
    if message.code is not None:
        console.print(Syntax(
            message.code.content, message.code.language or "text",
            theme="monokai", line_numbers=False,
        ))
    if message.attachment is not None:
        for url in (message.attachment.image_url, message.attachment.video_url):
            if url:
                console.print(f"[dim]attachment: {_esc(url)}[/dim]")
    for source in message.sources:
        console.print(f"[dim]- {_esc(source.title)} {_esc(source.url)}[/dim]")
    if message.feedback is not None:
        console.print(f"[dim]rated {message.feedback.value}[/dim]")


def _print_session(console: Console, session: Session | None) -> None:
    if session is None:
        return
    console.rule(_esc(session.title))
    for index, message in enumerate(session.messages):
        _print_message(console, index, message)


def _print_sessions(console: Console, sessions: list[Session]) -> None:
    if not sessions:
        console.print("[dim]No conversations yet.[/dim]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("id")
    table.add_column("title")
    table.add_column("messages", justify="right")
    table.add_column("updated")
    for session in sessions:
        updated = session.updated_at.strftime("%Y-%m-%d %H:%M") if session.updated_at else ""
        title = session.title + (" (archived)" if session.archived else "")
        table.add_row(session.session_id, title, str(session.message_count), updated)
    console.print(table)


def _print_events(console: Console, actor: SessionActor) -> None:
    for event in actor.bus.drain():
        if isinstance(event, Notice):
            style = "red" if event.level == "error" else "yellow"
            detail = f": {_esc(event.description)}" if event.description else ""
            console.print(f"[{style}]{_esc(event.title)}{detail}[/{style}]")
        elif isinstance(event, SessionUnavailable) and event.reason != "deleted":
            console.print("[red]This conversation is no longer available.[/red]")


if __name__ == "__main__":
    main()

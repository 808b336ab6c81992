"""CLI interface for nativechat."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import sys
from contextlib import contextmanager
from pathlib import Path

import click

from . import __version__
from .accounting import format_bytes, size_of
from .backend import GeminiBackend
from .config import DATA_DIR, GEMINI_API_KEY, SQLITE_PATH
from .controller import ChatController, Notice
from .exceptions import BackendError, ChatError
from .models import FileMeta, ListTab, Message, Role
from .prompting import strip_instruction
from .storage import ConversationStore


class TerminalRenderer:
    """Prints messages as numbered transcript lines."""

    def clear(self):
        click.echo()

    def render_messages(self, messages):
        for i, msg in enumerate(messages, 1):
            _echo_message(i, msg)


def _echo_message(number: int, msg: Message):
    if msg.role == Role.USER:
        label = click.style("You", fg="cyan", bold=True)
    else:
        label = click.style("Model", fg="green", bold=True)
    texts = []
    for part in msg.parts:
        if part.text is not None:
            text = strip_instruction(part.text) if msg.role == Role.USER else part.text
            texts.append(text.strip())
        else:
            size = format_bytes(len(part.inline_data.data) * 3 // 4)
            texts.append(f"[image {part.inline_data.mime_type}, {size}]")
    click.echo(f"[{number}] {label}: " + "\n".join(t for t in texts if t))


def _echo_notice(notice: Notice):
    click.echo(click.style(notice.message, fg="yellow"), err=True)


@contextmanager
def _open_controller(renderer=None):
    store = ConversationStore(SQLITE_PATH)
    backend = GeminiBackend(GEMINI_API_KEY)
    try:
        yield ChatController(store, backend, renderer=renderer, notify=_echo_notice)
    except ChatError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        store.close()


@click.group()
@click.version_option(version=__version__, prog_name="nativechat")
@click.option("--debug", is_flag=True, help="Log debug output to stderr")
def cli(debug: bool):
    """nativechat: chat with Gemini, with a local searchable history.

    Conversations are kept in a SQLite database under ~/.nativechat
    (override with NATIVECHAT_DATA_DIR).
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


@cli.command("list")
@click.option(
    "--tab",
    type=click.Choice([t.value for t in ListTab]),
    default=ListTab.ALL.value,
    show_default=True,
)
@click.option("--search", "query", default=None, help="Only conversations matching this text")
def list_cmd(tab: str, query: str | None):
    """List saved conversations, pinned first."""
    with _open_controller() as controller:
        entries = controller.list_conversations(ListTab(tab), query)

    if not entries:
        click.echo("No conversations found.")
        return

    for entry in entries:
        badges = ("📌 " if entry.pinned else "") + ("★ " if entry.favorite else "")
        date = entry.last_updated.astimezone().strftime("%Y-%m-%d %H:%M")
        click.echo(f"{badges}{click.style(entry.title, bold=True)} ({date})")
        click.echo(
            f"   ID: {entry.id} | {entry.message_count} messages | {format_bytes(entry.size_bytes)}"
        )
        if entry.preview:
            click.echo(f"   {entry.preview}")


@cli.command()
@click.argument("conversation_id")
def show(conversation_id: str):
    """Print a conversation transcript."""
    with _open_controller() as controller:
        conv = controller.get_conversation(conversation_id)

    click.echo(click.style(conv.title, bold=True))
    click.echo(f"Created {conv.created.astimezone():%Y-%m-%d %H:%M} | {format_bytes(size_of(conv))}")
    click.echo()
    for i, msg in enumerate(conv.messages, 1):
        _echo_message(i, msg)


@cli.command()
@click.argument("conversation_id")
@click.argument("title")
def rename(conversation_id: str, title: str):
    """Rename a conversation."""
    with _open_controller() as controller:
        conv = controller.rename(conversation_id, title)
    click.echo(f"Renamed to {conv.title!r}")


@cli.command()
@click.argument("conversation_id")
def favorite(conversation_id: str):
    """Toggle the favorite flag of a conversation."""
    with _open_controller() as controller:
        state = controller.toggle_favorite(conversation_id)
    click.echo("Added to favorites" if state else "Removed from favorites")


@cli.command()
@click.argument("conversation_id")
def pin(conversation_id: str):
    """Toggle the pinned flag of a conversation."""
    with _open_controller() as controller:
        state = controller.toggle_pin(conversation_id)
    click.echo("Pinned" if state else "Unpinned")


@cli.command()
@click.argument("conversation_id")
@click.confirmation_option(prompt="Are you sure you want to delete this conversation?")
def delete(conversation_id: str):
    """Delete one conversation."""
    with _open_controller() as controller:
        controller.delete(conversation_id)
    click.echo(f"Deleted {conversation_id}")


@cli.command()
@click.confirmation_option(
    prompt="Are you sure you want to delete all conversations? This cannot be undone."
)
def reset():
    """Delete all conversations."""
    with _open_controller() as controller:
        freed = controller.storage_used
        controller.clear_all()
    click.echo(f"Deleted all conversations, freeing {format_bytes(freed)}.")


@cli.command()
def stats():
    """Show statistics about saved conversations."""
    with _open_controller() as controller:
        s = controller.store.get_stats()
        used = controller.storage_used

    click.echo()
    click.echo(click.style("nativechat statistics", bold=True))
    click.echo(f"  Conversations:  {s['total_conversations']:,}")
    click.echo(f"  Messages:       {s['total_messages']:,}")
    click.echo(f"  Avg msgs/conv:  {s['avg_messages_per_conversation']}")
    click.echo(f"  Favorites:      {s['favorites']:,}")
    click.echo(f"  Pinned:         {s['pinned']:,}")
    if s["date_range_start"]:
        click.echo(f"  Date range:     {s['date_range_start']} → {s['date_range_end']}")
    click.echo(f"  Storage:        {format_bytes(used)}")
    click.echo(f"  Location:       {DATA_DIR}")
    click.echo()


CHAT_HELP = """Commands:
  /image PATH       attach an image to the next message
  /edit N TEXT      rewrite message N (a user edit drops everything after it)
  /delete N         delete message N (a user message takes later ones with it)
  /regen N          replace model message N with a new reply at the end
  /history          print the conversation
  /new              start a new conversation
  /quit             leave"""


@cli.command()
@click.option("--conversation", "conversation_id", default=None, help="Continue a saved conversation")
def chat(conversation_id: str | None):
    """Chat interactively. Type /help for commands."""
    with _open_controller(renderer=TerminalRenderer()) as controller:
        if conversation_id:
            controller.load_conversation(conversation_id)
        click.echo("Type /help for commands.")
        asyncio.run(_chat_loop(controller))


async def _chat_loop(controller: ChatController):
    try:
        while True:
            line = click.prompt(click.style(">", fg="cyan"), prompt_suffix=" ").strip()
            if line in ("/quit", "/exit"):
                break
            try:
                await _handle_line(controller, line)
            except BackendError as exc:
                hint = " Try again with /regen or resend." if exc.retryable else ""
                click.echo(click.style(f"Generation failed: {exc}.{hint}", fg="red"), err=True)
            except ChatError as exc:
                click.echo(click.style(str(exc), fg="red"), err=True)
            except click.ClickException as exc:
                click.echo(click.style(exc.format_message(), fg="red"), err=True)
    finally:
        await controller.engine.backend.aclose()


async def _handle_line(controller: ChatController, line: str):
    command, _, rest = line.partition(" ")
    messages = controller.session.messages

    if command == "/help":
        click.echo(CHAT_HELP)
    elif command == "/history":
        controller.render_stored_messages(list(messages))
    elif command == "/new":
        controller.start_new_chat()
    elif command == "/image":
        path = Path(rest.strip()).expanduser()
        if not path.is_file():
            raise click.ClickException(f"File not found: {path}")
        mime_type = mimetypes.guess_type(path.name)[0] or ""
        data = base64.b64encode(path.read_bytes()).decode("ascii")
        meta = FileMeta(name=path.name, type=mime_type, size=path.stat().st_size)
        controller.add_image_to_chat(f"data:{mime_type};base64,{data}", meta)
        click.echo(f"Attached {path.name} ({format_bytes(meta.size)})")
    elif command in ("/edit", "/delete", "/regen"):
        number, _, text = rest.strip().partition(" ")
        if not number.isdigit():
            raise click.ClickException(f"Usage: {command} N" + (" TEXT" if command == "/edit" else ""))
        index = int(number) - 1
        if command == "/delete":
            removed = controller.delete_message(index)
            click.echo(f"Removed {removed} message(s).")
        elif command == "/regen":
            reply = await controller.regenerate(index)
            _echo_message(len(messages), reply)
        elif messages.get(index).role == Role.USER:
            reply = await controller.edit_user_message(index, text)
            _echo_message(len(messages), reply)
        else:
            controller.edit_ai_message(index, text)
            click.echo("Updated.")
    elif line:
        reply = await controller.send_message(line)
        _echo_message(len(messages), reply)


@cli.command()
def serve():
    """Start the MCP server (stdio transport) over the conversation history."""
    if not SQLITE_PATH.exists():
        click.echo("Warning: No conversations saved yet.", err=True)

    from .server import mcp

    mcp.run(transport="stdio")

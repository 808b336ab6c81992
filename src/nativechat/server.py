"""FastMCP server exposing the saved conversation history as tools."""

from __future__ import annotations

import logging
import sys
from datetime import datetime

from mcp.server.fastmcp import FastMCP

from .accounting import format_bytes, total_size
from .backend import GeminiBackend
from .config import DATA_DIR, GEMINI_API_KEY, SQLITE_PATH
from .controller import ChatController
from .exceptions import ChatError
from .models import ListTab, Role
from .prompting import strip_instruction
from .storage import ConversationStore

# Logging to stderr only; stdout is the MCP JSON-RPC transport
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)

mcp = FastMCP(
    "nativechat",
    instructions=(
        "Browse and organize the user's saved Gemini chat conversations. "
        "Use list_conversations to browse by tab (all, favorites, pinned) or keyword. "
        "Use get_conversation to read a transcript. "
        "Use rename_conversation, toggle_favorite and toggle_pin to organize them. "
        "Use get_stats for an overview including storage used."
    ),
)

# Singleton controller, reused across tool calls
_controller: ChatController | None = None


def _get_controller() -> ChatController:
    global _controller
    if _controller is None:
        _controller = ChatController(ConversationStore(SQLITE_PATH), GeminiBackend(GEMINI_API_KEY))
    return _controller


def _format_ts(ts: datetime | None) -> str:
    if ts is None:
        return "Unknown date"
    return ts.astimezone().strftime("%Y-%m-%d %H:%M")


@mcp.tool()
def list_conversations(tab: str = "all", keyword: str | None = None, limit: int = 20) -> str:
    """Browse saved conversations, pinned first, then most recently updated.

    Args:
        tab: One of "all", "favorites", "pinned"
        keyword: Optional text to search for in titles and messages
        limit: Maximum results (default 20)
    """
    try:
        entries = _get_controller().list_conversations(ListTab(tab), keyword)
    except ValueError:
        return f"Unknown tab '{tab}'. Use all, favorites or pinned."

    if not entries:
        if keyword:
            return f"No conversations found matching '{keyword}'."
        return "No conversations found."

    lines = [f"Conversations ({tab}, {len(entries)} total):\n"]
    for i, e in enumerate(entries[:limit], 1):
        flags = ", ".join(f for f, on in (("pinned", e.pinned), ("favorite", e.favorite)) if on)
        lines.append(f"{i}. **{e.title}** ({_format_ts(e.last_updated)})" + (f" [{flags}]" if flags else ""))
        lines.append(f"   ID: `{e.id}` | {e.message_count} msgs | {format_bytes(e.size_bytes)}")
        if e.preview:
            lines.append(f"   Preview: {e.preview}")

    if len(entries) > limit:
        lines.append(f"\n{len(entries) - limit} more, raise limit to see them.")
    return "\n".join(lines)


@mcp.tool()
def get_conversation(conversation_id: str) -> str:
    """Retrieve a conversation transcript. Images are listed, not inlined.

    Args:
        conversation_id: The conversation ID (from list_conversations)
    """
    try:
        conv = _get_controller().get_conversation(conversation_id)
    except ChatError as exc:
        return str(exc)

    lines = [
        f"# {conv.title}",
        f"Created: {_format_ts(conv.created)} | Updated: {_format_ts(conv.last_updated)}",
        f"Messages: {len(conv.messages)}",
        "",
        "---",
        "",
    ]
    for msg in conv.messages:
        lines.append("**User**:" if msg.role == Role.USER else "**Model**:")
        for part in msg.parts:
            if part.text is not None:
                text = strip_instruction(part.text) if msg.role == Role.USER else part.text
                lines.append(text.strip())
            else:
                lines.append(f"[image: {part.inline_data.mime_type}]")
        lines.append("")
    return "\n".join(lines)


@mcp.tool()
def rename_conversation(conversation_id: str, title: str) -> str:
    """Rename a conversation. Its title will no longer be generated automatically.

    Args:
        conversation_id: The conversation ID
        title: The new title
    """
    try:
        conv = _get_controller().rename(conversation_id, title)
    except ChatError as exc:
        return str(exc)
    return f"Renamed to '{conv.title}'."


@mcp.tool()
def toggle_favorite(conversation_id: str) -> str:
    """Add a conversation to favorites, or remove it.

    Args:
        conversation_id: The conversation ID
    """
    try:
        state = _get_controller().toggle_favorite(conversation_id)
    except ChatError as exc:
        return str(exc)
    return "Added to favorites." if state else "Removed from favorites."


@mcp.tool()
def toggle_pin(conversation_id: str) -> str:
    """Pin a conversation to the top of the list, or unpin it.

    Args:
        conversation_id: The conversation ID
    """
    try:
        state = _get_controller().toggle_pin(conversation_id)
    except ChatError as exc:
        return str(exc)
    return "Pinned." if state else "Unpinned."


@mcp.tool()
def get_stats() -> str:
    """Get statistics about the saved conversations, including storage used."""
    store = _get_controller().store
    stats = store.get_stats()

    lines = [
        "# nativechat Statistics",
        "",
        f"- **Conversations**: {stats['total_conversations']:,}",
        f"- **Messages**: {stats['total_messages']:,}",
        f"- **Avg messages/conversation**: {stats['avg_messages_per_conversation']}",
        f"- **Favorites**: {stats['favorites']:,} | **Pinned**: {stats['pinned']:,}",
        f"- **Storage used**: {format_bytes(total_size(store.get_all()))}",
        "",
    ]
    if stats["date_range_start"]:
        lines.append(f"- **Date range**: {stats['date_range_start']} → {stats['date_range_end']}")
        lines.append("")

    lines.append(f"*Data stored in: {DATA_DIR}*")
    return "\n".join(lines)

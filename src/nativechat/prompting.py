"""Wrap user text with the guidance preamble, and recover the visible text."""

from __future__ import annotations

from .models import Message

ROLE_PREFIX = "User:"
PREAMBLE_MARKER = "This is a system prompt for guidance"
PREAMBLE = (
    f"{PREAMBLE_MARKER}. The user is not aware of these instructions and did "
    "not write them. Use them only as guidance for helpful tips and "
    "personalization; the user's message is always the text before them.\n"
)
PREAMBLE_CLOSING = "You are talking with the user now."


def compose_user_text(text: str, system_instruction: str = "") -> str:
    """Return the text stored for a user turn.

    Without a system instruction the text is stored as typed.
    """
    if not system_instruction:
        return text
    return f"{ROLE_PREFIX}{text}\n\n{PREAMBLE}{system_instruction}{PREAMBLE_CLOSING}"


def strip_instruction(text: str) -> str:
    """Drop the guidance preamble and role prefix from stored user text."""
    if PREAMBLE_MARKER in text:
        text = text.split("\n\n" + PREAMBLE_MARKER)[0]
    if text.startswith(ROLE_PREFIX):
        text = text[len(ROLE_PREFIX):]
    return text


def visible_text(message: Message) -> str:
    text = message.first_text() or ""
    return strip_instruction(text).strip()

"""Storage size accounting for conversations."""

from __future__ import annotations

import math
from collections.abc import Iterable

from .config import SIZE_UNITS
from .models import Conversation


def size_of(conversation: Conversation) -> int:
    """Byte length of the conversation's stored form, image payloads included."""
    return len(conversation.to_json().encode("utf-8"))


def total_size(conversations: Iterable[Conversation]) -> int:
    return sum(size_of(c) for c in conversations)


def format_bytes(n: float, decimals: int = 2) -> str:
    """Format a byte count for display, e.g. ``1536 -> "1.5 KB"``."""
    if n == 0:
        return "0 Bytes"
    decimals = max(decimals, 0)
    unit_index = math.floor(math.log(n) / math.log(1024))
    # float log can land just below an exact power of 1024
    if n >= 1024 ** (unit_index + 1):
        unit_index += 1
    unit_index = min(max(unit_index, 0), len(SIZE_UNITS) - 1)
    value = round(n / 1024**unit_index, decimals)
    text = f"{value:.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {SIZE_UNITS[unit_index]}"

"""Derive display titles for conversations from their content."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from .config import (
    IMAGE_TITLE,
    MAX_SENTENCE_CHARS,
    MODEL_TITLE_WORDS,
    PLACEHOLDER_TITLE,
    PROVISIONAL_TITLE_CHARS,
    USER_TITLE_WORDS,
)
from .models import Conversation, Message, Role
from .prompting import strip_instruction

logger = logging.getLogger(__name__)

_SENTENCE_END = re.compile(r"[.!?]")


def _first_user(messages: Sequence[Message]) -> Message | None:
    return next((m for m in messages if m.role == Role.USER), None)


def _title_from_model(messages: Sequence[Message]) -> str | None:
    for msg in messages:
        if msg.role != Role.MODEL:
            continue
        text = next((p.text for p in msg.parts if p.text and p.text.strip()), None)
        if text is None:
            continue
        sentence = next((s for s in _SENTENCE_END.split(text) if s.strip()), None)
        if sentence and len(sentence) < MAX_SENTENCE_CHARS:
            return " ".join(sentence.split()[:MODEL_TITLE_WORDS])
        return None
    return None


def _title_from_user(messages: Sequence[Message]) -> str | None:
    first = _first_user(messages)
    if first is None:
        return None
    text = first.first_text()
    if not text:
        return None
    words = strip_instruction(text).split()
    if not words:
        return None
    return " ".join(words[:USER_TITLE_WORDS])


def derive_title(messages: Sequence[Message]) -> str | None:
    """Title taken from the content itself, or None if nothing usable exists yet.

    The first sentence of the first model reply wins when it is short; the
    opening words of the first user message are used otherwise.
    """
    return _title_from_model(messages) or _title_from_user(messages)


def fallback_title(messages: Sequence[Message]) -> str:
    first = _first_user(messages)
    if first is not None and any(p.is_image for p in first.parts):
        return IMAGE_TITLE
    return PLACEHOLDER_TITLE


def synthesize_title(messages: Sequence[Message]) -> str:
    return derive_title(messages) or fallback_title(messages)


def provisional_title(messages: Sequence[Message]) -> str:
    """Title given to a conversation when it is first saved."""
    first = _first_user(messages)
    text = strip_instruction(first.first_text() or "").strip() if first else ""
    if text:
        if len(text) > PROVISIONAL_TITLE_CHARS:
            return text[:PROVISIONAL_TITLE_CHARS] + "..."
        return text
    return fallback_title(messages)


def needs_title(conversation: Conversation) -> bool:
    """Whether a save should retitle the conversation.

    A placeholder title re-arms synthesis, unless the user chose it.
    """
    if conversation.renamed:
        return False
    return conversation.title == PLACEHOLDER_TITLE or conversation.needs_title_generation


def apply_title(conversation: Conversation) -> bool:
    """Retitle ``conversation`` in place. Returns True when a title was derived.

    Only a derived title disarms further synthesis; the image and placeholder
    fallbacks leave it armed so a later reply can still name the conversation.
    """
    title = derive_title(conversation.messages)
    if title is None:
        conversation.title = fallback_title(conversation.messages)
        return False
    conversation.title = title
    conversation.needs_title_generation = False
    logger.debug("Titled conversation %s: %r", conversation.id, title)
    return True

"""Conversation lifecycle: listing, loading, saving, renaming and deleting.

:class:`ChatController` owns the open :class:`ChatSession` and is the only
entry point UI components use. After every mutation it saves the working
copy and recomputes storage usage.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from .accounting import size_of, total_size
from .backend import GenerationBackend, GenerationOptions
from .config import PREVIEW_CHARS, SYSTEM_INSTRUCTION
from .engine import EditTruncationEngine
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .models import (
    Conversation,
    ConversationSummary,
    FileMeta,
    InlineData,
    ListTab,
    Message,
    Part,
    Role,
)
from .prompting import compose_user_text, visible_text
from .session import ChatSession
from .storage import ConversationStore

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(;[^,]*)?;base64,(?P<data>.*)$", re.DOTALL)

IN_MEMORY_NOTICE = (
    "Your conversations could not be saved. Changes are kept in memory only "
    "and will be lost when the session ends."
)


@dataclass
class Notice:
    level: str
    message: str


class Renderer(Protocol):
    def clear(self) -> None: ...

    def render_messages(self, messages: Sequence[Message]) -> None: ...


def _log_notice(notice: Notice):
    logger.warning("%s", notice.message)


def sort_conversations(conversations: Iterable[Conversation], tab: ListTab) -> list[Conversation]:
    """Filter for ``tab`` and order newest first; the All tab puts pinned first."""
    if tab == ListTab.FAVORITES:
        conversations = [c for c in conversations if c.favorite]
    elif tab == ListTab.PINNED:
        conversations = [c for c in conversations if c.pinned]

    ordered = sorted(conversations, key=lambda c: c.last_updated, reverse=True)
    if tab == ListTab.ALL:
        ordered.sort(key=lambda c: not c.pinned)
    return ordered


def summarize(conv: Conversation) -> ConversationSummary:
    preview = ""
    for msg in reversed(conv.messages):
        if msg.role == Role.USER and msg.first_text() is not None:
            preview = visible_text(msg)
            if len(preview) > PREVIEW_CHARS:
                preview = preview[:PREVIEW_CHARS] + "..."
            break

    return ConversationSummary(
        id=conv.id,
        title=conv.title,
        last_updated=conv.last_updated,
        favorite=conv.favorite,
        pinned=conv.pinned,
        message_count=len(conv.messages),
        preview=preview,
        size_bytes=size_of(conv),
    )


def parse_data_url(data_url: str, file_meta: FileMeta | None = None) -> InlineData:
    """Turn a base64 ``data:`` URL into an inline image."""
    match = _DATA_URL.match(data_url.strip())
    if not match:
        raise ValidationError("Expected a base64 data: URL")
    data = match.group("data")
    try:
        base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Image data is not valid base64") from exc

    mime_type = (file_meta.type if file_meta else "") or match.group("mime") or ""
    if not mime_type.startswith("image/"):
        raise ValidationError(f"Not an image: {mime_type or 'unknown type'}")
    return InlineData(mime_type=mime_type, data=data)


class ChatController:
    def __init__(
        self,
        store: ConversationStore,
        backend: GenerationBackend,
        *,
        renderer: Renderer | None = None,
        notify=None,
        options: GenerationOptions | None = None,
        system_instruction: str = SYSTEM_INSTRUCTION,
    ):
        self.store = store
        self.session = ChatSession()
        self.renderer = renderer
        self.notify = notify or _log_notice
        self.system_instruction = system_instruction
        self.engine = EditTruncationEngine(self.session, backend, save=self.save, options=options)
        self.storage_used = 0
        if store.in_memory_only:
            self.notify(Notice("warning", IN_MEMORY_NOTICE))
        self._refresh_usage()

    # --------- published interface ----------
    def clear_chat(self, reset_history: bool = True):
        """Clear the view, and the working history when ``reset_history`` is set."""
        self._ensure_idle()
        if self.renderer is not None:
            self.renderer.clear()
        if reset_history:
            self.session.messages.clear()
            self.session.pending_images = []
        logger.debug("Chat cleared (reset_history=%s)", reset_history)

    def render_stored_messages(self, messages: Sequence[Message]):
        if self.renderer is not None:
            self.renderer.render_messages(messages)

    def get_chat_history(self) -> list[Message]:
        return self.session.messages.snapshot()

    def set_chat_history(self, messages: Iterable[Message]):
        """Replace the working history and save it."""
        self._ensure_idle()
        self.session.messages.replace_from(0, [m.model_copy(deep=True) for m in messages])
        self.save()

    def add_image_to_chat(self, data_url: str, file_meta: FileMeta | None = None):
        """Queue an image for the next message."""
        image = parse_data_url(data_url, file_meta)
        self.session.pending_images.append(image)
        logger.debug(
            "Image queued: %s (%s, %d base64 chars)",
            file_meta.name if file_meta else "unnamed", image.mime_type, len(image.data),
        )

    # --------- chat turns ----------
    async def send_message(self, text: str = "") -> Message:
        """Send ``text`` with any queued images and return the model's reply."""
        parts = self._user_parts(text, self.session.pending_images)
        return await self.engine.send_message(parts)

    async def edit_user_message(self, index: int, text: str) -> Message:
        """Rewrite the text of a user turn, keeping its images."""
        images = [p.inline_data for p in self.session.messages.get(index).parts if p.is_image]
        return await self.engine.edit_user_message(index, self._user_parts(text, images))

    def edit_ai_message(self, index: int, text: str):
        """Replace the text of a model turn, keeping its images where they were."""
        parts: list[Part] = []
        placed = False
        for part in self.session.messages.get(index).parts:
            if part.is_image:
                parts.append(part)
            elif not placed:
                parts.append(Part.from_text(text))
                placed = True
        if not placed:
            parts.insert(0, Part.from_text(text))
        self.engine.edit_ai_message(index, parts)

    async def regenerate(self, index: int) -> Message:
        return await self.engine.regenerate_model_message(index)

    def delete_message(self, index: int) -> int:
        return self.engine.delete_message(index)

    # --------- lifecycle ----------
    def list_conversations(
        self, tab: ListTab = ListTab.ALL, query: str | None = None
    ) -> list[ConversationSummary]:
        """Listing entries for a history tab, optionally narrowed by full-text search."""
        conversations = self.store.get_all()
        if query and query.strip():
            hits = set(self.store.search(query))
            conversations = [c for c in conversations if c.id in hits]
        return [summarize(c) for c in sort_conversations(conversations, ListTab(tab))]

    def get_conversation(self, conversation_id: str) -> Conversation:
        conv = self.store.get(conversation_id)
        if conv is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")
        return conv

    def start_new_chat(self):
        self._ensure_idle()
        self.clear_chat(True)
        self.session.conversation_id = None
        logger.debug("Started new chat")

    def load_conversation(self, conversation_id: str) -> Conversation:
        """Open a stored conversation as the working copy."""
        self._ensure_idle()
        conv = self.get_conversation(conversation_id)
        for msg in conv.messages:
            if not msg.parts:
                msg.parts = [Part.from_text(" ")]
        self.session.messages.load(conv.messages)
        self.session.conversation_id = conv.id
        self.session.pending_images = []
        if self.renderer is not None:
            self.renderer.clear()
        self.render_stored_messages(conv.messages)
        logger.debug("Loaded conversation %s (%d messages)", conv.id, len(conv.messages))
        return conv

    def rename(self, conversation_id: str, title: str) -> Conversation:
        """Set a user-chosen title. The title is never synthesized again."""
        title = title.strip()
        if not title:
            raise ValidationError("Title cannot be empty")
        conv = self.get_conversation(conversation_id)
        conv.title = title
        conv.needs_title_generation = False
        conv.renamed = True
        self._write(self.store.upsert, conv)
        self._refresh_usage()
        logger.info("Renamed conversation %s to %r", conversation_id, title)
        return conv

    def toggle_favorite(self, conversation_id: str) -> bool:
        conv = self.get_conversation(conversation_id)
        conv.favorite = not conv.favorite
        self._write(self.store.upsert, conv)
        self._refresh_usage()
        return conv.favorite

    def toggle_pin(self, conversation_id: str) -> bool:
        conv = self.get_conversation(conversation_id)
        conv.pinned = not conv.pinned
        self._write(self.store.upsert, conv)
        self._refresh_usage()
        return conv.pinned

    def delete(self, conversation_id: str):
        self.get_conversation(conversation_id)
        if conversation_id == self.session.conversation_id:
            self._ensure_idle()
        self._write(self.store.delete, conversation_id)
        if conversation_id == self.session.conversation_id:
            self.session.conversation_id = None
            self.clear_chat(True)
        self._refresh_usage()
        logger.info("Deleted conversation %s", conversation_id)

    def clear_all(self):
        self._ensure_idle()
        self._write(self.store.clear)
        self.session.conversation_id = None
        self.clear_chat(True)
        self._refresh_usage()
        logger.info("Cleared all conversations")

    # --------- persistence ----------
    def save(self, force: bool = False):
        """Persist the working copy; an emptied conversation is deleted."""
        self.session.conversation_id = self._write(
            self.store.save_current_conversation,
            self.session.messages,
            self.session.conversation_id,
            force,
        )
        self._refresh_usage()

    def _write(self, action, *args):
        """Run a store write; on failure fall back to in-memory operation."""
        try:
            return action(*args)
        except PersistenceError as exc:
            if self.store.in_memory_only:
                raise
            logger.warning("Durable store unavailable, continuing in memory: %s", exc)
            self.store.in_memory_only = True
            self.notify(Notice("warning", IN_MEMORY_NOTICE))
            return action(*args)

    def _refresh_usage(self):
        self.storage_used = total_size(self.store.get_all())

    # --------- internals ----------
    def _user_parts(self, text: str, images: Iterable[InlineData]) -> list[Part]:
        parts: list[Part] = []
        if text.strip():
            parts.append(Part.from_text(compose_user_text(text.strip(), self.system_instruction)))
        parts.extend(Part(inline_data=img) for img in images)
        return parts

    def _ensure_idle(self):
        if self.session.generating:
            raise ValidationError("Wait for the current reply to finish first")

"""Edit, delete and regenerate operations over the open conversation's log.

Editing or deleting a user message drops everything after it, since every
later turn was produced in reply to the old content. Model messages are
edited and deleted in place. A failed generation leaves the log as it was
after truncation; nothing is rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from .backend import GenerationBackend, GenerationOptions
from .exceptions import NotFoundError, ValidationError
from .models import Message, Part, Role
from .session import ChatSession

logger = logging.getLogger(__name__)


def check_parts(parts: Sequence[Part]):
    """Reject a message that has neither text nor images."""
    if not any(p.is_image or (p.text and p.text.strip()) for p in parts):
        raise ValidationError("A message needs text or at least one image")


class EditTruncationEngine:
    def __init__(
        self,
        session: ChatSession,
        backend: GenerationBackend,
        save: Callable[[], None] | None = None,
        options: GenerationOptions | None = None,
    ):
        self.session = session
        self.backend = backend
        self.options = options or GenerationOptions()
        self._save = save or (lambda: None)

    @property
    def messages(self):
        return self.session.messages

    async def send_message(self, parts: Sequence[Part]) -> Message:
        """Append a user turn and the model's reply to it."""
        check_parts(parts)
        self._ensure_idle()
        self.messages.append(Message(role=Role.USER, parts=list(parts)))
        # queued attachments are consumed by the turn just appended
        self.session.pending_images = []
        self._save()
        reply = await self._generate(len(self.messages))
        self.messages.append(reply)
        self._save()
        return reply

    async def edit_user_message(self, index: int, new_parts: Sequence[Part]) -> Message:
        """Rewrite a user turn, drop every later turn, and ask for a new reply."""
        check_parts(new_parts)
        self._require(index, Role.USER)
        self._ensure_idle()

        edited = self.messages[index].model_copy(update={"parts": list(new_parts)})
        self.messages.replace_from(index, [edited])
        logger.debug("Edited user message %d, log truncated to %d", index, len(self.messages))
        self._save()

        reply = await self._generate(index + 1)
        self.messages.append(reply)
        self._save()
        return reply

    def edit_ai_message(self, index: int, new_parts: Sequence[Part]):
        """Correct a model turn in place. Later turns are kept."""
        check_parts(new_parts)
        self._require(index, Role.MODEL)
        self._ensure_idle()
        self.messages.replace_parts(index, new_parts)
        self._save()

    async def regenerate_model_message(self, index: int) -> Message:
        """Replace a model turn with a fresh reply to the user turn before it.

        The new reply is appended at the end of the log, so regenerating an
        earlier reply moves it after the later turns.
        """
        self._require(index, Role.MODEL)
        user_index = self._preceding_user(index)
        self._ensure_idle()

        self.messages.remove_at(index)
        self._save()

        reply = await self._generate(user_index + 1)
        self.messages.append(reply)
        self._save()
        return reply

    def delete_message(self, index: int) -> int:
        """Delete a message. Returns how many messages were removed.

        A user message takes every later message with it; a model message
        goes alone.
        """
        msg = self.messages.get(index)
        self._ensure_idle()
        if msg.role == Role.USER:
            removed = len(self.messages) - index
            self.messages.replace_from(index, [])
        else:
            self.messages.remove_at(index)
            removed = 1
        logger.debug("Deleted %d message(s) from index %d", removed, index)
        self._save()
        return removed

    # --------- internals ----------
    def _require(self, index: int, role: Role) -> Message:
        msg = self.messages.get(index)
        if msg.role != role:
            raise NotFoundError(
                f"Message {index} is a {msg.role.value} message, not a {role.value} message"
            )
        return msg

    def _preceding_user(self, index: int) -> int:
        for i in range(index - 1, -1, -1):
            if self.messages[i].role == Role.USER:
                return i
        raise NotFoundError(f"No user message precedes message {index}")

    def _ensure_idle(self):
        if self.session.generating:
            raise ValidationError("A reply is still being generated for this conversation")

    async def _generate(self, end: int) -> Message:
        prefix = self.messages.snapshot()[:end]
        self.session.generating = True
        try:
            parts = await self.backend.generate(prefix, self.options)
        finally:
            self.session.generating = False
        return Message(role=Role.MODEL, parts=parts)

"""Working state of the one open conversation."""

from __future__ import annotations

from dataclasses import dataclass, field

from .history import MessageStore
from .models import InlineData


@dataclass
class ChatSession:
    """Context object handed to the engine and controller.

    ``conversation_id`` is None while the conversation is an unsaved draft.
    ``pending_images`` are attachments queued for the next user message.
    """

    messages: MessageStore = field(default_factory=MessageStore)
    conversation_id: str | None = None
    pending_images: list[InlineData] = field(default_factory=list)
    generating: bool = False

    @property
    def is_draft(self) -> bool:
        return self.conversation_id is None

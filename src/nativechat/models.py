"""Data models for conversations and their messages."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    """Stored and sent over the wire in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


class ListTab(str, Enum):
    ALL = "all"
    FAVORITES = "favorites"
    PINNED = "pinned"


class InlineData(_Record):
    mime_type: str
    data: str


class Part(_Record):
    """A text or inline-image fragment of a message.

    Exactly one of ``text`` and ``inline_data`` is set.
    """

    text: str | None = None
    inline_data: InlineData | None = None

    @model_validator(mode="after")
    def _one_kind(self) -> Part:
        if (self.text is None) == (self.inline_data is None):
            raise ValueError("a part holds either text or inline_data")
        return self

    @classmethod
    def from_text(cls, text: str) -> Part:
        return cls(text=text)

    @classmethod
    def from_image(cls, mime_type: str, data: str) -> Part:
        return cls(inline_data=InlineData(mime_type=mime_type, data=data))

    @property
    def is_image(self) -> bool:
        return self.inline_data is not None


class Message(_Record):
    id: str = Field(default_factory=new_id)
    role: Role
    parts: list[Part] = []

    def first_text(self) -> str | None:
        for part in self.parts:
            if part.text is not None:
                return part.text
        return None

    def to_wire(self) -> dict:
        """Backend representation: role and parts only."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"id"})


class Conversation(_Record):
    id: str = Field(default_factory=new_id)
    title: str
    messages: list[Message] = []
    created: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    favorite: bool = False
    pinned: bool = False
    needs_title_generation: bool = True
    # set once the user picks a title; synthesis never runs again
    renamed: bool = False

    def to_json(self) -> str:
        """Canonical serialized form, as written to the store."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ConversationSummary(_Record):
    id: str
    title: str
    last_updated: datetime
    favorite: bool = False
    pinned: bool = False
    message_count: int = 0
    preview: str = ""
    size_bytes: int = 0


class FileMeta(BaseModel):
    """Metadata about an image handed to the chat by an external tool."""

    name: str = ""
    type: str = ""
    size: int | None = None

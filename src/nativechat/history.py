"""In-memory ordered message log for the active conversation."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

from .exceptions import NotFoundError
from .models import Message, Part, Role


class MessageStore:
    """Ordered log of messages with stable ids.

    Every mutating method sets ``dirty``; the repository clears it once the
    log has been written.
    """

    def __init__(self, messages: Iterable[Message] = ()):
        self._messages: list[Message] = [m.model_copy(deep=True) for m in messages]
        self._positions: dict[str, int] = {}
        self._reindex()
        self.dirty = bool(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def __bool__(self) -> bool:
        return bool(self._messages)

    # --------- lookup ----------
    def get(self, index: int) -> Message:
        if not 0 <= index < len(self._messages):
            raise NotFoundError(f"No message at index {index} (log has {len(self._messages)})")
        return self._messages[index]

    def index_of(self, message_id: str) -> int:
        try:
            return self._positions[message_id]
        except KeyError:
            raise NotFoundError(f"Unknown message id: {message_id}") from None

    def resolve_index(self, role: Role, ordinal: int) -> int:
        """Map the ``ordinal``-th message of ``role`` (0-based) to its log index.

        Counting runs left to right over every entry in the log, so callers
        must number visible messages the same way, without hiding any.
        """
        seen = 0
        for i, msg in enumerate(self._messages):
            if msg.role != role:
                continue
            if seen == ordinal:
                return i
            seen += 1
        raise NotFoundError(f"No {role.value} message #{ordinal} in this conversation")

    # --------- mutation ----------
    def append(self, message: Message) -> None:
        self._messages.append(message)
        self._positions[message.id] = len(self._messages) - 1
        self._touch()

    def insert(self, index: int, message: Message) -> None:
        if not 0 <= index <= len(self._messages):
            raise NotFoundError(f"Cannot insert at index {index}")
        self._messages.insert(index, message)
        self._reindex()
        self._touch()

    def replace_from(self, index: int, messages: Sequence[Message]) -> None:
        """Drop ``index..end`` and append ``messages``."""
        if not 0 <= index <= len(self._messages):
            raise NotFoundError(f"Cannot truncate at index {index}")
        del self._messages[index:]
        self._messages.extend(messages)
        self._reindex()
        self._touch()

    def remove_at(self, index: int) -> Message:
        removed = self.get(index)
        del self._messages[index]
        self._reindex()
        self._touch()
        return removed

    def replace_parts(self, index: int, parts: Sequence[Part]) -> None:
        self.get(index).parts = list(parts)
        self._touch()

    def load(self, messages: Iterable[Message]) -> None:
        """Replace the whole log with stored messages; the result is clean."""
        self._messages = [m.model_copy(deep=True) for m in messages]
        self._reindex()
        self.dirty = False

    def clear(self) -> None:
        self._messages = []
        self._positions = {}
        self._touch()

    def mark_clean(self) -> None:
        self.dirty = False

    # --------- export ----------
    def snapshot(self) -> list[Message]:
        return [m.model_copy(deep=True) for m in self._messages]

    def to_backend(self, end: int | None = None) -> list[dict]:
        """Wire form of ``messages[:end]`` for a generation request."""
        return [m.to_wire() for m in self._messages[:end]]

    # --------- internals ----------
    def _reindex(self) -> None:
        self._positions = {m.id: i for i, m in enumerate(self._messages)}

    def _touch(self) -> None:
        self.dirty = True

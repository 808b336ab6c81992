"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from pathlib import Path

import pytest

from nativechat.controller import ChatController
from nativechat.models import Message, Part, Role
from nativechat.storage import ConversationStore


def user(text: str) -> Message:
    return Message(role=Role.USER, parts=[Part.from_text(text)])


def model(text: str) -> Message:
    return Message(role=Role.MODEL, parts=[Part.from_text(text)])


def texts(messages) -> list[str]:
    return [m.first_text() for m in messages]


class FakeBackend:
    """Scripted generation backend that records every request."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls: list[list[Message]] = []
        self.error: Exception | None = None

    async def generate(self, history, options=None):
        self.calls.append([m.model_copy(deep=True) for m in history])
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else f"reply {len(self.calls)}"
        return [Part.from_text(text)]

    async def aclose(self):
        pass


class RecordingRenderer:
    def __init__(self):
        self.cleared = 0
        self.rendered: list[list[Message]] = []

    def clear(self):
        self.cleared += 1

    def render_messages(self, messages):
        self.rendered.append(list(messages))


@pytest.fixture(scope="function")
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "conversations.db"


@pytest.fixture(scope="function")
def store(db_path: Path):
    s = ConversationStore(db_path)
    yield s
    s.close()


@pytest.fixture(scope="function")
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture(scope="function")
def notices() -> list:
    return []


@pytest.fixture(scope="function")
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture(scope="function")
def controller(store, backend, notices, renderer) -> ChatController:
    return ChatController(
        store,
        backend,
        renderer=renderer,
        notify=notices.append,
        system_instruction="",
    )

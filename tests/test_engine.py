from __future__ import annotations

import pytest

from nativechat.engine import EditTruncationEngine
from nativechat.exceptions import NetworkError, NotFoundError, ValidationError
from nativechat.history import MessageStore
from nativechat.models import Part, Role
from nativechat.session import ChatSession

from conftest import FakeBackend, model, texts, user


def make_engine(messages, backend: FakeBackend):
    session = ChatSession(messages=MessageStore(messages))
    saves: list[list[str]] = []
    engine = EditTruncationEngine(
        session, backend, save=lambda: saves.append(texts(session.messages))
    )
    return engine, session, saves


def four_turns():
    return [user("U0"), model("M0"), user("U1"), model("M1")]


def test_delete_user_message_truncates():
    engine, session, saves = make_engine(four_turns(), FakeBackend())
    assert engine.delete_message(2) == 2
    assert texts(session.messages) == ["U0", "M0"]
    assert saves == [["U0", "M0"]]


@pytest.mark.parametrize("index", [0, 2])
def test_user_delete_leaves_index_messages(index):
    engine, session, _ = make_engine(four_turns(), FakeBackend())
    engine.delete_message(index)
    assert len(session.messages) == index


def test_delete_model_message_is_local():
    engine, session, _ = make_engine(four_turns(), FakeBackend())
    before = session.messages.snapshot()
    assert engine.delete_message(1) == 1
    assert session.messages.snapshot() == [before[0], before[2], before[3]]


def test_deleting_everything_saves_an_empty_log():
    engine, session, saves = make_engine([user("only")], FakeBackend())
    engine.delete_message(0)
    assert len(session.messages) == 0
    assert saves == [[]]


@pytest.mark.asyncio
async def test_edit_user_message_truncates_and_regenerates():
    backend = FakeBackend(replies=["M0 again"])
    engine, session, saves = make_engine([user("A"), model("M0"), user("U1"), model("M1")], backend)
    original_id = session.messages[0].id

    reply = await engine.edit_user_message(0, [Part.from_text("B")])

    assert saves[0] == ["B"]
    assert [texts(call) for call in backend.calls] == [["B"]]
    assert texts(session.messages) == ["B", "M0 again"]
    assert reply.role == Role.MODEL
    assert session.messages[0].id == original_id
    assert saves[-1] == ["B", "M0 again"]


@pytest.mark.asyncio
async def test_backend_failure_keeps_truncation():
    backend = FakeBackend()
    backend.error = NetworkError("connection reset")
    engine, session, _ = make_engine(four_turns(), backend)

    with pytest.raises(NetworkError):
        await engine.edit_user_message(2, [Part.from_text("U1 edited")])

    assert texts(session.messages) == ["U0", "M0", "U1 edited"]
    assert session.generating is False


@pytest.mark.asyncio
async def test_edit_rejects_wrong_role_and_empty_parts():
    backend = FakeBackend()
    engine, session, saves = make_engine(four_turns(), backend)

    with pytest.raises(NotFoundError):
        await engine.edit_user_message(1, [Part.from_text("x")])
    with pytest.raises(NotFoundError):
        await engine.edit_user_message(9, [Part.from_text("x")])
    with pytest.raises(ValidationError):
        await engine.edit_user_message(0, [Part.from_text("   ")])
    with pytest.raises(NotFoundError):
        engine.edit_ai_message(0, [Part.from_text("x")])

    assert texts(session.messages) == ["U0", "M0", "U1", "M1"]
    assert backend.calls == []
    assert saves == []


def test_edit_ai_message_in_place():
    backend = FakeBackend()
    engine, session, saves = make_engine(four_turns(), backend)
    engine.edit_ai_message(1, [Part.from_text("M0 fixed")])
    assert texts(session.messages) == ["U0", "M0 fixed", "U1", "M1"]
    assert backend.calls == []
    assert len(saves) == 1


@pytest.mark.asyncio
async def test_regenerate_last_model_message():
    backend = FakeBackend(replies=["M1'"])
    engine, session, _ = make_engine(four_turns(), backend)
    await engine.regenerate_model_message(3)
    assert [texts(call) for call in backend.calls] == [["U0", "M0", "U1"]]
    assert texts(session.messages) == ["U0", "M0", "U1", "M1'"]


@pytest.mark.asyncio
async def test_regenerate_earlier_model_message_appends_at_end():
    backend = FakeBackend(replies=["M0'"])
    engine, session, _ = make_engine(four_turns(), backend)
    await engine.regenerate_model_message(1)
    assert [texts(call) for call in backend.calls] == [["U0"]]
    assert texts(session.messages) == ["U0", "U1", "M1", "M0'"]


@pytest.mark.asyncio
async def test_regenerate_needs_a_preceding_user_message():
    engine, session, _ = make_engine([model("orphan"), user("U0")], FakeBackend())
    with pytest.raises(NotFoundError):
        await engine.regenerate_model_message(0)
    with pytest.raises(NotFoundError):
        await engine.regenerate_model_message(1)
    assert texts(session.messages) == ["orphan", "U0"]


@pytest.mark.asyncio
async def test_regenerate_failure_leaves_message_removed():
    backend = FakeBackend()
    backend.error = NetworkError("timeout")
    engine, session, _ = make_engine(four_turns(), backend)
    with pytest.raises(NetworkError):
        await engine.regenerate_model_message(3)
    assert texts(session.messages) == ["U0", "M0", "U1"]


@pytest.mark.asyncio
async def test_send_message_appends_turn_and_reply():
    backend = FakeBackend(replies=["hello back"])
    engine, session, saves = make_engine([], backend)
    await engine.send_message([Part.from_text("hello")])
    assert texts(session.messages) == ["hello", "hello back"]
    assert saves == [["hello"], ["hello", "hello back"]]


@pytest.mark.asyncio
async def test_one_generation_at_a_time():
    backend = FakeBackend()
    engine, session, _ = make_engine(four_turns(), backend)
    session.generating = True

    with pytest.raises(ValidationError):
        await engine.send_message([Part.from_text("again")])
    with pytest.raises(ValidationError):
        await engine.edit_user_message(0, [Part.from_text("edit")])
    with pytest.raises(ValidationError):
        await engine.regenerate_model_message(3)
    with pytest.raises(ValidationError):
        engine.edit_ai_message(1, [Part.from_text("edit")])
    with pytest.raises(ValidationError):
        engine.delete_message(2)

    assert texts(session.messages) == ["U0", "M0", "U1", "M1"]
    assert backend.calls == []

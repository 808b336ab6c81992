from __future__ import annotations

import pytest

from nativechat.exceptions import NotFoundError
from nativechat.history import MessageStore
from nativechat.models import Part, Role

from conftest import model, texts, user


@pytest.fixture
def log() -> MessageStore:
    store = MessageStore([user("u0"), model("m0"), user("u1"), model("m1")])
    store.mark_clean()
    return store


def test_append_and_dirty_flag(log: MessageStore):
    assert not log.dirty
    log.append(user("u2"))
    assert len(log) == 5
    assert log.dirty
    assert log.index_of(log[4].id) == 4


def test_replace_from_truncates_then_appends(log: MessageStore):
    log.replace_from(1, [model("m0'")])
    assert texts(log) == ["u0", "m0'"]
    log.replace_from(0, [])
    assert len(log) == 0


def test_remove_at_removes_exactly_one(log: MessageStore):
    removed = log.remove_at(1)
    assert removed.first_text() == "m0"
    assert texts(log) == ["u0", "u1", "m1"]


def test_id_map_follows_structural_changes(log: MessageStore):
    last_id = log[3].id
    log.remove_at(0)
    assert log.index_of(last_id) == 2
    log.insert(0, user("first"))
    assert log.index_of(last_id) == 3
    with pytest.raises(NotFoundError):
        log.index_of("missing")


def test_resolve_index_counts_only_that_role(log: MessageStore):
    assert log.resolve_index(Role.USER, 0) == 0
    assert log.resolve_index(Role.USER, 1) == 2
    assert log.resolve_index(Role.MODEL, 1) == 3
    with pytest.raises(NotFoundError):
        log.resolve_index(Role.USER, 2)


def test_resolve_index_with_non_alternating_roles():
    log = MessageStore([user("a"), user("b"), model("c"), model("d"), user("e")])
    assert log.resolve_index(Role.USER, 2) == 4
    assert log.resolve_index(Role.MODEL, 1) == 3


def test_out_of_range_lookups_raise(log: MessageStore):
    with pytest.raises(NotFoundError):
        log.get(4)
    with pytest.raises(NotFoundError):
        log.get(-1)
    with pytest.raises(NotFoundError):
        log.remove_at(10)
    with pytest.raises(NotFoundError):
        log.replace_from(5, [])


def test_load_is_clean_and_copies(log: MessageStore):
    source = [user("x"), model("y")]
    log.load(source)
    assert not log.dirty
    assert texts(log) == ["x", "y"]
    log.replace_parts(0, [Part.from_text("changed")])
    assert source[0].first_text() == "x"
    assert log.dirty


def test_to_backend_drops_ids(log: MessageStore):
    wire = log.to_backend(end=2)
    assert wire == [
        {"role": "user", "parts": [{"text": "u0"}]},
        {"role": "model", "parts": [{"text": "m0"}]},
    ]

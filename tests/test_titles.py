from __future__ import annotations

from nativechat.models import Conversation, Message, Part, Role
from nativechat.prompting import compose_user_text
from nativechat.titles import apply_title, needs_title, provisional_title, synthesize_title

from conftest import model, user


def test_first_user_message_gives_five_words():
    messages = [user("Hello world this is a test message")]
    assert synthesize_title(messages) == "Hello world this is a"


def test_short_first_model_sentence_gives_four_words():
    messages = [user("Draw me a cat"), model("Here is your fluffy orange cat! Enjoy it.")]
    assert synthesize_title(messages) == "Here is your fluffy"


def test_long_model_sentence_falls_back_to_user_text():
    long_sentence = "This reply opens with a sentence that runs well past sixty characters in length."
    messages = [user("Tell me about sloths please"), model(long_sentence)]
    assert synthesize_title(messages) == "Tell me about sloths please"


def test_model_reply_without_text_is_skipped():
    image_reply = Message(role=Role.MODEL, parts=[Part.from_image("image/png", "AAAA")])
    messages = [user("paint a boat"), image_reply, model("A small boat. Nice.")]
    assert synthesize_title(messages) == "A small boat"


def test_instruction_preamble_is_stripped():
    stored = compose_user_text("what is the weather like today", "Be concise. ")
    assert stored.startswith("User:")
    assert synthesize_title([user(stored)]) == "what is the weather like"


def test_image_only_and_empty_fallbacks():
    image_only = Message(role=Role.USER, parts=[Part.from_image("image/jpeg", "AAAA")])
    assert synthesize_title([image_only]) == "Image Conversation"
    assert synthesize_title([]) == "New Conversation"


def test_provisional_title_truncates_user_text():
    messages = [user("Hello world this is a test message")]
    assert provisional_title(messages) == "Hello world this is a test mes..."
    assert provisional_title([user("short")]) == "short"


def test_apply_title_disarms_only_when_derived():
    image_only = Message(role=Role.USER, parts=[Part.from_image("image/png", "AAAA")])
    conv = Conversation(title="New Conversation", messages=[image_only])
    assert apply_title(conv) is False
    assert conv.title == "Image Conversation"
    assert conv.needs_title_generation is True

    conv.messages.append(model("A red balloon. Floating high."))
    assert apply_title(conv) is True
    assert conv.title == "A red balloon"
    assert conv.needs_title_generation is False
    assert not needs_title(conv)


def test_user_chosen_title_is_never_synthesized():
    conv = Conversation(title="New Conversation", messages=[user("hello there")],
                        needs_title_generation=False, renamed=True)
    assert not needs_title(conv)

    conv.renamed = False
    assert needs_title(conv)

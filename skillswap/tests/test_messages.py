from datetime import datetime, timezone
import pytest
from skillswap import crud
from skillswap.crud import get_or_create_conversation, create_message, get_messages
from skillswap.errors import ValidationError, AuthorizationError, NotFoundError
from skillswap.models import Message


@pytest.fixture
def pair(db, make_user):
    alice, bob = make_user("alice"), make_user("bob")
    conversation = get_or_create_conversation(db, alice.id, bob.id)
    return alice, bob, conversation


def test_messages_listed_oldest_first_with_sender(db, pair):
    alice, bob, conversation = pair
    sent = [
        create_message(db, conversation.id, alice.id, "hi"),
        create_message(db, conversation.id, bob.id, "hello"),
        create_message(db, conversation.id, alice.id, "how are you?"),
    ]

    messages = get_messages(db, conversation.id, bob.id)

    assert [m.id for m in messages] == [m.id for m in sent]
    assert [m.sender.first_name for m in messages] == ["Alice", "Bob", "Alice"]
    stamps = [m.created_at for m in messages]
    assert stamps == sorted(stamps)


def test_listing_is_stable(db, pair):
    alice, bob, conversation = pair
    for i in range(5):
        create_message(db, conversation.id, alice.id if i % 2 else bob.id, f"message {i}")

    first = [m.id for m in get_messages(db, conversation.id, alice.id)]
    second = [m.id for m in get_messages(db, conversation.id, alice.id)]

    assert first == second


def test_identical_timestamps_fall_back_to_insertion_order(db, pair, monkeypatch):
    alice, bob, conversation = pair
    frozen = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    monkeypatch.setattr(crud, "utcnow", lambda: frozen)

    ids = [create_message(db, conversation.id, sender.id, text).id
           for sender, text in [(bob, "one"), (alice, "two"), (bob, "three")]]

    assert [m.id for m in get_messages(db, conversation.id, alice.id)] == ids


def test_append_updates_last_activity(db, pair):
    alice, _, conversation = pair

    message = create_message(db, conversation.id, alice.id, "ping")
    db.refresh(conversation)

    assert conversation.last_message_at == message.created_at


def test_append_keeps_type_and_metadata(db, pair):
    alice, _, conversation = pair

    message = create_message(db, conversation.id, alice.id, "trade?", "exchange_proposal", {"exchangeId": "x1"})

    assert message.message_type == "exchange_proposal"
    assert message.meta == {"exchangeId": "x1"}


@pytest.mark.parametrize("content", ["", "   ", "\n\t ", None])
def test_empty_content_is_rejected_without_a_row(db, pair, content):
    alice, _, conversation = pair

    with pytest.raises(ValidationError):
        create_message(db, conversation.id, alice.id, content)

    assert db.query(Message).count() == 0


def test_unknown_message_type_is_rejected(db, pair):
    alice, _, conversation = pair

    with pytest.raises(ValidationError):
        create_message(db, conversation.id, alice.id, "hi", "voice_note")

    assert db.query(Message).count() == 0


def test_outsider_cannot_append(db, pair, make_user):
    _, _, conversation = pair
    mallory = make_user("mallory")

    with pytest.raises(AuthorizationError):
        create_message(db, conversation.id, mallory.id, "let me in")

    assert db.query(Message).count() == 0


def test_outsider_cannot_read(db, pair, make_user):
    alice, _, conversation = pair
    create_message(db, conversation.id, alice.id, "private")
    mallory = make_user("mallory")

    with pytest.raises(AuthorizationError):
        get_messages(db, conversation.id, mallory.id)


def test_unknown_conversation(db, pair):
    alice, _, _ = pair

    with pytest.raises(NotFoundError):
        create_message(db, "missing", alice.id, "hello?")
    with pytest.raises(NotFoundError):
        get_messages(db, "missing", alice.id)


def test_listing_returns_every_message_without_paging(db, pair):
    # No pagination: the whole conversation comes back in one call
    alice, bob, conversation = pair
    for i in range(120):
        create_message(db, conversation.id, alice.id if i % 2 else bob.id, f"message {i}")

    messages = get_messages(db, conversation.id, alice.id)

    assert len(messages) == 120
    assert messages[0].content == "message 0"
    assert messages[-1].content == "message 119"

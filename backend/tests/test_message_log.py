"""Tests for the message log service."""

from datetime import datetime, timezone

import pytest

from messaging.core.errors import Forbidden, InvalidPayload, NotAParticipant, NotFound
from messaging.models.conversation import Conversation, Message
from messaging.services.message_log import MessageLog


def test_append_assigns_id_and_timestamp(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    message, created = MessageLog(db_session).append_message(cid, "alice", "hello")
    assert created is True
    assert message.id is not None
    assert message.created_at is not None
    assert message.message_type == "text"


def test_append_stores_text_as_written(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    message, _ = MessageLog(db_session).append_message(cid, "alice", "  indented\nreply ")
    assert message.content == "  indented\nreply "


def test_append_bumps_last_message_at(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    message, _ = MessageLog(db_session).append_message(cid, "bob", "hi")
    conv = db_session.get(Conversation, cid)
    db_session.refresh(conv)
    assert conv.last_message_at == message.created_at


def test_append_rejects_non_participant(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    with pytest.raises(NotAParticipant):
        MessageLog(db_session).append_message(cid, "mallory", "let me in")
    assert MessageLog(db_session).fetch_history(cid, "alice") == []


def test_append_to_unknown_conversation(db_session):
    with pytest.raises(NotFound):
        MessageLog(db_session).append_message(9999, "alice", "hello?")


@pytest.mark.parametrize("content", ["", "   ", "\n"])
def test_empty_text_is_invalid(db_session, make_conversation, content):
    cid = make_conversation("alice", "bob")
    with pytest.raises(InvalidPayload):
        MessageLog(db_session).append_message(cid, "alice", content, "text")


@pytest.mark.parametrize("message_type", ["voice", "image"])
def test_file_message_requires_file_url(db_session, make_conversation, message_type):
    cid = make_conversation("alice", "bob")
    log = MessageLog(db_session)
    with pytest.raises(InvalidPayload):
        log.append_message(cid, "alice", "", message_type)

    message, _ = log.append_message(cid, "alice", "", message_type, "/uploads/chat/CHAT-1.ogg")
    assert message.content == ""
    assert message.file_url == "/uploads/chat/CHAT-1.ogg"


def test_unknown_message_type_is_invalid(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    with pytest.raises(InvalidPayload):
        MessageLog(db_session).append_message(cid, "alice", "hi", "video", "/x.mp4")


def test_repeated_client_message_id_returns_original(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    log = MessageLog(db_session)
    first, created = log.append_message(cid, "alice", "once", client_message_id="tok-1")
    again, created_again = log.append_message(cid, "alice", "once", client_message_id="tok-1")
    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert len(log.fetch_history(cid, "alice")) == 1


def test_same_client_token_from_other_sender_is_distinct(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    log = MessageLog(db_session)
    a, _ = log.append_message(cid, "alice", "one", client_message_id="tok")
    b, created = log.append_message(cid, "bob", "two", client_message_id="tok")
    assert created is True
    assert a.id != b.id


def test_history_is_ordered_with_id_tiebreak(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    stamp = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)
    earlier = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    # Inserted out of time order; the two at `stamp` share a timestamp
    for sender, content, created_at in [
        ("alice", "second", stamp),
        ("bob", "third", stamp),
        ("bob", "first", earlier),
    ]:
        db_session.add(Message(conversation_id=cid, sender_id=sender, content=content, created_at=created_at))
    db_session.commit()

    history = MessageLog(db_session).fetch_history(cid, "alice")
    assert [m.content for m in history] == ["first", "second", "third"]


def test_history_requires_participant(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    with pytest.raises(Forbidden):
        MessageLog(db_session).fetch_history(cid, "mallory")


def test_history_since_id(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    log = MessageLog(db_session)
    first, _ = log.append_message(cid, "alice", "one")
    log.append_message(cid, "bob", "two")
    log.append_message(cid, "alice", "three")
    assert [m.content for m in log.fetch_history(cid, "bob", since_id=first.id)] == ["two", "three"]
    assert [m.content for m in log.fetch_history(cid, "bob", limit=1)] == ["one"]


def test_mark_read_is_idempotent(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    log = MessageLog(db_session)
    message, _ = log.append_message(cid, "alice", "hello")

    first = log.mark_read(cid, "bob")
    second = log.mark_read(cid, "bob")
    assert first.last_read_message_id == message.id
    assert first == second


def test_mark_read_without_messages(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    log = MessageLog(db_session)
    state = log.mark_read(cid, "bob")
    assert state.last_read_message_id is None
    assert state == log.mark_read(cid, "bob")


def test_mark_read_requires_participant(db_session, make_conversation):
    cid = make_conversation("alice", "bob")
    with pytest.raises(Forbidden):
        MessageLog(db_session).mark_read(cid, "mallory")


def test_unread_count_tracks_read_pointer(db_session, make_conversation):
    direct = make_conversation("alice", "bob")
    group = make_conversation("alice", "bob", "carol")
    log = MessageLog(db_session)
    log.append_message(direct, "alice", "one")
    log.append_message(direct, "alice", "two")
    log.append_message(group, "carol", "three")
    log.append_message(group, "bob", "mine")

    assert log.unread_count("bob") == 3
    assert log.unread_count("bob", direct) == 2

    log.mark_read(direct, "bob")
    assert log.unread_count("bob") == 1
    assert log.unread_count("alice") == 2

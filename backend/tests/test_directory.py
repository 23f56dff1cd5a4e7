"""Tests for the conversation directory service."""

from datetime import datetime, timedelta, timezone

import pytest

from messaging.core.errors import Forbidden, InvalidParticipants, NotFound
from messaging.services.directory import ConversationDirectory


def test_create_direct_conversation(db_session):
    conv = ConversationDirectory(db_session).create_conversation("alice", ["bob"])
    assert conv.id is not None
    assert conv.is_group is False
    assert conv.topic is None
    assert conv.last_message_at is None
    assert ConversationDirectory(db_session).participant_ids(conv.id) == {"alice", "bob"}


def test_direct_conversation_is_deduplicated_for_unordered_pair(db_session):
    directory = ConversationDirectory(db_session)
    first = directory.create_conversation("alice", ["bob"])
    second = directory.create_conversation("bob", ["alice"])
    third = directory.create_conversation("alice", ["bob", "bob", "alice"])
    assert first.id == second.id == third.id


def test_direct_topic_is_ignored(db_session):
    conv = ConversationDirectory(db_session).create_conversation("alice", ["bob"], topic="Ours")
    assert conv.topic is None


def test_group_conversation_gets_default_topic(db_session):
    conv = ConversationDirectory(db_session).create_conversation("alice", ["bob", "carol"])
    assert conv.is_group is True
    assert conv.topic == "Group Chat"


def test_group_conversation_keeps_supplied_topic(db_session):
    conv = ConversationDirectory(db_session).create_conversation("alice", ["bob", "carol"], topic="Grade 7 Parents")
    assert conv.topic == "Grade 7 Parents"


def test_groups_with_same_members_are_not_deduplicated(db_session):
    directory = ConversationDirectory(db_session)
    first = directory.create_conversation("alice", ["bob", "carol"])
    second = directory.create_conversation("alice", ["bob", "carol"])
    assert first.id != second.id


def test_creator_is_admin(db_session):
    directory = ConversationDirectory(db_session)
    conv = directory.create_conversation("alice", ["bob"])
    assert directory.get_participant(conv.id, "alice").is_admin is True
    assert directory.get_participant(conv.id, "bob").is_admin is False


@pytest.mark.parametrize("others", [[], ["alice"], ["", "alice"]])
def test_fewer_than_two_participants_rejected(db_session, others):
    with pytest.raises(InvalidParticipants):
        ConversationDirectory(db_session).create_conversation("alice", others)


def test_concurrent_direct_create_resolves_to_one_record(db_session, monkeypatch):
    """A create that loses the insert race returns the winner's conversation."""
    winner = ConversationDirectory(db_session).create_conversation("alice", ["bob"])

    original = ConversationDirectory.find_direct
    calls = []

    def racing_find(self, participants):
        calls.append(participants)
        # The first lookup happens before the other insert is visible
        if len(calls) == 1:
            return None
        return original(self, participants)

    monkeypatch.setattr(ConversationDirectory, "find_direct", racing_find)
    loser = ConversationDirectory(db_session).create_conversation("bob", ["alice"])

    assert loser.id == winner.id
    assert len(calls) == 2


def test_rename_group_topic(db_session):
    directory = ConversationDirectory(db_session)
    conv = directory.create_conversation("alice", ["bob", "carol"])
    renamed = directory.rename_topic(conv.id, "Sports Day", "bob")
    assert renamed.topic == "Sports Day"


def test_rename_direct_conversation_forbidden(db_session):
    directory = ConversationDirectory(db_session)
    conv = directory.create_conversation("alice", ["bob"])
    with pytest.raises(Forbidden):
        directory.rename_topic(conv.id, "Ours", "alice")


def test_rename_by_non_participant_forbidden(db_session):
    directory = ConversationDirectory(db_session)
    conv = directory.create_conversation("alice", ["bob", "carol"])
    with pytest.raises(Forbidden):
        directory.rename_topic(conv.id, "Hijacked", "mallory")


def test_rename_unknown_conversation(db_session):
    with pytest.raises(NotFound):
        ConversationDirectory(db_session).rename_topic(9999, "Nope", "alice")


def test_list_orders_by_recent_activity_with_never_messaged_last(db_session):
    directory = ConversationDirectory(db_session)
    quiet = directory.create_conversation("alice", ["bob"])
    older = directory.create_conversation("alice", ["carol"])
    newer = directory.create_conversation("alice", ["dave"])
    directory.create_conversation("bob", ["carol"])

    now = datetime.now(timezone.utc)
    older.last_message_at = now - timedelta(hours=1)
    newer.last_message_at = now
    db_session.add(older)
    db_session.add(newer)
    db_session.commit()

    ids = [c.id for c in directory.list_conversations("alice")]
    assert ids == [newer.id, older.id, quiet.id]


def test_list_for_user_without_conversations(db_session):
    assert ConversationDirectory(db_session).list_conversations("nobody") == []

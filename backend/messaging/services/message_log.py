"""Message log: append messages, read ordered history, track read state."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from messaging.core.errors import Forbidden, InvalidPayload, NotAParticipant
from messaging.models.conversation import (
    FILE_MESSAGE_TYPES,
    MESSAGE_TYPES,
    ConversationParticipant,
    Message,
)
from messaging.services.directory import ConversationDirectory

logger = logging.getLogger(__name__)


@dataclass
class ReadState:
    conversation_id: int
    user_id: str
    last_read_message_id: int | None
    last_read_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "last_read_message_id": self.last_read_message_id,
            "last_read_at": self.last_read_at.isoformat() if self.last_read_at else None,
        }


def validate_payload(content: str, message_type: str, file_url: str | None) -> str:
    """Check a message against its type and return the content to store, as written."""
    if message_type not in MESSAGE_TYPES:
        raise InvalidPayload(f"Unknown message type '{message_type}'")
    if message_type in FILE_MESSAGE_TYPES:
        if not file_url:
            raise InvalidPayload(f"A {message_type} message requires file_url")
        return content or ""
    if not content or not content.strip():
        raise InvalidPayload("Message content cannot be empty")
    return content


class MessageLog:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.directory = ConversationDirectory(session)

    def _find_by_client_id(self, conversation_id: int, sender_id: str, client_message_id: str) -> Message | None:
        return self.session.exec(
            select(Message).where(
                Message.conversation_id == conversation_id,
                Message.sender_id == sender_id,
                Message.client_message_id == client_message_id,
            )
        ).first()

    def append_message(
        self,
        conversation_id: int,
        sender_id: str,
        content: str,
        message_type: str = "text",
        file_url: str | None = None,
        client_message_id: str | None = None,
    ) -> tuple[Message, bool]:
        """Persist a message and bump the conversation's activity time.

        Returns the stored message and whether it was newly created. A repeated
        ``client_message_id`` from the same sender returns the original message.
        """
        conv = self.directory.get_conversation(conversation_id)
        if not self.directory.is_participant(conversation_id, sender_id):
            raise NotAParticipant(f"{sender_id} is not a participant of conversation {conversation_id}")
        content = validate_payload(content, message_type, file_url)

        if client_message_id:
            existing = self._find_by_client_id(conversation_id, sender_id, client_message_id)
            if existing:
                logger.debug(f"Duplicate send {client_message_id} in conversation {conversation_id}")
                return existing, False

        msg = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            file_url=file_url,
            client_message_id=client_message_id,
        )
        self.session.add(msg)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            existing = self._find_by_client_id(conversation_id, sender_id, client_message_id or "")
            if existing is None:
                raise
            return existing, False

        conv.last_message_at = msg.created_at
        self.session.add(conv)
        self.session.commit()
        self.session.refresh(msg)
        logger.debug(f"Appended message {msg.id} to conversation {conversation_id}")
        return msg, True

    def fetch_history(
        self,
        conversation_id: int,
        requester_id: str,
        since_id: int | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        self.directory.get_conversation(conversation_id)
        if not self.directory.is_participant(conversation_id, requester_id):
            raise Forbidden(f"{requester_id} cannot read conversation {conversation_id}")

        query = select(Message).where(Message.conversation_id == conversation_id)
        if since_id is not None:
            query = query.where(Message.id > since_id)  # type: ignore
        query = query.order_by(Message.created_at, Message.id)  # type: ignore
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.exec(query).all())

    def latest_message_id(self, conversation_id: int) -> int | None:
        return self.session.exec(
            select(func.max(Message.id)).where(Message.conversation_id == conversation_id)
        ).one()

    def mark_read(self, conversation_id: int, user_id: str) -> ReadState:
        """Record that ``user_id`` has read up to the newest message. Idempotent."""
        self.directory.get_conversation(conversation_id)
        participant = self.directory.get_participant(conversation_id, user_id)
        if participant is None:
            raise Forbidden(f"{user_id} is not a participant of conversation {conversation_id}")

        latest = self.latest_message_id(conversation_id)
        if latest is not None and latest != participant.last_read_message_id:
            participant.last_read_message_id = latest
            participant.last_read_at = datetime.now(timezone.utc)
            self.session.add(participant)
            self.session.commit()
            self.session.refresh(participant)

        return ReadState(
            conversation_id=conversation_id,
            user_id=user_id,
            last_read_message_id=participant.last_read_message_id,
            last_read_at=participant.last_read_at,
        )

    def unread_count(self, user_id: str, conversation_id: int | None = None) -> int:
        """Messages from other senders newer than the user's read pointer."""
        query = (
            select(func.count(Message.id))
            .join(
                ConversationParticipant,
                ConversationParticipant.conversation_id == Message.conversation_id,
            )
            .where(
                ConversationParticipant.user_id == user_id,
                Message.sender_id != user_id,
                Message.id > func.coalesce(ConversationParticipant.last_read_message_id, 0),
            )
        )
        if conversation_id is not None:
            query = query.where(Message.conversation_id == conversation_id)
        return self.session.exec(query).one()

"""Conversation, participant and message models for chat persistence."""

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

MESSAGE_TYPES = ("text", "voice", "image")
FILE_MESSAGE_TYPES = ("voice", "image")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    is_group: bool = Field(default=False)
    topic: Optional[str] = None
    # sorted JSON pair for 1:1 conversations, NULL for groups
    direct_key: Optional[str] = Field(default=None, unique=True, index=True)
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)
    last_message_at: Optional[datetime] = Field(default=None, index=True)

    participants: list["ConversationParticipant"] = Relationship(back_populates="conversation")
    messages: list["Message"] = Relationship(back_populates="conversation")


class ConversationParticipant(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("conversation_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(foreign_key="conversation.id", index=True)
    user_id: str = Field(index=True)
    is_admin: bool = Field(default=False)
    joined_at: datetime = Field(default_factory=utcnow)
    last_read_message_id: Optional[int] = None
    last_read_at: Optional[datetime] = None

    conversation: Optional[Conversation] = Relationship(back_populates="participants")


class Message(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("conversation_id", "sender_id", "client_message_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(foreign_key="conversation.id", index=True)
    sender_id: str
    content: str = Field(default="")
    message_type: str = Field(default="text")  # "text" | "voice" | "image"
    file_url: Optional[str] = None
    client_message_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)

    conversation: Optional[Conversation] = Relationship(back_populates="messages")


def direct_key_for(participants: set[str]) -> str:
    return json.dumps(sorted(participants))


def message_to_dict(message: Message) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "message_type": message.message_type,
        "file_url": message.file_url,
        "client_message_id": message.client_message_id,
        "created_at": message.created_at.isoformat(),
    }

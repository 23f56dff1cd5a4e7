"""REST API for the conversation directory."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session

from messaging.core.database import get_session
from messaging.core.security import get_current_user_id
from messaging.models.conversation import Conversation
from messaging.services.directory import ConversationDirectory
from messaging.services.message_log import MessageLog

router = APIRouter()
logger = logging.getLogger(__name__)


class ConversationCreate(BaseModel):
    participants: list[str]
    topic: str | None = None
    # Accepted for compatibility; group-ness is derived from the participant count
    is_group: bool | None = None


class TopicUpdate(BaseModel):
    topic: str = Field(min_length=1, max_length=200)


def conversation_view(session: Session, conv: Conversation, user_id: str) -> dict:
    directory = ConversationDirectory(session)
    participants = sorted(directory.participant_ids(conv.id))  # type: ignore
    others = [p for p in participants if p != user_id]
    return {
        "id": conv.id,
        "topic": conv.topic,
        "title": conv.topic if conv.is_group else (others[0] if others else None),
        "is_group": conv.is_group,
        "participants": participants,
        "created_by": conv.created_by,
        "created_at": conv.created_at.isoformat(),
        "last_message_at": conv.last_message_at.isoformat() if conv.last_message_at else None,
        "unread_count": MessageLog(session).unread_count(user_id, conv.id),
    }


@router.get("/conversations")
async def list_conversations(
    user_id: str = Depends(get_current_user_id), session: Session = Depends(get_session)
):
    conversations = ConversationDirectory(session).list_conversations(user_id)
    return [conversation_view(session, c, user_id) for c in conversations]


@router.post("/conversations/new", status_code=201)
async def create_conversation(
    body: ConversationCreate,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    conv = ConversationDirectory(session).create_conversation(user_id, body.participants, body.topic)
    return conversation_view(session, conv, user_id)


@router.put("/conversations/{conversation_id}/topic")
async def rename_topic(
    conversation_id: int,
    body: TopicUpdate,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    conv = ConversationDirectory(session).rename_topic(conversation_id, body.topic, user_id)
    return conversation_view(session, conv, user_id)

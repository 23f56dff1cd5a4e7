"""Conversation directory: resolve, create, rename and list conversations."""

import logging
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from messaging.core.config import settings
from messaging.core.errors import Forbidden, InvalidParticipants, NotFound
from messaging.models.conversation import Conversation, ConversationParticipant, direct_key_for

logger = logging.getLogger(__name__)


class ConversationDirectory:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_conversation(self, conversation_id: int) -> Conversation:
        conv = self.session.get(Conversation, conversation_id)
        if not conv:
            raise NotFound(f"Conversation {conversation_id} not found")
        return conv

    def participant_ids(self, conversation_id: int) -> set[str]:
        rows = self.session.exec(
            select(ConversationParticipant.user_id).where(
                ConversationParticipant.conversation_id == conversation_id
            )
        ).all()
        return set(rows)

    def get_participant(self, conversation_id: int, user_id: str) -> ConversationParticipant | None:
        return self.session.exec(
            select(ConversationParticipant).where(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.user_id == user_id,
            )
        ).first()

    def is_participant(self, conversation_id: int, user_id: str) -> bool:
        return self.get_participant(conversation_id, user_id) is not None

    def list_conversations(self, user_id: str) -> list[Conversation]:
        """Conversations of ``user_id``, most recently active first, never-messaged last."""
        return list(
            self.session.exec(
                select(Conversation)
                .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
                .where(ConversationParticipant.user_id == user_id)
                .order_by(
                    Conversation.last_message_at.is_(None),  # type: ignore
                    Conversation.last_message_at.desc(),  # type: ignore
                    Conversation.created_at.desc(),  # type: ignore
                    Conversation.id.desc(),  # type: ignore
                )
            ).all()
        )

    def find_direct(self, participants: set[str]) -> Conversation | None:
        return self.session.exec(
            select(Conversation).where(Conversation.direct_key == direct_key_for(participants))
        ).first()

    def create_conversation(
        self, creator_id: str, other_participant_ids: Iterable[str], topic: str | None = None
    ) -> Conversation:
        participants = {creator_id} | {p for p in other_participant_ids if p}
        if len(participants) < 2:
            raise InvalidParticipants("Minimum 2 participants required")

        is_group = len(participants) > 2
        if not is_group:
            existing = self.find_direct(participants)
            if existing:
                logger.debug(f"Reusing direct conversation {existing.id} for {sorted(participants)}")
                return existing

        conv = Conversation(
            is_group=is_group,
            topic=(topic or settings.default_group_topic) if is_group else None,
            direct_key=None if is_group else direct_key_for(participants),
            created_by=creator_id,
        )
        self.session.add(conv)
        try:
            self.session.flush()
            for uid in sorted(participants):
                self.session.add(
                    ConversationParticipant(
                        conversation_id=conv.id,  # type: ignore
                        user_id=uid,
                        is_admin=uid == creator_id,
                    )
                )
            self.session.commit()
        except IntegrityError:
            # A concurrent create won the race for this pair
            self.session.rollback()
            existing = None if is_group else self.find_direct(participants)
            if existing is None:
                raise
            logger.info(f"Direct conversation for {sorted(participants)} created concurrently, reusing {existing.id}")
            return existing

        self.session.refresh(conv)
        logger.info(f"Created {'group' if is_group else 'direct'} conversation {conv.id} by {creator_id}")
        return conv

    def rename_topic(self, conversation_id: int, new_topic: str, requester_id: str) -> Conversation:
        conv = self.get_conversation(conversation_id)
        if not self.is_participant(conversation_id, requester_id):
            raise Forbidden("Only participants can rename a conversation")
        if not conv.is_group:
            raise Forbidden("Only group conversations have a topic")

        conv.topic = new_topic
        self.session.add(conv)
        self.session.commit()
        self.session.refresh(conv)
        logger.info(f"Conversation {conversation_id} renamed by {requester_id}")
        return conv

"""WebSocket event transport for live conversations.

Frames are JSON objects with an ``event`` key. Client to server:
``join_conversation``, ``leave_conversation``, ``new_message``, ``typing``,
``stop_typing``. Server to client: ``joined``, ``left``, ``message_ack``,
``message_failed``, ``message_received``, ``user_typing``,
``user_stop_typing`` and ``error``.
"""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from messaging.core.database import engine
from messaging.core.errors import Forbidden, InvalidPayload, MessagingError, StoreUnavailable
from messaging.core.security import websocket_user_id
from messaging.models.conversation import message_to_dict
from messaging.services.broker import BrokerSession, RoomBroker
from messaging.services.directory import ConversationDirectory
from messaging.services.message_log import MessageLog

router = APIRouter()
logger = logging.getLogger(__name__)


class RoomRequest(BaseModel):
    conversation_id: int


class NewMessage(BaseModel):
    conversation_id: int
    content: str = ""
    message_type: str = "text"
    file_url: str | None = None
    client_message_id: str | None = None


class TypingSignal(BaseModel):
    conversation_id: int
    sender_name: str | None = None


def _error_event(exc: MessagingError, **extra) -> dict:
    return {"event": "error", **exc.to_dict(), **extra}


async def _join(broker: RoomBroker, session: BrokerSession, data: dict) -> dict:
    req = RoomRequest.model_validate(data)
    with Session(engine) as db:
        directory = ConversationDirectory(db)
        directory.get_conversation(req.conversation_id)
        if not directory.is_participant(req.conversation_id, session.user_id):
            raise Forbidden(f"Not a participant of conversation {req.conversation_id}")
    await broker.join(session, req.conversation_id)
    return {"event": "joined", "conversation_id": req.conversation_id}


async def _leave(broker: RoomBroker, session: BrokerSession, data: dict) -> dict:
    req = RoomRequest.model_validate(data)
    await broker.leave(session, req.conversation_id)
    return {"event": "left", "conversation_id": req.conversation_id}


async def _new_message(broker: RoomBroker, session: BrokerSession, data: dict) -> dict:
    req = NewMessage.model_validate(data)
    try:
        with Session(engine) as db:
            message, created = MessageLog(db).append_message(
                req.conversation_id,
                session.user_id,
                req.content,
                req.message_type,
                req.file_url,
                req.client_message_id,
            )
            payload = message_to_dict(message)
    except MessagingError as e:
        logger.info(f"Send by {session.user_id} to {req.conversation_id} rejected: {e.code}")
        return {"event": "message_failed", "client_message_id": req.client_message_id, "error": e.to_dict()}
    except SQLAlchemyError as e:
        logger.error(f"Failed to persist message from {session.user_id} in {req.conversation_id}: {e}")
        return {
            "event": "message_failed",
            "client_message_id": req.client_message_id,
            "error": StoreUnavailable("Message could not be stored").to_dict(),
        }

    # Peers only ever see messages that are already durable, and see them
    # even if the sender's own socket has gone away
    if created:
        await broker.publish_message(req.conversation_id, payload, exclude=session)
    await session.send({"event": "message_ack", "client_message_id": req.client_message_id, "message": payload})
    return {}


async def _typing(broker: RoomBroker, session: BrokerSession, data: dict) -> dict:
    req = TypingSignal.model_validate(data)
    await broker.typing(session, req.conversation_id, req.sender_name)
    return {}


async def _stop_typing(broker: RoomBroker, session: BrokerSession, data: dict) -> dict:
    req = RoomRequest.model_validate(data)
    await broker.stop_typing(session, req.conversation_id)
    return {}


HANDLERS = {
    "join_conversation": _join,
    "leave_conversation": _leave,
    "new_message": _new_message,
    "typing": _typing,
    "stop_typing": _stop_typing,
}

BEST_EFFORT_EVENTS = ("typing", "stop_typing")


@router.websocket("/ws")
async def chat_websocket(websocket: WebSocket):
    user_id = websocket_user_id(websocket)
    if not user_id:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    broker: RoomBroker = websocket.app.state.broker
    session = BrokerSession(user_id, websocket.send_json)
    broker.register(session)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json(_error_event(InvalidPayload("Frames must be JSON objects")))
                continue
            if not isinstance(data, dict):
                await websocket.send_json(_error_event(InvalidPayload("Frames must be JSON objects")))
                continue

            name = data.get("event")
            handler = HANDLERS.get(name)  # type: ignore
            if handler is None:
                await websocket.send_json(_error_event(InvalidPayload(f"Unknown event '{name}'")))
                continue

            try:
                reply = await handler(broker, session, data)
            except ValidationError as e:
                reply = _error_event(InvalidPayload(str(e)), request=name)
            except MessagingError as e:
                reply = _error_event(e, request=name)
            except SQLAlchemyError as e:
                logger.error(f"Store failure handling {name} from {user_id}: {e}")
                reply = _error_event(StoreUnavailable("Store unavailable, retry later"), request=name)
            except Exception as e:
                if name not in BEST_EFFORT_EVENTS:
                    raise
                logger.warning(f"Dropped {name} from {user_id}: {e}")
                reply = {}

            if reply:
                await websocket.send_json(reply)

    except WebSocketDisconnect:
        logger.debug(f"Chat WebSocket of {user_id} disconnected")
    finally:
        await broker.disconnect(session)

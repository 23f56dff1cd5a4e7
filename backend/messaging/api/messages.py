"""REST API for message history, read state and chat media uploads."""

import logging
import time
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel
from sqlmodel import Session

from messaging.core.config import settings
from messaging.core.database import get_session
from messaging.core.errors import InvalidPayload
from messaging.core.sandbox import UPLOAD_SUBDIR, SandboxError, resolve_upload_path
from messaging.core.security import get_current_user_id
from messaging.models.conversation import message_to_dict
from messaging.services.message_log import MessageLog

router = APIRouter()
logger = logging.getLogger(__name__)


class MessageCreate(BaseModel):
    content: str = ""
    message_type: str = "text"
    file_url: str | None = None
    client_message_id: str | None = None


@router.get("/messages/{conversation_id}")
async def fetch_history(
    conversation_id: int,
    since_id: int | None = Query(None, ge=0),
    limit: int | None = Query(None, ge=1, le=1000),
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    messages = MessageLog(session).fetch_history(conversation_id, user_id, since_id=since_id, limit=limit)
    return [message_to_dict(m) for m in messages]


@router.post("/messages/{conversation_id}", status_code=201)
async def send_message(
    conversation_id: int,
    body: MessageCreate,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    """Durable send for clients whose event transport is down. Fans out like a live send."""
    message, created = MessageLog(session).append_message(
        conversation_id,
        user_id,
        body.content,
        body.message_type,
        body.file_url,
        body.client_message_id,
    )
    payload = message_to_dict(message)
    if created:
        await request.app.state.broker.publish_message(conversation_id, payload)
    return payload


@router.put("/read/{conversation_id}")
async def mark_read(
    conversation_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    return MessageLog(session).mark_read(conversation_id, user_id).to_dict()


@router.get("/unread-count")
async def unread_count(
    user_id: str = Depends(get_current_user_id), session: Session = Depends(get_session)
):
    return {"count": MessageLog(session).unread_count(user_id)}


@router.post("/upload", status_code=201)
async def upload_media(file: UploadFile, user_id: str = Depends(get_current_user_id)):
    """Store a voice note or image and return the URL to reference in a message."""
    ext = Path(file.filename or "").suffix.lower()
    if ext not in settings.upload_extensions:
        raise InvalidPayload(f"File type '{ext or 'unknown'}' is not allowed")

    content = await file.read()
    if not content:
        raise InvalidPayload("Uploaded file is empty")
    if len(content) > settings.upload_max_bytes:
        raise HTTPException(status_code=413, detail="File too large")

    filename = f"CHAT-{time.time_ns()}{ext}"
    try:
        file_path = resolve_upload_path(filename)
    except SandboxError as e:
        raise HTTPException(status_code=403, detail=str(e))

    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(content)
    logger.info(f"{user_id} uploaded {filename} ({len(content)} bytes)")
    return {"file_url": f"/{UPLOAD_SUBDIR}/{filename}", "size": len(content)}

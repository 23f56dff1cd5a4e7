"""Client reconciliation: one active conversation, optimistic echo, live merge.

The timeline shows confirmed messages in server order followed by the
outbox, the sender's own optimistic echoes. Every send carries a fresh
``client_message_id``; the server persists it and echoes it back in
``message_ack``, ``message_failed`` and ``message_received``, which is how
an echo is confirmed in place, marked failed, or de-duplicated against the
authoritative copy.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import httpx

from messaging.client.api import MessagingApiClient
from messaging.client.session import SessionContext
from messaging.client.transport import EventTransport
from messaging.core.errors import MessagingError, TransportUnavailable
from messaging.services.presence import Clock, TypingIndicator, TypingTimer

logger = logging.getLogger(__name__)

PENDING = "pending"
SENT = "sent"
FAILED = "failed"


@dataclass
class TimelineEntry:
    message: dict
    status: str = SENT
    error: dict | None = None
    client_message_id: str | None = None

    @property
    def sort_key(self) -> tuple:
        return (self.message.get("created_at") or "", self.message.get("id") or 0)


class ChatClient:
    def __init__(
        self,
        context: SessionContext,
        api: MessagingApiClient,
        transport: EventTransport | None = None,
        typing_timeout: float | None = None,
        clock: Clock = time.monotonic,
        on_conversations_changed: Callable[[list[dict]], None] | None = None,
    ) -> None:
        self.context = context
        self.api = api
        self.transport = transport
        self.conversations: list[dict] = []
        self.on_conversations_changed = on_conversations_changed
        self.typing_timer = TypingTimer(timeout=typing_timeout, clock=clock)
        self.typing_indicator = TypingIndicator(display_timeout=typing_timeout, clock=clock)
        self._confirmed: list[TimelineEntry] = []
        self._outbox: list[TimelineEntry] = []

    # --- views ---

    @property
    def timeline(self) -> list[TimelineEntry]:
        return self._confirmed + self._outbox

    @property
    def transport_available(self) -> bool:
        return self.transport is not None and self.transport.connected

    def typing_names(self) -> list[str]:
        if self.context.active_conversation_id is None:
            return []
        return self.typing_indicator.typing_names(self.context.active_conversation_id)

    # --- transport helpers ---

    def _emit(self, event: str, **fields) -> bool:
        if self.transport is None:
            return False
        try:
            self.transport.emit(event, **fields)
            return True
        except TransportUnavailable:
            return False

    def _emit_typing(self, events: list[tuple[str, int]]) -> None:
        for name, conversation_id in events:
            if name == "typing":
                self._emit(name, conversation_id=conversation_id, sender_name=self.context.display_name or self.context.user_id)
            else:
                self._emit(name, conversation_id=conversation_id)

    # --- conversations ---

    def refresh_conversations(self) -> list[dict]:
        self.conversations = self.api.list_conversations()
        if self.on_conversations_changed:
            self.on_conversations_changed(self.conversations)
        return self.conversations

    def select_conversation(self, conversation_id: int) -> list[TimelineEntry]:
        previous = self.context.active_conversation_id
        if previous == conversation_id:
            return self.timeline

        self._emit_typing(self.typing_timer.stop())
        if previous is not None:
            self._emit("leave_conversation", conversation_id=previous)
            self.typing_indicator.clear(previous)

        self.context.active_conversation_id = conversation_id
        self._emit("join_conversation", conversation_id=conversation_id)

        self._confirmed = []
        self._outbox = []
        for message in self.api.fetch_history(conversation_id):
            self._merge(message)
        self.api.mark_read(conversation_id)
        return self.timeline

    # --- sending ---

    def send_text(self, content: str) -> TimelineEntry | None:
        text = content.strip()
        if not text:
            return None
        return self._send({"content": text, "message_type": "text", "file_url": None})

    def send_file(self, message_type: str, file_url: str, content: str = "") -> TimelineEntry:
        return self._send({"content": content, "message_type": message_type, "file_url": file_url})

    def _send(self, body: dict) -> TimelineEntry:
        conversation_id = self.context.active_conversation_id
        if conversation_id is None:
            raise MessagingError("No active conversation")

        client_message_id = uuid.uuid4().hex
        entry = TimelineEntry(
            message={
                "id": None,
                "conversation_id": conversation_id,
                "sender_id": self.context.user_id,
                "created_at": datetime.now(timezone.utc).isoformat(),
                "client_message_id": client_message_id,
                **body,
            },
            status=PENDING,
            client_message_id=client_message_id,
        )
        self._outbox.append(entry)
        self._emit_typing(self.typing_timer.stop())
        self._deliver(entry)
        return entry

    def _deliver(self, entry: TimelineEntry) -> None:
        message = entry.message
        payload = {
            "conversation_id": message["conversation_id"],
            "content": message["content"],
            "message_type": message["message_type"],
            "file_url": message["file_url"],
            "client_message_id": entry.client_message_id,
        }
        if self._emit("new_message", **payload):
            return

        # Transport is down: the REST path is authoritative
        try:
            stored = self.api.send_message(message["conversation_id"], payload)
        except MessagingError as e:
            self._fail(entry, e.to_dict())
            return
        except httpx.HTTPError as e:
            self._fail(entry, {"code": "StoreUnavailable", "detail": str(e)})
            return
        self._confirm(entry, stored)

    def retry(self, client_message_id: str) -> TimelineEntry | None:
        """Resend a failed echo with its original token so the server de-duplicates."""
        entry = self._find_outbox(client_message_id)
        if entry is None or entry.status != FAILED:
            return None
        entry.status = PENDING
        entry.error = None
        self._deliver(entry)
        return entry

    def _find_outbox(self, client_message_id: str | None) -> TimelineEntry | None:
        if not client_message_id:
            return None
        for entry in self._outbox:
            if entry.client_message_id == client_message_id:
                return entry
        return None

    def _confirm(self, entry: TimelineEntry, stored: dict) -> None:
        entry.status = SENT
        entry.message = stored
        if entry in self._outbox:
            self._outbox.remove(entry)
        self._merge(stored)

    def _fail(self, entry: TimelineEntry, error: dict) -> None:
        entry.status = FAILED
        entry.error = error
        logger.info(f"Send {entry.client_message_id} failed: {error.get('code')}")

    # --- merging ---

    def _merge(self, message: dict) -> bool:
        """Insert a server message in order unless it is already shown."""
        if message.get("conversation_id") != self.context.active_conversation_id:
            return False
        if any(e.message.get("id") == message.get("id") for e in self._confirmed):
            return False

        pending = self._find_outbox(message.get("client_message_id"))
        if pending is not None and message.get("sender_id") == self.context.user_id:
            self._outbox.remove(pending)

        entry = TimelineEntry(message=message, status=SENT, client_message_id=message.get("client_message_id"))
        index = len(self._confirmed)
        while index > 0 and self._confirmed[index - 1].sort_key > entry.sort_key:
            index -= 1
        self._confirmed.insert(index, entry)
        return True

    def handle_event(self, event: dict) -> None:
        name = event.get("event")
        active = self.context.active_conversation_id

        if name == "message_received":
            message = event["message"]
            self.typing_indicator.clear(message["conversation_id"], message["sender_id"])
            if message["conversation_id"] == active:
                if self._merge(message):
                    self.api.mark_read(active)
            else:
                self.refresh_conversations()
        elif name == "message_ack":
            entry = self._find_outbox(event.get("client_message_id"))
            if entry is not None:
                self._confirm(entry, event["message"])
            else:
                self._merge(event["message"])
        elif name == "message_failed":
            entry = self._find_outbox(event.get("client_message_id"))
            if entry is not None:
                self._fail(entry, event.get("error") or {})
        elif name == "user_typing":
            if event.get("conversation_id") == active:
                self.typing_indicator.show(event["conversation_id"], event["sender_id"], event.get("sender_name"))
        elif name == "user_stop_typing":
            self.typing_indicator.clear(event["conversation_id"], event.get("sender_id"))
        elif name == "error":
            logger.warning(f"Server rejected {event.get('request')}: {event.get('code')} {event.get('detail')}")
        else:
            logger.debug(f"Ignoring event {name}")

    def receive(self) -> dict:
        """Read and apply one event from the transport."""
        if self.transport is None:
            raise TransportUnavailable("No transport connected")
        event = self.transport.receive()
        self.handle_event(event)
        return event

    # --- typing ---

    def input_changed(self) -> None:
        if self.context.active_conversation_id is None:
            return
        self._emit_typing(self.typing_timer.input(self.context.active_conversation_id))

    def tick(self) -> None:
        self._emit_typing(self.typing_timer.tick())
        self.typing_indicator.expire()

    # --- connection lifecycle ---

    def disconnect(self) -> None:
        if self.transport is not None:
            self.transport.close()

    def reconnect(self, transport: EventTransport) -> list[TimelineEntry]:
        """Adopt a new transport, re-join the active room and fill the gap over REST."""
        self.transport = transport
        self.typing_timer.stop()
        active = self.context.active_conversation_id
        if active is None:
            return self.timeline

        self._emit("join_conversation", conversation_id=active)
        confirmed_ids = [e.message["id"] for e in self._confirmed if e.message.get("id") is not None]
        since_id = max(confirmed_ids) if confirmed_ids else None
        for message in self.api.fetch_history(active, since_id=since_id):
            self._merge(message)

        # Anything still pending was lost with the old connection
        for entry in self._outbox:
            if entry.status == PENDING:
                self._fail(entry, TransportUnavailable("Connection lost before confirmation").to_dict())
        self.api.mark_read(active)
        return self.timeline

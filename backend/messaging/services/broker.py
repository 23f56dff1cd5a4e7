"""Room-based event broker.

Each conversation is a room whose id is the conversation id. Connected
sessions join and leave rooms; the broker fans out messages and typing
state to every other member of a room. Room membership and typing state
live in this process only and are mutated by the broker alone, under one
``asyncio.Lock`` per room, so a ``leave`` racing a broadcast never delivers
to a session that has already left.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from messaging.services.presence import Clock, TypingRegistry

logger = logging.getLogger(__name__)

SendFunc = Callable[[dict], Awaitable[None]]


class BrokerSession:
    """A connected, authenticated client able to receive events."""

    def __init__(self, user_id: str, send: SendFunc, session_id: str | None = None) -> None:
        self.user_id = user_id
        self.session_id = session_id or uuid.uuid4().hex
        self._send = send
        self.typing_rooms: set[int] = set()

    async def send(self, event: dict) -> None:
        await self._send(event)

    def __repr__(self) -> str:
        return f"BrokerSession({self.user_id!r}, {self.session_id[:8]})"


def message_received_event(message: dict) -> dict:
    return {"event": "message_received", "conversation_id": message["conversation_id"], "message": message}


def user_typing_event(conversation_id: int, sender_id: str, sender_name: str | None) -> dict:
    return {
        "event": "user_typing",
        "conversation_id": conversation_id,
        "sender_id": sender_id,
        "sender_name": sender_name or sender_id,
    }


def user_stop_typing_event(conversation_id: int, sender_id: str) -> dict:
    return {"event": "user_stop_typing", "conversation_id": conversation_id, "sender_id": sender_id}


class RoomBroker:
    def __init__(self, typing_timeout: float | None = None, clock: Clock = time.monotonic) -> None:
        self._sessions: dict[str, BrokerSession] = {}
        self._rooms: dict[int, set[BrokerSession]] = {}
        self._memberships: dict[str, set[int]] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}
        self._typing_timers: dict[tuple[int, str], asyncio.Task] = {}
        self.typing_state = TypingRegistry(timeout=typing_timeout, clock=clock)

    @asynccontextmanager
    async def _lock(self, conversation_id: int) -> AsyncIterator[None]:
        """Hold the room lock. Dropped once the room is empty and nobody waits on it."""
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[conversation_id] -= 1
            if not self._lock_users[conversation_id]:
                del self._lock_users[conversation_id]
                if conversation_id not in self._rooms:
                    del self._locks[conversation_id]

    def room_locks(self) -> set[int]:
        return set(self._locks)

    # --- session bookkeeping ---

    def register(self, session: BrokerSession) -> None:
        self._sessions[session.session_id] = session
        self._memberships.setdefault(session.session_id, set())
        logger.debug(f"{session} connected")

    def is_connected(self, session: BrokerSession) -> bool:
        return session.session_id in self._sessions

    def rooms_of(self, session: BrokerSession) -> set[int]:
        return set(self._memberships.get(session.session_id, ()))

    def members(self, conversation_id: int) -> set[BrokerSession]:
        return set(self._rooms.get(conversation_id, ()))

    async def join(self, session: BrokerSession, conversation_id: int) -> None:
        async with self._lock(conversation_id):
            self._rooms.setdefault(conversation_id, set()).add(session)
            self._memberships.setdefault(session.session_id, set()).add(conversation_id)
        logger.debug(f"{session} joined room {conversation_id}")

    async def leave(self, session: BrokerSession, conversation_id: int) -> None:
        async with self._lock(conversation_id):
            self._remove_member(session, conversation_id)
        await self._stop_typing_silently(session, conversation_id)
        logger.debug(f"{session} left room {conversation_id}")

    def _remove_member(self, session: BrokerSession, conversation_id: int) -> None:
        room = self._rooms.get(conversation_id)
        if room is not None:
            room.discard(session)
            if not room:
                del self._rooms[conversation_id]
        rooms = self._memberships.get(session.session_id)
        if rooms is not None:
            rooms.discard(conversation_id)

    async def disconnect(self, session: BrokerSession) -> None:
        """Drop every membership of ``session`` and retract its typing state."""
        if self._sessions.pop(session.session_id, None) is None:
            return
        for conversation_id in sorted(self._memberships.get(session.session_id, set())):
            async with self._lock(conversation_id):
                self._remove_member(session, conversation_id)
        self._memberships.pop(session.session_id, None)

        for conversation_id in sorted(session.typing_rooms):
            await self._stop_typing_silently(session, conversation_id)
        logger.debug(f"{session} disconnected")

    # --- fan-out ---

    async def broadcast(self, conversation_id: int, event: dict, exclude: BrokerSession | None = None) -> int:
        """Deliver ``event`` to every member of the room except ``exclude``."""
        dead: list[BrokerSession] = []
        delivered = 0
        async with self._lock(conversation_id):
            for member in list(self._rooms.get(conversation_id, ())):
                if member is exclude:
                    continue
                try:
                    await member.send(event)
                    delivered += 1
                except Exception as e:
                    logger.warning(f"Dropping {member} after failed delivery to room {conversation_id}: {e}")
                    dead.append(member)

        for member in dead:
            await self.disconnect(member)
        return delivered

    async def publish_message(
        self, conversation_id: int, message: dict, exclude: BrokerSession | None = None
    ) -> int:
        """Fan out an already persisted message to the room."""
        return await self.broadcast(conversation_id, message_received_event(message), exclude=exclude)

    # --- typing ---

    async def typing(self, session: BrokerSession, conversation_id: int, sender_name: str | None = None) -> bool:
        """Relay a typing signal and (re)arm its expiry. Ignored outside joined rooms."""
        if conversation_id not in self._memberships.get(session.session_id, ()):
            return False
        stamp = self.typing_state.touch(conversation_id, session.user_id)
        session.typing_rooms.add(conversation_id)
        self._arm_typing_timer(session, conversation_id, stamp)
        await self.broadcast(
            conversation_id, user_typing_event(conversation_id, session.user_id, sender_name), exclude=session
        )
        return True

    async def stop_typing(self, session: BrokerSession, conversation_id: int) -> bool:
        if conversation_id not in self._memberships.get(session.session_id, ()):
            return False
        self._clear_typing(session, conversation_id)
        await self.broadcast(
            conversation_id, user_stop_typing_event(conversation_id, session.user_id), exclude=session
        )
        return True

    def _clear_typing(self, session: BrokerSession, conversation_id: int) -> bool:
        session.typing_rooms.discard(conversation_id)
        timer = self._typing_timers.pop((conversation_id, session.user_id), None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
        return self.typing_state.clear(conversation_id, session.user_id)

    async def _stop_typing_silently(self, session: BrokerSession, conversation_id: int) -> None:
        """Retract typing state the session left behind, telling the room if it was live."""
        if self._clear_typing(session, conversation_id):
            await self.broadcast(
                conversation_id, user_stop_typing_event(conversation_id, session.user_id), exclude=session
            )

    def _arm_typing_timer(self, session: BrokerSession, conversation_id: int, stamp: float) -> None:
        key = (conversation_id, session.user_id)
        previous = self._typing_timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._typing_timers[key] = asyncio.create_task(self._expire_typing(session, conversation_id, stamp))

    async def _expire_typing(self, session: BrokerSession, conversation_id: int, stamp: float) -> None:
        await asyncio.sleep(self.typing_state.timeout)
        if self.typing_state.last_typed(conversation_id, session.user_id) != stamp:
            return
        logger.debug(f"Typing of {session.user_id} in room {conversation_id} expired")
        await self._stop_typing_silently(session, conversation_id)

    async def close(self) -> None:
        timers = list(self._typing_timers.values())
        self._typing_timers.clear()
        for timer in timers:
            timer.cancel()
        for timer in timers:
            try:
                await timer
            except asyncio.CancelledError:
                pass

"""Typing indicator state machines.

Three views of the same ephemeral state, all driven by an injectable
monotonic clock so they can be exercised without sleeping:

- ``TypingTimer``: sender side, ``Idle -> Typing -> Idle``. Input emits
  ``typing`` (at most once per refresh interval, well inside the receiver
  display window) and re-arms the timeout; silence emits ``stop_typing``.
- ``TypingIndicator``: receiver side. Shows who is typing and forgets a
  sender once its display window lapses, even if ``stop_typing`` never
  arrives.
- ``TypingRegistry``: server side map of ``(conversation_id, sender_id)``
  to the last typing instant, used by the broker to expire silent senders.
"""

import time
from dataclasses import dataclass
from typing import Callable

from messaging.core.config import settings

Clock = Callable[[], float]

IDLE = "idle"
TYPING = "typing"


class TypingTimer:
    def __init__(self, timeout: float | None = None, clock: Clock = time.monotonic) -> None:
        self.timeout = settings.typing_timeout_seconds if timeout is None else timeout
        self.clock = clock
        self.refresh_interval = self.timeout / 3
        self.state = IDLE
        self.conversation_id: int | None = None
        self._deadline = 0.0
        self._last_emit = 0.0

    def input(self, conversation_id: int) -> list[tuple[str, int]]:
        """Register a content change. Returns the events to emit."""
        events: list[tuple[str, int]] = []
        if self.state == TYPING and self.conversation_id != conversation_id:
            events.extend(self.stop())
        now = self.clock()
        if self.state == IDLE or now - self._last_emit >= self.refresh_interval:
            events.append(("typing", conversation_id))
            self._last_emit = now
        self.state = TYPING
        self.conversation_id = conversation_id
        self._deadline = now + self.timeout
        return events

    def tick(self) -> list[tuple[str, int]]:
        if self.state == TYPING and self.clock() >= self._deadline:
            return self.stop()
        return []

    def stop(self) -> list[tuple[str, int]]:
        if self.state == IDLE or self.conversation_id is None:
            return []
        events = [("stop_typing", self.conversation_id)]
        self.state = IDLE
        self.conversation_id = None
        return events


@dataclass
class TypingEntry:
    sender_name: str
    expires_at: float


class TypingIndicator:
    def __init__(self, display_timeout: float | None = None, clock: Clock = time.monotonic) -> None:
        self.display_timeout = settings.typing_timeout_seconds if display_timeout is None else display_timeout
        self.clock = clock
        self._entries: dict[tuple[int, str], TypingEntry] = {}

    def show(self, conversation_id: int, sender_id: str, sender_name: str | None = None) -> None:
        self._entries[(conversation_id, sender_id)] = TypingEntry(
            sender_name=sender_name or sender_id,
            expires_at=self.clock() + self.display_timeout,
        )

    def clear(self, conversation_id: int, sender_id: str | None = None) -> None:
        if sender_id is None:
            for key in [k for k in self._entries if k[0] == conversation_id]:
                del self._entries[key]
        else:
            self._entries.pop((conversation_id, sender_id), None)

    def expire(self) -> None:
        now = self.clock()
        for key in [k for k, entry in self._entries.items() if entry.expires_at <= now]:
            del self._entries[key]

    def typing_names(self, conversation_id: int) -> list[str]:
        self.expire()
        return sorted(
            entry.sender_name for (cid, _), entry in self._entries.items() if cid == conversation_id
        )


class TypingRegistry:
    def __init__(self, timeout: float | None = None, clock: Clock = time.monotonic) -> None:
        self.timeout = settings.typing_timeout_seconds if timeout is None else timeout
        self.clock = clock
        self._last_typed: dict[tuple[int, str], float] = {}

    def touch(self, conversation_id: int, sender_id: str) -> float:
        stamp = self.clock()
        self._last_typed[(conversation_id, sender_id)] = stamp
        return stamp

    def clear(self, conversation_id: int, sender_id: str) -> bool:
        return self._last_typed.pop((conversation_id, sender_id), None) is not None

    def last_typed(self, conversation_id: int, sender_id: str) -> float | None:
        return self._last_typed.get((conversation_id, sender_id))


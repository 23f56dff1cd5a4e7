"""Client side of the event transport."""

import logging
from typing import Any, Protocol

from messaging.core.errors import TransportUnavailable

logger = logging.getLogger(__name__)


class JsonConnection(Protocol):
    def send_json(self, data: Any) -> None: ...

    def receive_json(self) -> Any: ...

    def close(self) -> None: ...


class EventTransport:
    """Wraps a duplex JSON connection; any I/O failure marks it unavailable."""

    def __init__(self, connection: JsonConnection) -> None:
        self._connection = connection
        self.connected = True

    def emit(self, event: str, **fields) -> None:
        if not self.connected:
            raise TransportUnavailable(f"Cannot emit {event}: transport is down")
        try:
            self._connection.send_json({"event": event, **fields})
        except Exception as e:
            self.connected = False
            logger.warning(f"Transport send failed for {event}: {e}")
            raise TransportUnavailable(str(e)) from e

    def receive(self) -> dict:
        if not self.connected:
            raise TransportUnavailable("Transport is down")
        try:
            return self._connection.receive_json()
        except Exception as e:
            self.connected = False
            logger.warning(f"Transport receive failed: {e}")
            raise TransportUnavailable(str(e)) from e

    def close(self) -> None:
        if not self.connected:
            return
        self.connected = False
        try:
            self._connection.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing transport: {e}")

"""HTTP client for the messaging REST API."""

import logging

import httpx

from messaging.client.session import SessionContext
from messaging.core.errors import (
    Forbidden,
    InvalidParticipants,
    InvalidPayload,
    MessagingError,
    NotAParticipant,
    NotFound,
    StoreUnavailable,
    TransportUnavailable,
    Unauthorized,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/messaging"

ERRORS_BY_CODE: dict[str, type[MessagingError]] = {
    cls.code: cls
    for cls in (
        Forbidden,
        InvalidParticipants,
        InvalidPayload,
        NotAParticipant,
        NotFound,
        StoreUnavailable,
        TransportUnavailable,
        Unauthorized,
    )
}


class MessagingApiClient:
    """Thin wrapper over ``httpx.Client``. FastAPI's ``TestClient`` works as ``http``."""

    def __init__(self, http: httpx.Client, context: SessionContext) -> None:
        self.http = http
        self.context = context

    def _request(self, method: str, path: str, **kwargs):
        response = self.http.request(method, f"{API_PREFIX}{path}", headers=self.context.auth_headers, **kwargs)
        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        error_cls = ERRORS_BY_CODE.get(body.get("code", "")) if isinstance(body, dict) else None
        if error_cls is not None:
            raise error_cls(body.get("detail", ""))
        logger.error(f"{method} {path} failed with {response.status_code}")
        response.raise_for_status()

    def list_conversations(self) -> list[dict]:
        return self._request("GET", "/conversations")

    def create_conversation(self, participants: list[str], topic: str | None = None) -> dict:
        return self._request("POST", "/conversations/new", json={"participants": participants, "topic": topic})

    def rename_topic(self, conversation_id: int, topic: str) -> dict:
        return self._request("PUT", f"/conversations/{conversation_id}/topic", json={"topic": topic})

    def fetch_history(self, conversation_id: int, since_id: int | None = None) -> list[dict]:
        params = {"since_id": since_id} if since_id is not None else None
        return self._request("GET", f"/messages/{conversation_id}", params=params)

    def send_message(self, conversation_id: int, payload: dict) -> dict:
        return self._request("POST", f"/messages/{conversation_id}", json=payload)

    def mark_read(self, conversation_id: int) -> dict:
        return self._request("PUT", f"/read/{conversation_id}")

    def unread_count(self) -> int:
        return self._request("GET", "/unread-count")["count"]

    def upload(self, filename: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        result = self._request("POST", "/upload", files={"file": (filename, content, content_type)})
        return result["file_url"]

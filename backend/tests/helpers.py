"""Request helpers shared by the API and WebSocket tests."""


def auth(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}


def ws_url(user_id: str) -> str:
    return f"/api/messaging/ws?token={user_id}"


def receive_until(ws, event: str, limit: int = 20) -> dict:
    """Read frames until one named ``event`` arrives."""
    for _ in range(limit):
        frame = ws.receive_json()
        if frame.get("event") == event:
            return frame
    raise AssertionError(f"no {event} event within {limit} frames")

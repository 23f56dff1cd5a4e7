from dataclasses import dataclass


@dataclass
class SessionContext:
    """Per-client state that used to live in ambient globals."""

    user_id: str
    token: str
    display_name: str | None = None
    active_conversation_id: int | None = None

    @property
    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

"""Bearer credential handling.

Credentials are issued and verified by the upstream auth service. The
messaging core only needs the user id behind a credential, so resolution is
a pluggable callable stored on ``app.state.identity_resolver``.
"""

from typing import Callable

from fastapi import Request, WebSocket

from messaging.core.errors import Unauthorized

IdentityResolver = Callable[[str], str | None]


def subject_from_token(token: str) -> str | None:
    """Default resolver: the gateway forwards the verified subject as the credential."""
    subject = token.strip()
    return subject or None


def _resolver(app) -> IdentityResolver:
    return getattr(app.state, "identity_resolver", subject_from_token)


def get_current_user_id(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Missing bearer credential")

    user_id = _resolver(request.app)(token)
    if not user_id:
        raise Unauthorized("Invalid bearer credential")
    return user_id


def websocket_user_id(websocket: WebSocket) -> str | None:
    """Resolve the ``?token=`` query parameter of a WebSocket handshake."""
    token = websocket.query_params.get("token")
    if not token:
        return None
    return _resolver(websocket.app)(token)

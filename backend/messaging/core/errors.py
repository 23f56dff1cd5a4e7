"""Messaging error taxonomy and its HTTP rendering."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    status_code = 400
    code = "MessagingError"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail or self.code

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail}


class InvalidParticipants(MessagingError):
    status_code = 400
    code = "InvalidParticipants"


class InvalidPayload(MessagingError):
    status_code = 422
    code = "InvalidPayload"


class NotAParticipant(MessagingError):
    status_code = 403
    code = "NotAParticipant"


class Forbidden(MessagingError):
    status_code = 403
    code = "Forbidden"


class NotFound(MessagingError):
    status_code = 404
    code = "NotFound"


class Unauthorized(MessagingError):
    status_code = 401
    code = "Unauthorized"


class StoreUnavailable(MessagingError):
    """The persistence store failed; the request may be retried."""

    status_code = 503
    code = "StoreUnavailable"


class TransportUnavailable(MessagingError):
    """Live delivery is down; REST paths remain authoritative."""

    status_code = 503
    code = "TransportUnavailable"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MessagingError)
    async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
        logger.debug(f"{request.method} {request.url.path} -> {exc.code}: {exc.detail}")
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} store failure: {exc}")
        error = StoreUnavailable("Store unavailable, retry later")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())
